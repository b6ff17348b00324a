import sys

from rich.console import Console

from microbatch import *
from microbatch.logs import configure


class Maintenance(BatchBase):
    @command("cleanup", descr="remove files older than the given age")
    def cleanup(self, days: int = Option("-d", default=7, descr="age in days"), *, dry: bool = False):
        self.context.logger.info("removing files older than %d days (dry=%s)", days, dry)

    @command("help")
    def help(self):
        Console().print(usage(Maintenance))


if __name__ == '__main__':
    configure()
    sys.exit(run(Maintenance, shell=True, fancy=True).exit_code)
