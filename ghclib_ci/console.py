"""Leveled console output for the driver's own diagnostics."""
import sys


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(self, level: str = "info", dry_run: bool = False):
        if level not in self.LEVELS:
            raise ValueError(f"Unknown console level: {level}")
        self.level_name = level
        self.level = self.LEVELS[level]
        self.dry_run = dry_run

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"# {message}", flush=True)

    def warning(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[WARNING] {message}", file=sys.stderr, flush=True)

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[ERROR] {message}", file=sys.stderr, flush=True)

    def dry(self, message: str) -> None:
        if self.dry_run:
            print(f"[DRY] {message}", flush=True)

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"[DEBUG] {message}", flush=True)
