"""Shared core utilities for running external tools and loading settings."""

from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    TimedCommandRunner,
    format_command,
    format_duration,
)
from .config_loader import (
    ConfigLoader,
    FILE_LOADERS,
    load_config_file,
    normalize_string_list,
)

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "TimedCommandRunner",
    "format_command",
    "format_duration",
    "ConfigLoader",
    "FILE_LOADERS",
    "load_config_file",
    "normalize_string_list",
]
