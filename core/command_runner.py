"""Execute external command lines, streaming or capturing, with optional dry-run recording."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Sequence, TextIO
import shlex
import subprocess
import sys
import time


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False


class CommandError(RuntimeError):
    """Raised when a command exits non-zero and the caller asked for a check."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {format_command(result.command)}"
        if result.streamed:
            message = f"{message}\nstdout/stderr already streamed above."
        else:
            message = (
                f"{message}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        super().__init__(message)
        self.result = result


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in command)


def format_duration(seconds: float) -> str:
    """Render an elapsed time as ``0.52s``, ``2m05s`` or ``1h03m``."""

    if seconds < 60:
        return f"{seconds:.2f}s"
    whole = int(seconds)
    if whole < 3600:
        minutes, secs = divmod(whole, 60)
        return f"{minutes}m{secs:02d}s"
    hours, remainder = divmod(whole, 3600)
    return f"{hours}h{remainder // 60:02d}m"


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return format_command(command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        if not stream:
            process = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                check=False,
            )
            return self._finalize(
                CommandResult(
                    command=argv,
                    returncode=process.returncode,
                    stdout=process.stdout,
                    stderr=process.stderr,
                ),
                check=check,
            )

        # Inherit stdio so tool output interleaves with our own diagnostics.
        process = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            check=False,
        )
        return self._finalize(
            CommandResult(
                command=argv,
                returncode=process.returncode,
                stdout="",
                stderr="",
                streamed=True,
            ),
            check=check,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    note: str | None
    stream: bool


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=[str(part) for part in command],
                cwd=str(cwd) if cwd else None,
                note=note,
                stream=stream,
            )
        )
        return CommandResult(command=command, returncode=0, stdout="", stderr="", streamed=stream)

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_command(record.command)
            cwd = record.cwd or default_cwd
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            yield " ".join(parts)


class TimedCommandRunner(CommandRunner):
    """Announce each command and report its wall-clock duration.

    Wraps another runner. The ``# Running:`` line is written before the command
    starts and the ``# Completed in ...`` line only once it exits successfully;
    a failing command leaves the start line as the last word on which
    invocation broke the run.
    """

    def __init__(
        self,
        inner: CommandRunner,
        *,
        out: TextIO | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner = inner
        self._out = out
        self._clock = clock

    def _emit(self, message: str) -> None:
        out = self._out or sys.stdout
        print(message, file=out)
        out.flush()

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        text = self.format_command(command)
        if cwd:
            text = f"{text} (cwd={cwd})"
        self._emit(f"\n\n# Running: {text}")
        started = self._clock()
        result = self._inner.run(command, cwd=cwd, check=check, note=note, stream=stream)
        elapsed = self._clock() - started
        self._emit(f"# Completed in {format_duration(elapsed)}: {text}\n")
        return result
