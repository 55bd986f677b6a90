"""Optional overrides forwarded to ``stack`` and the command lines built from them."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence


VERBOSITY_LEVELS = ("silent", "error", "warn", "info", "debug")

DEFAULT_STACK_CONFIG = "stack.yaml"


@dataclass(frozen=True, slots=True)
class StackOptions:
    """Build-tool overrides; ``None``/``False`` fields are left off generated command lines."""

    stack_yaml: str | None = None
    resolver: str | None = None
    verbosity: str | None = None
    cabal_verbose: bool = False
    ghc_options: str | None = None

    def __post_init__(self) -> None:
        if self.verbosity is not None and self.verbosity not in VERBOSITY_LEVELS:
            choices = ", ".join(VERBOSITY_LEVELS)
            raise ValueError(f"Invalid stack verbosity '{self.verbosity}'. Expected one of: {choices}")

    @property
    def config_path(self) -> Path:
        return Path(self.stack_yaml or DEFAULT_STACK_CONFIG)

    def global_args(self) -> List[str]:
        args: List[str] = []
        if self.stack_yaml:
            args.extend(["--stack-yaml", self.stack_yaml])
        if self.resolver:
            args.extend(["--resolver", self.resolver])
        if self.verbosity:
            args.append(f"--verbosity={self.verbosity}")
        if self.cabal_verbose:
            args.append("--cabal-verbose")
        return args

    def ghc_options_args(self) -> List[str]:
        # For ghc verbose output, try 'v3'.
        if self.ghc_options:
            return [f"--ghc-options={self.ghc_options}"]
        return []

    def stack(self, *action: str) -> List[str]:
        return ["stack", *self.global_args(), *action]

    def build(self, targets: Sequence[str]) -> List[str]:
        return self.stack(
            "--no-terminal",
            "--interleaved-output",
            "build",
            *self.ghc_options_args(),
            *targets,
        )

    def exec(self, *command: str, terminal: bool = True) -> List[str]:
        prefix = [] if terminal else ["--no-terminal"]
        return self.stack(*prefix, "exec", "--", *command)


__all__ = ["DEFAULT_STACK_CONFIG", "StackOptions", "VERBOSITY_LEVELS"]
