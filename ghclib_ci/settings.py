"""Optional settings file for the CI driver."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
import os

from core.config_loader import load_config_file

from .policy import PolicyTables, load_policy_tables


GHC_REPOSITORY = "https://gitlab.haskell.org/ghc/ghc.git"

SETTINGS_ENV_VAR = "GHCLIB_CI_CONFIG"


@dataclass(slots=True)
class Settings:
    ghc_repository: str = GHC_REPOSITORY
    policies: PolicyTables = field(default_factory=PolicyTables)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        unknown = set(data) - {"ghc", "policy"}
        if unknown:
            raise ValueError(f"Unknown settings section(s): {', '.join(sorted(unknown))}")

        ghc = data.get("ghc") or {}
        if not isinstance(ghc, Mapping):
            raise TypeError("[ghc] must be a table")
        unknown_ghc = set(ghc) - {"repository"}
        if unknown_ghc:
            raise ValueError(f"Unknown [ghc] key(s): {', '.join(sorted(unknown_ghc))}")
        repository = ghc.get("repository", GHC_REPOSITORY)
        if not isinstance(repository, str) or not repository.strip():
            raise TypeError("ghc.repository must be a non-empty string")

        policy = data.get("policy")
        if policy is not None and not isinstance(policy, Mapping):
            raise TypeError("[policy] must be a table")

        return cls(ghc_repository=repository.strip(), policies=load_policy_tables(policy))


def resolve_settings_path(cli_value: str | Path | None, *, workspace: Path) -> Path | None:
    """CLI flag first, then ``GHCLIB_CI_CONFIG``; relative paths are taken from ``workspace``."""

    raw = cli_value if cli_value else os.environ.get(SETTINGS_ENV_VAR)
    if not raw:
        return None
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = workspace / path
    return path


def load_settings(path: Path | None) -> Settings:
    if path is None:
        return Settings()
    if not path.is_file():
        raise FileNotFoundError(f"Settings file not found: {path}")
    return Settings.from_mapping(load_config_file(path))


__all__ = [
    "GHC_REPOSITORY",
    "SETTINGS_ENV_VAR",
    "Settings",
    "load_settings",
    "resolve_settings_path",
]
