"""Filesystem side of the CI run: cleanup, config-file appends and metadata patches."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, List, Mapping
import os
import shutil

import yaml

from .console import Console


GHC_DIR = "ghc"
PARSER_PACKAGE = "ghc-lib-parser"
FULL_PACKAGE = "ghc-lib"
WORK_DIRS = (GHC_DIR, FULL_PACKAGE, PARSER_PACKAGE)

VERSION_PLACEHOLDER = "version: 0.1.0"


def render_yaml_fragment(mapping: Mapping[str, Any]) -> str:
    """Serialize a top-level mapping in block style, keeping key order."""

    return yaml.safe_dump(dict(mapping), default_flow_style=False, sort_keys=False)


def patch_version_text(text: str, version: str) -> str:
    return text.replace(VERSION_PLACEHOLDER, f"version: {version}")


def patch_constraint_text(text: str, version: str) -> str:
    return text.replace(PARSER_PACKAGE, f"{PARSER_PACKAGE} == {version}")


class Workspace:
    """Working directory the CI mutates between external commands.

    In dry-run mode every mutation is reported through the console and skipped.
    """

    def __init__(self, root: Path, *, console: Console, dry_run: bool = False) -> None:
        self.root = root
        self._console = console
        self._dry_run = dry_run

    def path(self, *parts: str | Path) -> Path:
        return self.root.joinpath(*parts)

    @property
    def ghc_dir(self) -> Path:
        return self.path(GHC_DIR)

    @property
    def hadrian_config(self) -> Path:
        return self.path(GHC_DIR, "hadrian", "stack.yaml")

    def leftovers(self) -> List[Path]:
        """Paths a previous run may have left behind, in deletion order."""

        targets = [self.path(name) for name in WORK_DIRS]
        if self.root.is_dir():
            entries = sorted(self.root.iterdir())
            targets.extend(p for p in entries if p.name.endswith(".tar.gz"))
            targets.extend(p for p in entries if p.suffix == ".lock")
        return targets

    def remove_path(self, path: Path) -> bool:
        """Delete a file or directory tree; a missing path is not an error."""

        if not os.path.lexists(path):
            return False
        self._console.info(f"Removing {path}")
        if self._dry_run:
            self._console.dry(f"remove {path}")
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def cleanup(self) -> List[Path]:
        return [path for path in self.leftovers() if self.remove_path(path)]

    def append_text(self, path: Path, text: str) -> None:
        if self._dry_run:
            self._console.dry(f"append to {path}:\n{text.rstrip()}")
            return
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        with path.open("a", encoding="utf-8") as handle:
            handle.write(prefix + text)

    def append_yaml(self, path: Path, mapping: Mapping[str, Any]) -> None:
        self.append_text(path, render_yaml_fragment(mapping))

    def append_packages(self, path: Path, packages: Iterable[str]) -> None:
        """Add entries to the ``packages:`` list, which must end the file."""

        lines = "".join(f"- {package}\n" for package in packages)
        if lines:
            self.append_text(path, lines)

    def patch_file(self, path: Path, version: str, *, constraint: bool = False) -> None:
        if self._dry_run:
            what = "version and constraint" if constraint else "version"
            self._console.dry(f"patch {what} in {path} -> {version}")
            return
        text = patch_version_text(path.read_text(encoding="utf-8"), version)
        if constraint:
            text = patch_constraint_text(text, version)
        path.write_text(text, encoding="utf-8")

    def rename(self, source: Path, target: Path) -> None:
        if self._dry_run:
            self._console.dry(f"rename {source} -> {target}")
            return
        source.rename(target)

    def delete_file(self, path: Path) -> None:
        if self._dry_run:
            self._console.dry(f"delete {path}")
            return
        path.unlink()


__all__ = [
    "FULL_PACKAGE",
    "GHC_DIR",
    "PARSER_PACKAGE",
    "VERSION_PLACEHOLDER",
    "WORK_DIRS",
    "Workspace",
    "patch_constraint_text",
    "patch_version_text",
    "render_yaml_fragment",
]
