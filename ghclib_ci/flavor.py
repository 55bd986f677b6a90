"""GHC flavors the CI can build ghc-lib against, and the version strings derived from them."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Tuple, Union


# Last tested gitlab.haskell.org/ghc/ghc.git at 2020-06-30.
KNOWN_GOOD_COMMIT = "85310fb83fdb7d7294bd453026102fc42000bf14"

MASTER_FLAVOR_NAME = "ghc-master"

DEFAULT_DA_MERGE_BASE = "ghc-8.8.1-release"
DEFAULT_DA_PATCHES: Tuple[str, ...] = (
    "upstream/da-master-8.8.1",
    "upstream/da-unit-ids-8.8.1",
)
DEFAULT_DA_GEN_FLAVOR = "da-ghc-8.8.1"
DEFAULT_DA_UPSTREAM = "https://github.com/digital-asset/ghc.git"

# Prefix for any flavor without an explicit mapping. Only the DA flavor lands
# here today; whether it should share 8.8.1's numbering is unresolved.
FALLBACK_VERSION_PREFIX = "8.8.1"


class Release(str, Enum):
    GHC_8_10_1 = "ghc-8.10.1"
    GHC_8_8_1 = "ghc-8.8.1"
    GHC_8_8_2 = "ghc-8.8.2"
    GHC_8_8_3 = "ghc-8.8.3"
    GHC_8_8_4 = "ghc-8.8.4"

    @property
    def number(self) -> str:
        return self.value.removeprefix("ghc-")

    @property
    def tag(self) -> str:
        return f"{self.value}-release"


@dataclass(frozen=True, slots=True)
class ReleaseFlavor:
    release: Release


@dataclass(frozen=True, slots=True)
class DaFlavor:
    """Digital Asset fork: upstream patches merged onto a GHC base commit."""

    merge_base_sha: str = DEFAULT_DA_MERGE_BASE
    patches: Tuple[str, ...] = DEFAULT_DA_PATCHES
    gen_flavor: str = DEFAULT_DA_GEN_FLAVOR
    upstream: str = DEFAULT_DA_UPSTREAM


@dataclass(frozen=True, slots=True)
class MasterFlavor:
    commit: str = KNOWN_GOOD_COMMIT


GhcFlavor = Union[ReleaseFlavor, DaFlavor, MasterFlavor]


def _unknown(flavor: object) -> TypeError:
    return TypeError(f"Unknown GHC flavor: {flavor!r}")


def parse_flavor(name: str) -> GhcFlavor:
    """Interpret a ``--ghc-flavor`` value.

    Release names select that release, ``ghc-master`` selects the known-good
    commit, and anything else is taken as a commit reference to track.
    """

    text = name.strip()
    if not text:
        raise ValueError("GHC flavor must not be empty")
    try:
        return ReleaseFlavor(Release(text))
    except ValueError:
        pass
    if text == MASTER_FLAVOR_NAME:
        return MasterFlavor()
    return MasterFlavor(commit=text)


def flavor_kind(flavor: GhcFlavor) -> str:
    """Short label used by policy selectors: a release name, ``da`` or ``ghc-master``."""

    if isinstance(flavor, ReleaseFlavor):
        return flavor.release.value
    if isinstance(flavor, DaFlavor):
        return "da"
    if isinstance(flavor, MasterFlavor):
        return MASTER_FLAVOR_NAME
    raise _unknown(flavor)


def version_prefix(flavor: GhcFlavor) -> str:
    if isinstance(flavor, MasterFlavor):
        return "0"
    if isinstance(flavor, ReleaseFlavor):
        return flavor.release.number
    if isinstance(flavor, DaFlavor):
        return FALLBACK_VERSION_PREFIX
    raise _unknown(flavor)


def version_string(flavor: GhcFlavor, day: date) -> str:
    """Something like ``8.8.1.20190828``."""

    return f"{version_prefix(flavor)}.{day.strftime('%Y%m%d')}"


def generator_flavor_args(flavor: GhcFlavor) -> list[str]:
    """Arguments selecting the flavor for ``ghc-lib-gen``."""

    if isinstance(flavor, ReleaseFlavor):
        return ["--ghc-flavor", flavor.release.value]
    if isinstance(flavor, DaFlavor):
        return ["--ghc-flavor", flavor.gen_flavor]
    if isinstance(flavor, MasterFlavor):
        # ghc-lib-gen is not told the commit; it only needs the flavor family.
        return ["--ghc-flavor", MASTER_FLAVOR_NAME]
    raise _unknown(flavor)


def describe_flavor(flavor: GhcFlavor) -> str:
    if isinstance(flavor, ReleaseFlavor):
        return flavor.release.value
    if isinstance(flavor, DaFlavor):
        return f"da ({flavor.merge_base_sha} + {', '.join(flavor.patches)})"
    if isinstance(flavor, MasterFlavor):
        return f"{MASTER_FLAVOR_NAME} @ {flavor.commit}"
    raise _unknown(flavor)


__all__ = [
    "DEFAULT_DA_GEN_FLAVOR",
    "DEFAULT_DA_MERGE_BASE",
    "DEFAULT_DA_PATCHES",
    "DEFAULT_DA_UPSTREAM",
    "FALLBACK_VERSION_PREFIX",
    "GhcFlavor",
    "KNOWN_GOOD_COMMIT",
    "MASTER_FLAVOR_NAME",
    "DaFlavor",
    "MasterFlavor",
    "Release",
    "ReleaseFlavor",
    "describe_flavor",
    "flavor_kind",
    "generator_flavor_args",
    "parse_flavor",
    "version_prefix",
    "version_string",
]
