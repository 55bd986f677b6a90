"""Host/compiler policy tables for known upstream defect windows.

Some steps only apply, or must be skipped, for particular combinations of
host OS, bootstrap compiler and GHC flavor. Each combination is a named
:class:`PolicyRule` so the window can be adjusted from the settings file
instead of editing the pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Tuple

from core.config_loader import normalize_string_list


@dataclass(frozen=True, slots=True)
class HostInfo:
    os_name: str
    compiler_version: str | None = None


@dataclass(frozen=True, slots=True)
class PolicyRule:
    name: str
    reason: str = ""
    os: FrozenSet[str] = frozenset()
    compilers: FrozenSet[str] = frozenset()
    flavors: FrozenSet[str] = frozenset()
    extra_deps: Tuple[str, ...] = ()
    enabled: bool = True

    def matches(self, host: HostInfo, flavor_kind: str) -> bool:
        if not self.enabled:
            return False
        if self.os and host.os_name not in self.os:
            return False
        if self.compilers and host.compiler_version not in self.compilers:
            return False
        if self.flavors and flavor_kind not in self.flavors:
            return False
        return True


GHCI_SKIP_RULES: Tuple[PolicyRule, ...] = (
    PolicyRule(
        name="ghc-17599",
        reason="GHCi cannot load ghc-lib on Windows with ghc-8.8.1/8.8.2, see "
        "https://gitlab.haskell.org/ghc/ghc/issues/17599",
        os=frozenset({"windows"}),
        compilers=frozenset({"8.8.1", "8.8.2"}),
    ),
)

EXTRA_DEP_RULES: Tuple[PolicyRule, ...] = (
    PolicyRule(
        name="transformers-rws-cps",
        reason="Resolver lts-12.26 serves transformers-0.5.5.0 which lacks "
        "Control.Monad.Trans.RWS.CPS, needed by GHC master since 2019-09",
        compilers=frozenset({"8.4.4"}),
        flavors=frozenset({"ghc-master"}),
        extra_deps=("transformers-0.5.6.2",),
    ),
)

_RULE_FIELDS = {"reason", "os", "compilers", "flavors", "extra_deps", "enabled"}


@dataclass(slots=True)
class PolicyTables:
    ghci_skip: List[PolicyRule] = field(default_factory=lambda: list(GHCI_SKIP_RULES))
    extra_deps: List[PolicyRule] = field(default_factory=lambda: list(EXTRA_DEP_RULES))

    def ghci_skip_reasons(self, host: HostInfo, flavor_kind: str) -> List[PolicyRule]:
        return [rule for rule in self.ghci_skip if rule.matches(host, flavor_kind)]

    def extra_dependencies(self, host: HostInfo, flavor_kind: str) -> List[str]:
        deps: List[str] = []
        for rule in self.extra_deps:
            if not rule.matches(host, flavor_kind):
                continue
            for dep in rule.extra_deps:
                if dep not in deps:
                    deps.append(dep)
        return deps


def _apply_overrides(
    rules: Iterable[PolicyRule],
    overrides: Mapping[str, Any],
    *,
    table: str,
) -> List[PolicyRule]:
    by_name: Dict[str, PolicyRule] = {rule.name: rule for rule in rules}
    for name, raw in overrides.items():
        if not isinstance(raw, Mapping):
            raise TypeError(f"policy.{table}.{name} must be a table")
        unknown = set(raw) - _RULE_FIELDS
        if unknown:
            raise ValueError(
                f"policy.{table}.{name} has unknown field(s): {', '.join(sorted(unknown))}"
            )

        changes: Dict[str, Any] = {}
        for key in ("os", "compilers", "flavors"):
            if key in raw:
                values = normalize_string_list(raw[key], field_name=f"policy.{table}.{name}.{key}")
                if key == "os":
                    values = [value.lower() for value in values]
                changes[key] = frozenset(values)
        if "extra_deps" in raw:
            changes["extra_deps"] = tuple(
                normalize_string_list(raw["extra_deps"], field_name=f"policy.{table}.{name}.extra_deps")
            )
        if "reason" in raw:
            changes["reason"] = str(raw["reason"])
        if "enabled" in raw:
            if not isinstance(raw["enabled"], bool):
                raise TypeError(f"policy.{table}.{name}.enabled must be a boolean")
            changes["enabled"] = raw["enabled"]

        existing = by_name.get(name)
        by_name[name] = replace(existing, **changes) if existing else PolicyRule(name=name, **changes)
    return list(by_name.values())


def load_policy_tables(config: Mapping[str, Any] | None) -> PolicyTables:
    """Build the policy tables, applying ``[policy.*]`` overrides from settings."""

    tables = PolicyTables()
    if not config:
        return tables
    unknown = set(config) - {"ghci_skip", "extra_deps"}
    if unknown:
        raise ValueError(f"Unknown policy table(s): {', '.join(sorted(unknown))}")
    ghci_skip = config.get("ghci_skip") or {}
    extra_deps = config.get("extra_deps") or {}
    if not isinstance(ghci_skip, Mapping) or not isinstance(extra_deps, Mapping):
        raise TypeError("policy tables must be mappings of rule name to rule")
    tables.ghci_skip = _apply_overrides(tables.ghci_skip, ghci_skip, table="ghci_skip")
    tables.extra_deps = _apply_overrides(tables.extra_deps, extra_deps, table="extra_deps")
    return tables


__all__ = [
    "EXTRA_DEP_RULES",
    "GHCI_SKIP_RULES",
    "HostInfo",
    "PolicyRule",
    "PolicyTables",
    "load_policy_tables",
]
