from __future__ import annotations

from pathlib import Path
import os
import tempfile
import textwrap
import unittest

import yaml

from ghclib_ci.policy import HostInfo, PolicyRule, PolicyTables, load_policy_tables
from ghclib_ci.settings import (
    GHC_REPOSITORY,
    SETTINGS_ENV_VAR,
    Settings,
    load_settings,
    resolve_settings_path,
)


class PolicyRuleTests(unittest.TestCase):
    def test_empty_selectors_match_everything(self) -> None:
        rule = PolicyRule(name="all")
        self.assertTrue(rule.matches(HostInfo("linux"), "ghc-8.8.1"))

    def test_disabled_rule_never_matches(self) -> None:
        rule = PolicyRule(name="off", enabled=False)
        self.assertFalse(rule.matches(HostInfo("linux"), "ghc-8.8.1"))

    def test_ghc_17599_window(self) -> None:
        tables = PolicyTables()
        self.assertTrue(tables.ghci_skip_reasons(HostInfo("windows", "8.8.1"), "ghc-8.8.1"))
        self.assertTrue(tables.ghci_skip_reasons(HostInfo("windows", "8.8.2"), "ghc-master"))
        self.assertFalse(tables.ghci_skip_reasons(HostInfo("windows", "8.8.3"), "ghc-8.8.1"))
        self.assertFalse(tables.ghci_skip_reasons(HostInfo("linux", "8.8.1"), "ghc-8.8.1"))
        self.assertFalse(tables.ghci_skip_reasons(HostInfo("windows", None), "ghc-8.8.1"))

    def test_transformers_pin_only_for_master_on_8_4_4(self) -> None:
        tables = PolicyTables()
        self.assertEqual(
            tables.extra_dependencies(HostInfo("linux", "8.4.4"), "ghc-master"),
            ["transformers-0.5.6.2"],
        )
        self.assertEqual(tables.extra_dependencies(HostInfo("linux", "8.4.4"), "ghc-8.8.1"), [])
        self.assertEqual(tables.extra_dependencies(HostInfo("linux", "8.6.5"), "ghc-master"), [])


class PolicyOverrideTests(unittest.TestCase):
    def test_override_existing_rule(self) -> None:
        tables = load_policy_tables({"ghci_skip": {"ghc-17599": {"compilers": ["8.8.1", "8.8.2", "8.8.3"]}}})
        self.assertTrue(tables.ghci_skip_reasons(HostInfo("windows", "8.8.3"), "ghc-8.8.1"))
        rule = tables.ghci_skip[0]
        self.assertEqual(rule.os, frozenset({"windows"}))
        self.assertIn("17599", rule.reason)

    def test_disable_rule(self) -> None:
        tables = load_policy_tables({"ghci_skip": {"ghc-17599": {"enabled": False}}})
        self.assertFalse(tables.ghci_skip_reasons(HostInfo("windows", "8.8.1"), "ghc-8.8.1"))

    def test_add_rule(self) -> None:
        tables = load_policy_tables(
            {"extra_deps": {"extra": {"os": ["Darwin"], "extra_deps": "foo-1.0"}}}
        )
        self.assertEqual(
            tables.extra_dependencies(HostInfo("darwin", "9.0.1"), "ghc-8.10.1"),
            ["foo-1.0"],
        )

    def test_unknown_field_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_policy_tables({"ghci_skip": {"ghc-17599": {"compiler": ["8.8.1"]}}})

    def test_unknown_table_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_policy_tables({"smoke": {}})

    def test_unquoted_compiler_version_rejected(self) -> None:
        overrides = yaml.safe_load("ghci_skip:\n  ghc-17599:\n    compilers: [8.10]\n")
        with self.assertRaises(TypeError) as ctx:
            load_policy_tables(overrides)
        self.assertIn("policy.ghci_skip.ghc-17599.compilers", str(ctx.exception))

    def test_quoted_compiler_version_kept_exactly(self) -> None:
        overrides = yaml.safe_load('ghci_skip:\n  ghc-17599:\n    compilers: ["8.10"]\n')
        tables = load_policy_tables(overrides)
        self.assertTrue(tables.ghci_skip_reasons(HostInfo("windows", "8.10"), "ghc-8.8.1"))
        self.assertFalse(tables.ghci_skip_reasons(HostInfo("windows", "8.1"), "ghc-8.8.1"))

    def test_enabled_must_be_boolean(self) -> None:
        with self.assertRaises(TypeError):
            load_policy_tables({"ghci_skip": {"ghc-17599": {"enabled": "no"}}})


class SettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_defaults_without_file(self) -> None:
        settings = load_settings(None)
        self.assertEqual(settings.ghc_repository, GHC_REPOSITORY)
        self.assertEqual([rule.name for rule in settings.policies.ghci_skip], ["ghc-17599"])

    def test_toml_settings(self) -> None:
        path = self.root / "ci.toml"
        path.write_text(
            textwrap.dedent(
                """
                [ghc]
                repository = "https://example.com/ghc.git"

                [policy.ghci_skip.ghc-17599]
                enabled = false
                """
            )
        )
        settings = load_settings(path)
        self.assertEqual(settings.ghc_repository, "https://example.com/ghc.git")
        self.assertFalse(settings.policies.ghci_skip[0].enabled)

    def test_yaml_settings(self) -> None:
        path = self.root / "ci.yaml"
        path.write_text(
            textwrap.dedent(
                """
                policy:
                  extra_deps:
                    pin-mtl:
                      compilers: ["8.6.5"]
                      extra_deps: [mtl-2.2.2]
                """
            )
        )
        settings = load_settings(path)
        self.assertEqual(
            settings.policies.extra_dependencies(HostInfo("linux", "8.6.5"), "ghc-8.8.1"),
            ["mtl-2.2.2"],
        )

    def test_unknown_section_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Settings.from_mapping({"stack": {}})

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_settings(self.root / "missing.toml")

    def test_path_resolution(self) -> None:
        previous = os.environ.get(SETTINGS_ENV_VAR)
        if previous is None:
            self.addCleanup(os.environ.pop, SETTINGS_ENV_VAR, None)
        else:
            self.addCleanup(os.environ.__setitem__, SETTINGS_ENV_VAR, previous)
        os.environ[SETTINGS_ENV_VAR] = "env.toml"

        self.assertEqual(resolve_settings_path(None, workspace=self.root), self.root / "env.toml")
        self.assertEqual(resolve_settings_path("cli.toml", workspace=self.root), self.root / "cli.toml")

        os.environ.pop(SETTINGS_ENV_VAR)
        self.assertIsNone(resolve_settings_path(None, workspace=self.root))


if __name__ == "__main__":
    unittest.main()
