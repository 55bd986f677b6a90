from __future__ import annotations

from pathlib import Path
import io
import tempfile
import textwrap
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

import yaml

from ghclib_ci.console import Console
from ghclib_ci.workspace import (
    Workspace,
    patch_constraint_text,
    patch_version_text,
    render_yaml_fragment,
)


class WorkspaceCleanupTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.workspace = Workspace(self.root, console=Console(level="none"))

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_cleanup_without_targets_is_a_no_op(self) -> None:
        (self.root / "stack.yaml").write_text("packages:\n- .\n")
        self.assertEqual(self.workspace.cleanup(), [])
        self.assertEqual(self.workspace.cleanup(), [])
        self.assertTrue((self.root / "stack.yaml").exists())

    def test_cleanup_removes_leftovers(self) -> None:
        (self.root / "ghc" / "hadrian").mkdir(parents=True)
        (self.root / "ghc-lib").mkdir()
        (self.root / "ghc-lib-parser").mkdir()
        (self.root / "ghc-lib-0.20200630.tar.gz").write_bytes(b"")
        (self.root / "stack.yaml.lock").write_text("")
        (self.root / "ghc-lib-gen.cabal").write_text("keep")

        removed = self.workspace.cleanup()

        self.assertEqual(
            sorted(path.name for path in removed),
            ["ghc", "ghc-lib", "ghc-lib-0.20200630.tar.gz", "ghc-lib-parser", "stack.yaml.lock"],
        )
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["ghc-lib-gen.cabal"])

    def test_cleanup_reports_removals(self) -> None:
        (self.root / "ghc").mkdir()
        workspace = Workspace(self.root, console=Console(level="info"))
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            workspace.cleanup()
        self.assertIn(f"# Removing {self.root / 'ghc'}", buffer.getvalue())

    def test_other_deletion_errors_propagate(self) -> None:
        (self.root / "ghc").mkdir()
        with patch("ghclib_ci.workspace.shutil.rmtree", side_effect=PermissionError("denied")):
            with self.assertRaises(PermissionError):
                self.workspace.cleanup()

    def test_dry_run_keeps_files(self) -> None:
        (self.root / "ghc").mkdir()
        workspace = Workspace(self.root, console=Console(level="none", dry_run=True), dry_run=True)
        with redirect_stdout(io.StringIO()):
            removed = workspace.cleanup()
        self.assertEqual(removed, [self.root / "ghc"])
        self.assertTrue((self.root / "ghc").exists())


class MetadataPatchTests(unittest.TestCase):
    def test_version_patch_changes_only_the_version(self) -> None:
        text = "name: ghc-lib-parser\nversion: 0.1.0\nlicense: BSD-3-Clause\n"
        self.assertEqual(
            patch_version_text(text, "8.8.1.20200630"),
            "name: ghc-lib-parser\nversion: 8.8.1.20200630\nlicense: BSD-3-Clause\n",
        )

    def test_constraint_patch(self) -> None:
        text = "    build-depends:\n        ghc-lib-parser\n"
        self.assertEqual(
            patch_constraint_text(text, "8.8.1.20200630"),
            "    build-depends:\n        ghc-lib-parser == 8.8.1.20200630\n",
        )

    def test_patch_file_in_place(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cabal = Path(tmp) / "ghc-lib.cabal"
            cabal.write_text("name: ghc-lib\nversion: 0.1.0\nbuild-depends: base, ghc-lib-parser\n")
            workspace = Workspace(Path(tmp), console=Console(level="none"))

            workspace.patch_file(cabal, "0.20200630", constraint=True)

            self.assertEqual(
                cabal.read_text(),
                "name: ghc-lib\nversion: 0.20200630\nbuild-depends: base, ghc-lib-parser == 0.20200630\n",
            )


class ConfigAppendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.workspace = Workspace(self.root, console=Console(level="none"))
        self.config = self.root / "stack.yaml"
        self.config.write_text(
            textwrap.dedent(
                """\
                resolver: lts-14.6
                packages:
                - ."""
            )
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_packages_extend_the_list(self) -> None:
        self.workspace.append_packages(self.config, ["ghc-lib-parser", "examples/mini-hlint"])
        data = yaml.safe_load(self.config.read_text())
        self.assertEqual(data["packages"], [".", "ghc-lib-parser", "examples/mini-hlint"])

    def test_yaml_fragments_keep_structure(self) -> None:
        self.workspace.append_packages(self.config, ["ghc-lib"])
        self.workspace.append_yaml(self.config, {"flags": {"mini-compile": {"daml-unit-ids": True}}})
        data = yaml.safe_load(self.config.read_text())
        self.assertEqual(data["packages"], [".", "ghc-lib"])
        self.assertEqual(data["flags"], {"mini-compile": {"daml-unit-ids": True}})

    def test_ghc_options_fragment(self) -> None:
        fragment = render_yaml_fragment({"ghc-options": {"$everything": "-O0 -j"}})
        self.assertEqual(yaml.safe_load(fragment), {"ghc-options": {"$everything": "-O0 -j"}})
        self.assertTrue(fragment.startswith("ghc-options:\n"))


if __name__ == "__main__":
    unittest.main()
