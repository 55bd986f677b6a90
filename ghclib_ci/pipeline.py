"""Build the ghc-lib and ghc-lib-parser sdists and smoke test them.

The run is a fixed, ordered list of named :class:`Stage` objects sharing one
:class:`PipelineContext`. Every external tool is invoked through a
:class:`~core.command_runner.CommandRunner`; the first failing command stops
the run with a :class:`PipelineError` naming the stage. Artifacts produced
before the failure are left on disk.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, List, Sequence

from core.command_runner import CommandError, CommandResult, CommandRunner, format_command

from .console import Console
from .flavor import (
    DaFlavor,
    GhcFlavor,
    MasterFlavor,
    ReleaseFlavor,
    flavor_kind,
    generator_flavor_args,
    version_string,
)
from .options import StackOptions
from .policy import HostInfo
from .settings import Settings
from .workspace import FULL_PACKAGE, GHC_DIR, PARSER_PACKAGE, Workspace


WINDOWS_BOOTSTRAP_PACKAGES = (
    "autoconf",
    "automake-wrapper",
    "make",
    "patch",
    "python",
    "tar",
    "mintty",
)

MERGE_IDENTITY = (
    "-c",
    "user.name=Cookie Monster",
    "-c",
    "user.email=cookie.monster@seasame-street.com",
)

UPSTREAM_REMOTE = "upstream"

HADRIAN_GHC_OPTIONS = {"ghc-options": {"$everything": "-O0 -j"}}

# GHC master depends on 'exceptions' since commit 30272412 (2020-05-04). Older
# boot compilers may not ship it, which breaks computing the parser modules.
MASTER_HADRIAN_EXTRA_DEPS = {"extra-deps": ["exceptions-0.10.4"]}

EXAMPLES = ("mini-hlint", "mini-compile", "strip-locs")

DA_STACK_FLAGS = {"flags": {"mini-compile": {"daml-unit-ids": True}}}

SMOKE_TESTS = (
    ("mini-hlint", "examples/mini-hlint/test/MiniHlintTest.hs"),
    ("mini-hlint", "examples/mini-hlint/test/MiniHlintTest_fatal_error.hs"),
    ("mini-hlint", "examples/mini-hlint/test/MiniHlintTest_non_fatal_error.hs"),
    ("mini-hlint", "examples/mini-hlint/test/MiniHlintTest_respect_dynamic_pragma.hs"),
    ("mini-hlint", "examples/mini-hlint/test/MiniHlintTest_fail_unknown_pragma.hs"),
    ("strip-locs", "examples/mini-compile/test/MiniCompileTest.hs"),
    ("mini-compile", "examples/mini-compile/test/MiniCompileTest.hs"),
)

GHCI_CHECK_MODES = ("auto", "always", "never")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class PipelineError(RuntimeError):
    """A stage failed; carries the stage name and, for commands, the exit status."""

    def __init__(
        self,
        stage: str,
        *,
        returncode: int | None = None,
        command: Sequence[str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.stage = stage
        self.returncode = returncode
        self.command = list(command) if command is not None else None
        self.reason = reason
        if command is not None:
            message = f"stage '{stage}' failed (exit {returncode}): {format_command(command)}"
            if reason:
                message = f"{message}\n{reason}"
        else:
            message = f"stage '{stage}' failed: {reason}"
        super().__init__(message)

    @property
    def exit_code(self) -> int:
        return self.returncode if self.returncode else 1


@dataclass(slots=True)
class PipelineContext:
    flavor: GhcFlavor
    stack: StackOptions
    workspace: Workspace
    runner: CommandRunner
    console: Console
    host: HostInfo
    settings: Settings = field(default_factory=Settings)
    ghci_checks: str = "auto"
    clock: Callable[[], date] = utc_today
    version: str | None = None
    result: str | None = None

    @property
    def stack_config(self) -> Path:
        return self.workspace.path(self.stack.config_path)

    def run(self, command: Sequence[str], *, cwd: Path | None = None, note: str | None = None) -> CommandResult:
        return self.runner.run(command, cwd=cwd or self.workspace.root, note=note, stream=True)

    def git(self, *args: str) -> CommandResult:
        return self.run(["git", *args], cwd=self.workspace.ghc_dir, note="ghc")

    def stack_run(self, *action: str) -> CommandResult:
        return self.run(self.stack.stack(*action))

    def compute_version(self) -> str:
        return version_string(self.flavor, self.clock())


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    action: Callable[[PipelineContext], None]
    description: str = ""


def _cleanup(ctx: PipelineContext) -> None:
    removed = ctx.workspace.cleanup()
    if not removed:
        ctx.console.debug("Nothing left over from a previous run")


def _restore_config(ctx: PipelineContext) -> None:
    ctx.run(["git", "checkout", str(ctx.stack.config_path)])


def _platform_bootstrap(ctx: PipelineContext) -> None:
    if ctx.host.os_name != "windows":
        ctx.console.debug(f"No native bootstrap needed on {ctx.host.os_name}")
        return
    ctx.run(ctx.stack.exec("pacman", "-S", *WINDOWS_BOOTSTRAP_PACKAGES, "--noconfirm"))


def _build_tools(ctx: PipelineContext) -> None:
    # hadrian dependencies pulled in by ghc-lib-gen can require these.
    ctx.stack_run("build", "alex", "happy")


def _clone(ctx: PipelineContext) -> None:
    ctx.run(["git", "clone", ctx.settings.ghc_repository, GHC_DIR])


def _checkout(ctx: PipelineContext) -> None:
    flavor = ctx.flavor
    if isinstance(flavor, ReleaseFlavor):
        ctx.git("fetch", "--tags")
        ctx.git("checkout", flavor.release.tag)
    elif isinstance(flavor, DaFlavor):
        ctx.git("fetch", "--tags")
        ctx.git("checkout", flavor.merge_base_sha)
        ctx.git("remote", "add", UPSTREAM_REMOTE, flavor.upstream)
        ctx.git("fetch", UPSTREAM_REMOTE)
        ctx.git(*MERGE_IDENTITY, "merge", "--no-edit", *flavor.patches)
    elif isinstance(flavor, MasterFlavor):
        ctx.git("checkout", flavor.commit)
    else:
        raise TypeError(f"Unknown GHC flavor: {flavor!r}")
    ctx.git("submodule", "update", "--init", "--recursive")


def _compiler_feedback(ctx: PipelineContext) -> None:
    ctx.run(ctx.stack.exec("ghc", "--version"))


def _build_generator(ctx: PipelineContext) -> None:
    ctx.stack_run("--no-terminal", "build")


def _version(ctx: PipelineContext) -> None:
    ctx.version = ctx.compute_version()
    ctx.console.info(f"Packaging version {ctx.version}")


def _configure_hadrian(ctx: PipelineContext) -> None:
    hadrian = ctx.workspace.hadrian_config
    ctx.workspace.append_yaml(hadrian, HADRIAN_GHC_OPTIONS)
    if isinstance(ctx.flavor, MasterFlavor):
        ctx.workspace.append_yaml(hadrian, MASTER_HADRIAN_EXTRA_DEPS)


def _make_tarball(ctx: PipelineContext, target: str) -> None:
    ctx.workspace.append_packages(ctx.stack_config, [GHC_DIR])
    ctx.stack_run("sdist", GHC_DIR, "--tar-dir=.")
    ctx.run(["tar", "-xvf", f"{target}.tar.gz"])


def _package(ctx: PipelineContext, package: str, *, constraint: bool) -> None:
    if ctx.version is None:
        raise RuntimeError("package version has not been computed")
    workspace = ctx.workspace
    cabal_file = workspace.path(GHC_DIR, f"{package}.cabal")
    target = f"{package}-{ctx.version}"

    ctx.run(ctx.stack.exec("ghc-lib-gen", GHC_DIR, f"--{package}", *generator_flavor_args(ctx.flavor)))
    workspace.patch_file(cabal_file, ctx.version, constraint=constraint)
    _make_tarball(ctx, target)
    workspace.rename(workspace.path(target), workspace.path(package))
    workspace.delete_file(cabal_file)
    _restore_config(ctx)


def _package_parser(ctx: PipelineContext) -> None:
    _package(ctx, PARSER_PACKAGE, constraint=False)


def _reset_source(ctx: PipelineContext) -> None:
    ctx.git("checkout", ".")
    ctx.workspace.append_yaml(ctx.workspace.hadrian_config, HADRIAN_GHC_OPTIONS)


def _package_full(ctx: PipelineContext) -> None:
    _package(ctx, FULL_PACKAGE, constraint=True)


def _detect_compiler(ctx: PipelineContext) -> None:
    result = ctx.runner.run(
        ctx.stack.exec("ghc", "--numeric-version"),
        cwd=ctx.workspace.root,
        note="probe",
        stream=False,
    )
    version = result.stdout.strip() or None
    ctx.host = replace(ctx.host, compiler_version=version)
    ctx.console.info(f"Host compiler: {version or 'unknown'} on {ctx.host.os_name}")


def _assemble_config(ctx: PipelineContext) -> None:
    workspace = ctx.workspace
    workspace.append_packages(
        ctx.stack_config,
        [PARSER_PACKAGE, FULL_PACKAGE, *(f"examples/{name}" for name in EXAMPLES)],
    )
    kind = flavor_kind(ctx.flavor)
    extra_deps = ctx.settings.policies.extra_dependencies(ctx.host, kind)
    if extra_deps:
        workspace.append_yaml(ctx.stack_config, {"extra-deps": extra_deps})
    if isinstance(ctx.flavor, DaFlavor):
        workspace.append_yaml(ctx.stack_config, DA_STACK_FLAGS)


def _build(ctx: PipelineContext) -> None:
    # Separate commands so each library build is timed on its own.
    ctx.run(ctx.stack.build([PARSER_PACKAGE]))
    ctx.run(ctx.stack.build([FULL_PACKAGE]))
    ctx.run(ctx.stack.build(EXAMPLES))


def should_run_ghci_checks(ctx: PipelineContext) -> bool:
    if ctx.ghci_checks == "always":
        return True
    if ctx.ghci_checks == "never":
        ctx.console.info("Skipping GHCi checks (--ghci-checks=never)")
        return False
    rules = ctx.settings.policies.ghci_skip_reasons(ctx.host, flavor_kind(ctx.flavor))
    for rule in rules:
        ctx.console.info(f"Skipping GHCi checks ({rule.name}): {rule.reason}")
    return not rules


def _smoke_tests(ctx: PipelineContext) -> None:
    for program, fixture in SMOKE_TESTS:
        ctx.run(ctx.stack.exec(program, fixture, terminal=False))
    if should_run_ghci_checks(ctx):
        # Everything must load in GHCi, see https://github.com/digital-asset/ghc-lib/issues/27
        for package in (PARSER_PACKAGE, FULL_PACKAGE):
            ctx.run(
                ctx.stack.exec(
                    "ghc",
                    "-ignore-dot-ghci",
                    f"-package={package}",
                    "-e",
                    "print 1",
                    terminal=False,
                )
            )


def _result(ctx: PipelineContext) -> None:
    ctx.result = ctx.compute_version()
    if ctx.version is not None and ctx.result != ctx.version:
        ctx.console.warning(
            f"Version changed during the run: packaged as {ctx.version}, reporting {ctx.result}"
        )


def default_stages() -> List[Stage]:
    return [
        Stage("cleanup", _cleanup, "Remove leftovers from a previous run"),
        Stage("restore-config", _restore_config, "Reset the stack configuration file"),
        Stage("platform-bootstrap", _platform_bootstrap, "Install native tools on Windows"),
        Stage("build-tools", _build_tools, "Build alex and happy"),
        Stage("clone", _clone, "Clone GHC"),
        Stage("checkout", _checkout, "Check out and patch the selected flavor"),
        Stage("generator-feedback", _compiler_feedback, "Show the compiler used by ghc-lib-gen"),
        Stage("build-generator", _build_generator, "Build ghc-lib-gen"),
        Stage("version", _version, "Compute the package version"),
        Stage("configure-hadrian", _configure_hadrian, "Extend hadrian's stack configuration"),
        Stage("package-parser", _package_parser, "Generate and package ghc-lib-parser"),
        Stage("reset-source", _reset_source, "Reset the GHC tree"),
        Stage("package-full", _package_full, "Generate and package ghc-lib"),
        Stage("detect-compiler", _detect_compiler, "Detect the host compiler version"),
        Stage("assemble-config", _assemble_config, "Add packages and examples to the stack configuration"),
        Stage("compiler-feedback", _compiler_feedback, "Show the compiler used for ghc-lib"),
        Stage("build", _build, "Build ghc-lib-parser, ghc-lib and the examples"),
        Stage("smoke-tests", _smoke_tests, "Run the examples and GHCi checks"),
        Stage("result", _result, "Report the version"),
    ]


class Pipeline:
    def __init__(self, context: PipelineContext, stages: Sequence[Stage] | None = None) -> None:
        self._context = context
        self._stages = list(stages) if stages is not None else default_stages()

    def run(self) -> str:
        ctx = self._context
        for stage in self._stages:
            ctx.console.debug(f"Stage {stage.name}: {stage.description}")
            try:
                stage.action(ctx)
            except CommandError as exc:
                # Streamed output is already on the terminal; captured output is not.
                captured = None if exc.result.streamed else exc.result.stderr.strip()
                raise PipelineError(
                    stage.name,
                    returncode=exc.result.returncode,
                    command=exc.result.command,
                    reason=captured or None,
                ) from exc
            except OSError as exc:
                raise PipelineError(stage.name, reason=str(exc)) from exc
        if ctx.result is None:
            ctx.result = ctx.compute_version()
        return ctx.result


__all__ = [
    "EXAMPLES",
    "GHCI_CHECK_MODES",
    "SMOKE_TESTS",
    "Pipeline",
    "PipelineContext",
    "PipelineError",
    "Stage",
    "default_stages",
    "should_run_ghci_checks",
    "utc_today",
]
