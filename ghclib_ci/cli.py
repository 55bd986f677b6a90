"""Command line interface: build ghc-lib and ghc-lib-parser tarballs."""
from __future__ import annotations

from argparse import SUPPRESS, ArgumentParser, Namespace
from pathlib import Path
from typing import Callable, Iterable
import platform
import sys

import yaml

from core.command_runner import (
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    TimedCommandRunner,
)

from .console import Console
from .flavor import (
    DEFAULT_DA_GEN_FLAVOR,
    DEFAULT_DA_MERGE_BASE,
    DEFAULT_DA_PATCHES,
    DEFAULT_DA_UPSTREAM,
    DaFlavor,
    GhcFlavor,
    describe_flavor,
    parse_flavor,
)
from .options import VERBOSITY_LEVELS, StackOptions
from .pipeline import GHCI_CHECK_MODES, Pipeline, PipelineContext, PipelineError
from .policy import HostInfo
from .settings import Settings, load_settings, resolve_settings_path
from .workspace import Workspace


_DA_ONLY = {
    "merge_base_sha": "--merge-base-sha",
    "patches": "--patch",
    "gen_flavor": "--gen-flavor",
    "upstream": "--upstream",
}


def _build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="ghclib-ci",
        description="Build ghc-lib and ghc-lib-parser tarballs.",
    )

    flavor_group = parser.add_argument_group("GHC flavor (choose --ghc-flavor or --da)")
    flavor_group.add_argument(
        "--ghc-flavor",
        dest="ghc_flavor",
        metavar="FLAVOR",
        help="The ghc-flavor to test against: ghc-8.10.1, ghc-8.8.[1-4], ghc-master or a GHC commit",
    )
    flavor_group.add_argument("--da", action="store_true", help="Enables DA custom build.")
    # DA-only options default to SUPPRESS so their presence can be detected.
    flavor_group.add_argument(
        "--merge-base-sha",
        dest="merge_base_sha",
        default=SUPPRESS,
        help=f"DA flavour only. Base commit to use from the GHC repo. (default: {DEFAULT_DA_MERGE_BASE})",
    )
    flavor_group.add_argument(
        "--patch",
        dest="patches",
        action="append",
        default=SUPPRESS,
        help=(
            "DA flavour only. Commits to merge in from the DA GHC fork, referenced as 'upstream'. "
            "Can be specified multiple times; any --patch replaces the default "
            f"({' '.join(DEFAULT_DA_PATCHES)})."
        ),
    )
    flavor_group.add_argument(
        "--gen-flavor",
        dest="gen_flavor",
        default=SUPPRESS,
        help=f"DA flavor only. Flavor to pass on to ghc-lib-gen. (default: {DEFAULT_DA_GEN_FLAVOR})",
    )
    flavor_group.add_argument(
        "--upstream",
        dest="upstream",
        default=SUPPRESS,
        help=f"DA flavor only. URL for the git remote add command. (default: {DEFAULT_DA_UPSTREAM})",
    )

    stack_group = parser.add_argument_group("stack options")
    stack_group.add_argument("--stack-yaml", dest="stack_yaml", help="If specified, pass '--stack-yaml=xxx' to stack")
    stack_group.add_argument("--resolver", help="If specified, pass '--resolver=xxx' to stack")
    stack_group.add_argument(
        "--verbosity",
        choices=VERBOSITY_LEVELS,
        help="If specified, pass '--verbosity=xxx' to stack",
    )
    stack_group.add_argument(
        "--cabal-verbose",
        dest="cabal_verbose",
        action="store_true",
        help="If specified, pass '--cabal-verbose' to stack",
    )
    stack_group.add_argument(
        "--ghc-options",
        dest="ghc_options",
        help="If specified, pass '--ghc-options=\"xxx\"' to stack build",
    )

    parser.add_argument("-c", "--config", help="Settings file (.toml, .yaml or .json); defaults to $GHCLIB_CI_CONFIG")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    parser.add_argument(
        "-l",
        "--log",
        choices=list(Console.LEVELS),
        default="info",
        help="Console level for the driver's own messages (default: info)",
    )
    parser.add_argument(
        "--ghci-checks",
        dest="ghci_checks",
        choices=GHCI_CHECK_MODES,
        default="auto",
        help="Run the GHCi load checks always, never, or as the policy table decides (default: auto)",
    )
    return parser


def _resolve_flavor(parser: ArgumentParser, args: Namespace) -> GhcFlavor:
    given_da_options = [name for name in _DA_ONLY if hasattr(args, name)]
    if args.da and args.ghc_flavor is not None:
        parser.error("--da and --ghc-flavor are mutually exclusive")
    if args.da:
        patches = getattr(args, "patches", None)
        return DaFlavor(
            merge_base_sha=getattr(args, "merge_base_sha", DEFAULT_DA_MERGE_BASE),
            patches=tuple(patches) if patches else DEFAULT_DA_PATCHES,
            gen_flavor=getattr(args, "gen_flavor", DEFAULT_DA_GEN_FLAVOR),
            upstream=getattr(args, "upstream", DEFAULT_DA_UPSTREAM),
        )
    if given_da_options:
        flags = ", ".join(_DA_ONLY[name] for name in given_da_options)
        parser.error(f"{flags} can only be used with --da")
    if args.ghc_flavor is None:
        parser.error("one of --ghc-flavor or --da is required")
    try:
        flavor = parse_flavor(args.ghc_flavor)
    except ValueError as exc:
        parser.error(str(exc))
    return flavor


def parse_arguments(argv: Iterable[str]) -> tuple[Namespace, GhcFlavor, StackOptions]:
    """Parse ``argv`` into the flavor and stack options; usage errors exit with status 2."""

    parser = _build_parser()
    args = parser.parse_args(list(argv))
    flavor = _resolve_flavor(parser, args)
    stack = StackOptions(
        stack_yaml=args.stack_yaml,
        resolver=args.resolver,
        verbosity=args.verbosity,
        cabal_verbose=args.cabal_verbose,
        ghc_options=args.ghc_options,
    )
    return args, flavor, stack


def _make_runner(dry_run: bool) -> CommandRunner:
    if dry_run:
        return RecordingCommandRunner()
    return TimedCommandRunner(SubprocessCommandRunner())


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def main(
    argv: Iterable[str] | None = None,
    *,
    workspace: Path | None = None,
    runner_factory: Callable[[bool], CommandRunner] = _make_runner,
) -> int:
    args, flavor, stack = parse_arguments(sys.argv[1:] if argv is None else argv)
    root = workspace or Path.cwd()
    console = Console(level=args.log, dry_run=args.dry_run)

    try:
        settings: Settings = load_settings(resolve_settings_path(args.config, workspace=root))
    except (OSError, TypeError, ValueError, yaml.YAMLError) as exc:
        console.error(f"Failed to load settings: {exc}")
        return 2

    runner = runner_factory(args.dry_run)
    context = PipelineContext(
        flavor=flavor,
        stack=stack,
        workspace=Workspace(root, console=console, dry_run=args.dry_run),
        runner=runner,
        console=console,
        host=HostInfo(os_name=platform.system().lower()),
        settings=settings,
        ghci_checks=args.ghci_checks,
    )
    console.info(f"Building ghc-lib for {describe_flavor(flavor)}")

    try:
        version = Pipeline(context).run()
    except PipelineError as exc:
        console.error(str(exc))
        return exc.exit_code
    finally:
        if args.dry_run and isinstance(runner, RecordingCommandRunner):
            _emit_dry_run_output(runner, workspace=root)

    print(version)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
