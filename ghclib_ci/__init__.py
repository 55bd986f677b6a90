"""
ghclib-ci - build, package and smoke test ghc-lib against a chosen GHC flavor.
"""

from .cli import main
from .flavor import DaFlavor, MasterFlavor, Release, ReleaseFlavor, version_string
from .pipeline import Pipeline, PipelineContext, PipelineError

__all__ = [
    "DaFlavor",
    "MasterFlavor",
    "Pipeline",
    "PipelineContext",
    "PipelineError",
    "Release",
    "ReleaseFlavor",
    "main",
    "version_string",
]
