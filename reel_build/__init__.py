"""Multi-format reel build pipeline (frames -> silent MP4 -> final MP4 + still)."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from reel_build.common.types import BuildConfig, RunFlags
    from reel_build.pipeline_runner import RunSummary, run_build

__all__ = ["BuildConfig", "RunFlags", "RunSummary", "run_build"]

_SOURCES = {
    "BuildConfig": "reel_build.common.types",
    "RunFlags": "reel_build.common.types",
    "RunSummary": "reel_build.pipeline_runner",
    "run_build": "reel_build.pipeline_runner",
}


def __getattr__(name: str) -> Any:
    if name in _SOURCES:
        from importlib import import_module

        return getattr(import_module(_SOURCES[name]), name)
    raise AttributeError(f"module 'reel_build' has no attribute {name!r}")
