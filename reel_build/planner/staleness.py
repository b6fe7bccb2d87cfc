"""Decide, per format and stage, whether an artifact must be (re)produced.

Staleness is existence based only: an artifact that exists is trusted, whatever
its content. Editing the animation without deleting outputs (or passing
``--force``) is invisible here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from reel_build.common.paths import BuildPaths
from reel_build.common.types import RunFlags
from reel_build.formats.registry import FormatDescriptor

ExistsFn = Callable[[Path], bool]

STAGE_ORDER = ("render", "encode", "mux", "still")


@dataclass(frozen=True)
class StagePlan:
    format: FormatDescriptor
    render_needed: bool
    encode_needed: bool
    mux_needed: bool
    still_needed: bool

    def needed(self, stage: str) -> bool:
        if stage not in STAGE_ORDER:
            raise KeyError(stage)
        return bool(getattr(self, f"{stage}_needed"))

    def to_dict(self) -> dict[str, bool]:
        return {stage: self.needed(stage) for stage in STAGE_ORDER}


@dataclass(frozen=True)
class BuildPlan:
    stages: tuple[StagePlan, ...]

    @property
    def browser_needed(self) -> bool:
        return any(p.render_needed or p.still_needed for p in self.stages)

    @property
    def video_needed(self) -> bool:
        return any(p.encode_needed or p.mux_needed for p in self.stages)

    @property
    def audio_needed(self) -> bool:
        return any(p.mux_needed for p in self.stages)

    def for_format(self, key: str) -> StagePlan:
        for plan in self.stages:
            if plan.format.key == key:
                return plan
        raise KeyError(key)


def defining_artifact(stage: str, fmt: FormatDescriptor, paths: BuildPaths) -> Path:
    if stage == "render":
        return paths.first_frame(fmt.key)
    if stage == "encode":
        return paths.silent_video(fmt.key)
    if stage == "mux":
        return paths.final_video(fmt.key)
    if stage == "still":
        return paths.still_image(fmt.key)
    raise KeyError(stage)


def _is_excluded(stage: str, flags: RunFlags) -> bool:
    return bool(getattr(flags, f"skip_{stage}"))


def resolve_plan(
    formats: Sequence[FormatDescriptor],
    flags: RunFlags,
    paths: BuildPaths,
    exists: ExistsFn = os.path.exists,
) -> BuildPlan:
    plans: list[StagePlan] = []
    for fmt in formats:
        decisions: dict[str, bool] = {}
        for stage in STAGE_ORDER:
            if _is_excluded(stage, flags):
                decisions[stage] = False
                continue
            decisions[stage] = bool(flags.force) or not exists(defining_artifact(stage, fmt, paths))
        plans.append(
            StagePlan(
                format=fmt,
                render_needed=decisions["render"],
                encode_needed=decisions["encode"],
                mux_needed=decisions["mux"],
                still_needed=decisions["still"],
            )
        )
    return BuildPlan(stages=tuple(plans))
