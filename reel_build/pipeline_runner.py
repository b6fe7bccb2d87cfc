"""Build orchestrator: render -> encode -> mux -> still, per format.

Each format walks a fixed state machine. A stage whose artifact already exists
is skipped (see ``planner.staleness``); a stage whose prerequisite is missing is
a hard error. Formats run one after another and the first failure aborts the
run. Outputs of completed stages are kept on failure and the failing stage's
partial output is discarded, so the next run resumes where this one stopped;
the manifest is only written when every format succeeded. ``--clean`` only
deletes anything once the preconditions hold.
"""

from __future__ import annotations

import os
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator

from reel_build.assembler.ffmpeg_runner import EncodeError, Encoder
from reel_build.assembler.manifest_builder import build_manifest, write_manifest
from reel_build.capture.browser import RenderError, Renderer
from reel_build.capture.frames import reset_frames_dir, verify_frame_sequence
from reel_build.common.errors import (
    CapabilityError,
    DependencyError,
    PipelineError,
    PreconditionError,
    fail,
)
from reel_build.common.logging import get_logger
from reel_build.common.paths import BuildPaths
from reel_build.common.types import BuildConfig, RunFlags
from reel_build.formats.registry import DEFAULT_REGISTRY, FormatDescriptor, FormatRegistry
from reel_build.planner.staleness import BuildPlan, StagePlan, resolve_plan
from reel_build.retention.cleanup import clean_outputs, remove_frames


class FormatState(str, Enum):
    NOT_STARTED = "not_started"
    RENDERING = "rendering"
    ENCODING = "encoding"
    MUXING = "muxing"
    STILL_PENDING = "still_pending"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE = {
    FormatState.NOT_STARTED: FormatState.RENDERING,
    FormatState.RENDERING: FormatState.ENCODING,
    FormatState.ENCODING: FormatState.MUXING,
    FormatState.MUXING: FormatState.STILL_PENDING,
    FormatState.STILL_PENDING: FormatState.DONE,
}

_STATE_STAGE = {
    FormatState.RENDERING: "render",
    FormatState.ENCODING: "encode",
    FormatState.MUXING: "mux",
    FormatState.STILL_PENDING: "still",
}


@dataclass
class FormatRun:
    format: FormatDescriptor
    state: FormatState = FormatState.NOT_STARTED
    stage_results: list[dict[str, Any]] = field(default_factory=list)
    failed_stage: str | None = None
    error_code: str | None = None

    @property
    def current_stage(self) -> str | None:
        return _STATE_STAGE.get(self.state)

    def advance(self) -> FormatState:
        if self.state not in _NEXT_STATE:
            raise RuntimeError(f"Format {self.format.key} cannot advance from state {self.state.value}")
        self.state = _NEXT_STATE[self.state]
        return self.state

    def mark_failed(self, stage: str, error_code: str) -> None:
        self.state = FormatState.FAILED
        self.failed_stage = stage
        self.error_code = error_code

    def statuses(self) -> dict[str, str]:
        return {item["stage"]: item["status"] for item in self.stage_results}

    def executed_stages(self) -> list[str]:
        return [item["stage"] for item in self.stage_results if item["status"] == "executed"]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "format": self.format.key,
            "state": self.state.value,
            "stages": list(self.stage_results),
        }
        if self.failed_stage:
            payload["failed_stage"] = self.failed_stage
            payload["error_code"] = self.error_code
        return payload


@dataclass
class RunSummary:
    plan: BuildPlan
    formats: list[FormatRun]
    dry_run: bool = False
    manifest_path: Path | None = None

    def for_format(self, key: str) -> FormatRun:
        for run in self.formats:
            if run.format.key == key:
                return run
        raise KeyError(key)

    def stage_statuses(self) -> dict[str, dict[str, str]]:
        return {run.format.key: run.statuses() for run in self.formats}

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "browser_needed": self.plan.browser_needed,
            "video_needed": self.plan.video_needed,
            "plan": {p.format.key: p.to_dict() for p in self.plan.stages},
            "formats": [run.to_dict() for run in self.formats],
            "manifest": str(self.manifest_path) if self.manifest_path else None,
        }


def run_build(
    flags: RunFlags,
    config: BuildConfig,
    renderer: Renderer,
    encoder: Encoder,
    registry: FormatRegistry = DEFAULT_REGISTRY,
) -> RunSummary:
    logger = get_logger()
    paths = BuildPaths.from_root(config.output_root, config.basename)
    formats = registry.resolve_selection(flags.selected_format_keys)

    try:
        # Under clean the plan describes the tree as it will be after cleaning.
        plan = resolve_plan(formats, flags, paths, exists=_nothing_exists if flags.clean else os.path.exists)
        _log_plan(plan, paths, flags, logger)
        summary = RunSummary(plan=plan, formats=[FormatRun(format=p.format) for p in plan.stages])
        if config.dry_run:
            summary.dry_run = True
            return summary

        _check_preconditions(plan, config, encoder, logger)
        if flags.clean:
            clean_outputs(paths, registry.list())
        paths.dist_dir.mkdir(parents=True, exist_ok=True)

        with renderer_session(renderer, plan.browser_needed) as handle:
            for stage_plan, run in zip(plan.stages, summary.formats):
                _process_format(stage_plan, run, flags, config, paths, renderer, encoder, handle, logger)

        if not flags.retain_frames:
            remove_frames(paths, formats)

        payload = build_manifest(
            flags=flags,
            formats=formats,
            paths=paths,
            invocation=config.invocation,
            stage_statuses=summary.stage_statuses(),
        )
        summary.manifest_path = write_manifest(paths.manifest_path, payload)
        logger.info("run status=done formats=%d manifest=%s", len(formats), summary.manifest_path)
    except PipelineError:
        raise
    except Exception as exc:
        raise fail("pipeline", "PIPELINE_UNEXPECTED", str(exc)) from exc

    return summary


@contextmanager
def renderer_session(renderer: Renderer, needed: bool) -> Iterator[Any]:
    """Hold one renderer handle for the whole run; released on every exit path."""
    if not needed:
        yield None
        return
    try:
        handle = renderer.acquire()
    except RenderError as exc:
        raise PreconditionError(
            code="RENDERER_UNAVAILABLE",
            stage="preflight",
            message=f"Renderer could not be started: {exc}",
        ) from exc
    try:
        yield handle
    finally:
        renderer.release(handle)


def _nothing_exists(path: Path) -> bool:
    return False


@contextmanager
def _discard_on_failure(artifact: Path) -> Iterator[Path]:
    """Remove what a failed stage left at ``artifact`` so staleness sees it as absent."""
    try:
        yield artifact
    except Exception:
        if artifact.is_dir():
            shutil.rmtree(artifact, ignore_errors=True)
        elif artifact.exists():
            artifact.unlink()
        raise


def _check_preconditions(plan: BuildPlan, config: BuildConfig, encoder: Encoder, logger) -> None:
    if plan.video_needed:
        try:
            encoder.check_available()
        except EncodeError as exc:
            raise PreconditionError(code="ENCODER_UNAVAILABLE", stage="preflight", message=str(exc)) from exc
        logger.info("preflight encoder=available")

    if plan.audio_needed:
        audio = Path(config.audio_path)
        if not audio.is_file():
            raise PreconditionError(
                code="AUDIO_MISSING",
                stage="preflight",
                message=f"Audio file not found: {audio}. Provide --audio or pass --skip-mux.",
                details={"audio_path": str(audio)},
            )


def _process_format(
    stage_plan: StagePlan,
    run: FormatRun,
    flags: RunFlags,
    config: BuildConfig,
    paths: BuildPaths,
    renderer: Renderer,
    encoder: Encoder,
    handle: Any,
    logger,
) -> None:
    fmt = stage_plan.format
    key = fmt.key

    def render() -> None:
        frames_dir = reset_frames_dir(paths.frames_dir(key))
        # A partial sequence would still carry frame 0 and read as rendered next run.
        with _discard_on_failure(frames_dir):
            try:
                renderer.capture_frames(fmt, frames_dir, handle)
            except RenderError as exc:
                raise _capability_error("render", "RENDER_FAILED", key, exc) from exc

    def encode() -> None:
        frames_dir = paths.frames_dir(key)
        verify_frame_sequence(fmt, frames_dir)
        silent = paths.silent_video(key)
        with _discard_on_failure(silent):
            try:
                encoder.encode_video(fmt, frames_dir, silent, flags.crf)
            except EncodeError as exc:
                raise _capability_error("encode", "ENCODE_FAILED", key, exc) from exc

    def mux() -> None:
        silent = paths.silent_video(key)
        if not silent.exists():
            raise DependencyError(
                code="SILENT_VIDEO_MISSING",
                stage="mux",
                message=(
                    f"Silent video not found for {key}: {silent}. Re-run without --skip-encode "
                    f"for {key}, or pass --force / --clean to rebuild it."
                ),
                details={"format": key, "silent_video": str(silent)},
            )
        final = paths.final_video(key)
        with _discard_on_failure(final):
            try:
                encoder.mux_audio(silent, Path(config.audio_path), final, flags.audio_bitrate)
            except EncodeError as exc:
                raise _capability_error("mux", "MUX_FAILED", key, exc) from exc

    def still() -> None:
        still_path = paths.still_image(key)
        with _discard_on_failure(still_path):
            try:
                renderer.capture_still(fmt, still_path, handle)
            except RenderError as exc:
                raise _capability_error("still", "STILL_FAILED", key, exc) from exc

    actions: dict[str, Callable[[], None]] = {"render": render, "encode": encode, "mux": mux, "still": still}

    logger.info("run format=%s status=started", key)
    while run.advance() != FormatState.DONE:
        stage = run.current_stage
        if stage is None:
            raise RuntimeError(f"Format {key} has no stage for state {run.state.value}")
        _run_stage(run, stage, stage_plan.needed(stage), actions[stage], logger)
    logger.info("run format=%s status=done executed=%s", key, ",".join(run.executed_stages()) or "-")


def _run_stage(run: FormatRun, stage: str, needed: bool, action: Callable[[], None], logger) -> None:
    key = run.format.key
    if not needed:
        _append_stage_skipped(run.stage_results, stage)
        logger.info("run format=%s stage=%s status=skipped", key, stage)
        return

    started = time.perf_counter()
    try:
        action()
    except Exception as exc:
        code = exc.code if isinstance(exc, PipelineError) else "STAGE_UNEXPECTED"
        _append_stage_result(run.stage_results, stage, "failed", started, error_code=code)
        run.mark_failed(stage, code)
        logger.error("run format=%s stage=%s status=failed error_code=%s", key, stage, code)
        raise
    _append_stage_result(run.stage_results, stage, "executed", started)
    logger.info("run format=%s stage=%s status=executed", key, stage)


def _capability_error(stage: str, code: str, key: str, exc: Exception) -> CapabilityError:
    return CapabilityError(
        code=code,
        stage=stage,
        message=f"{stage} failed for {key}: {exc}",
        details={"format": key},
    )


def _log_plan(plan: BuildPlan, paths: BuildPaths, flags: RunFlags, logger) -> None:
    logger.info(
        "plan formats=%s force=%s retain_frames=%s browser_needed=%s video_needed=%s",
        ",".join(p.format.key for p in plan.stages),
        flags.force,
        flags.retain_frames,
        plan.browser_needed,
        plan.video_needed,
    )
    for stage_plan in plan.stages:
        fmt = stage_plan.format
        decisions = " ".join(f"{stage}={'run' if needed else 'skip'}" for stage, needed in stage_plan.to_dict().items())
        logger.info("plan format=%s %s", fmt.describe(), decisions)
        logger.debug(
            "plan format=%s frames=%s silent=%s final=%s still=%s",
            fmt.key,
            paths.relative(paths.frames_pattern(fmt.key)),
            paths.relative(paths.silent_video(fmt.key)),
            paths.relative(paths.final_video(fmt.key)),
            paths.relative(paths.still_image(fmt.key)),
        )


def _append_stage_result(
    stage_results: list[dict[str, Any]],
    stage: str,
    status: str,
    started: float,
    error_code: str | None = None,
) -> None:
    duration_ms = int((time.perf_counter() - started) * 1000)
    payload: dict[str, Any] = {
        "stage": stage,
        "status": status,
        "duration_ms": max(0, duration_ms),
    }
    if error_code:
        payload["error_code"] = error_code
    stage_results.append(payload)


def _append_stage_skipped(stage_results: list[dict[str, Any]], stage: str) -> None:
    stage_results.append({"stage": stage, "status": "skipped", "duration_ms": 0})
