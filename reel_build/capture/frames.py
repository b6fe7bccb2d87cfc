from __future__ import annotations

import re
import shutil
from pathlib import Path

import cv2

from reel_build.common.errors import DependencyError
from reel_build.common.paths import FRAME_EXTENSION, FRAME_NAME_WIDTH, frame_name
from reel_build.formats.registry import FormatDescriptor

FRAME_FILE_RE = re.compile(rf"^(\d{{{FRAME_NAME_WIDTH}}}){re.escape(FRAME_EXTENSION)}$", re.IGNORECASE)


def list_frame_indices(frames_dir: Path) -> list[int]:
    if not frames_dir.is_dir():
        return []
    indices = []
    for entry in frames_dir.iterdir():
        match = FRAME_FILE_RE.match(entry.name)
        if match and entry.is_file():
            indices.append(int(match.group(1)))
    return sorted(indices)


def reset_frames_dir(frames_dir: Path) -> Path:
    if frames_dir.exists():
        shutil.rmtree(frames_dir)
    frames_dir.mkdir(parents=True, exist_ok=True)
    return frames_dir


def verify_frame_sequence(fmt: FormatDescriptor, frames_dir: Path) -> int:
    """Check the directory holds exactly frames 0..frame_count-1 and frame 0 decodes at format size."""
    expected = fmt.frame_count
    remedy = (
        f"Re-run without --skip-render for {fmt.key}, or pass --force / --clean "
        "to rebuild its intermediate frames."
    )
    indices = list_frame_indices(frames_dir)
    if not indices:
        raise DependencyError(
            code="FRAMES_MISSING",
            stage="encode",
            message=f"Frames not found for {fmt.key} in {frames_dir}. {remedy}",
            details={"format": fmt.key, "frames_dir": str(frames_dir)},
        )

    missing = sorted(set(range(expected)) - set(indices))
    extra = [i for i in indices if i >= expected]
    if missing or extra:
        raise DependencyError(
            code="FRAMES_INCOMPLETE",
            stage="encode",
            message=(
                f"Frame sequence for {fmt.key} is not contiguous 0..{expected - 1}: "
                f"{len(missing)} missing, {len(extra)} unexpected. {remedy}"
            ),
            details={
                "format": fmt.key,
                "frames_dir": str(frames_dir),
                "missing": missing[:20],
                "unexpected": extra[:20],
            },
        )

    first = frames_dir / frame_name(0)
    image = cv2.imread(str(first), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise DependencyError(
            code="FRAMES_UNREADABLE",
            stage="encode",
            message=f"First frame for {fmt.key} cannot be decoded: {first}. {remedy}",
            details={"format": fmt.key, "frame": str(first)},
        )
    height, width = int(image.shape[0]), int(image.shape[1])
    if (width, height) != (fmt.width, fmt.height):
        raise DependencyError(
            code="FRAMES_SIZE_MISMATCH",
            stage="encode",
            message=(
                f"Frames for {fmt.key} are {width}x{height}, expected {fmt.width}x{fmt.height}. {remedy}"
            ),
            details={"format": fmt.key, "frame": str(first), "size": [width, height]},
        )
    return expected
