from __future__ import annotations

import shutil
from pathlib import Path
from typing import Sequence

from reel_build.common.logging import get_logger
from reel_build.common.paths import BuildPaths
from reel_build.formats.registry import FormatDescriptor


def remove_frames(paths: BuildPaths, formats: Sequence[FormatDescriptor]) -> list[Path]:
    logger = get_logger()
    removed: list[Path] = []
    for fmt in formats:
        frames_dir = paths.frames_dir(fmt.key)
        if frames_dir.exists():
            shutil.rmtree(frames_dir)
            removed.append(frames_dir)
            logger.info("cleanup format=%s removed=%s", fmt.key, frames_dir)
        _remove_if_empty(paths.format_tmp_dir(fmt.key))
    _remove_if_empty(paths.tmp_dir)
    return removed


def clean_outputs(paths: BuildPaths, formats: Sequence[FormatDescriptor]) -> list[Path]:
    """Delete deliverable and intermediate trees per format. The manifest is left alone."""
    logger = get_logger()
    removed: list[Path] = []
    for fmt in formats:
        for directory in (paths.format_dist_dir(fmt.key), paths.format_tmp_dir(fmt.key)):
            if directory.exists():
                shutil.rmtree(directory)
                removed.append(directory)
                logger.info("clean format=%s removed=%s", fmt.key, directory)
    _remove_if_empty(paths.tmp_dir)
    return removed


def _remove_if_empty(directory: Path) -> None:
    if directory.is_dir() and not any(directory.iterdir()):
        directory.rmdir()
