from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from reel_build.config.defaults import DEFAULT_ENCODE, DEFAULT_RUNTIME


@dataclass(frozen=True)
class RunFlags:
    selected_format_keys: tuple[str, ...] = ()
    clean: bool = False
    force: bool = False
    skip_render: bool = False
    skip_encode: bool = False
    skip_mux: bool = False
    skip_still: bool = False
    retain_frames: bool = False
    crf: int = int(DEFAULT_ENCODE["crf"])
    audio_bitrate: str = str(DEFAULT_ENCODE["audio_bitrate"])

    def snapshot(self) -> dict[str, Any]:
        return {
            "formats": list(self.selected_format_keys),
            "clean": self.clean,
            "force": self.force,
            "skip_render": self.skip_render,
            "skip_encode": self.skip_encode,
            "skip_mux": self.skip_mux,
            "skip_still": self.skip_still,
            "retain_frames": self.retain_frames,
            "crf": self.crf,
            "audio_bitrate": self.audio_bitrate,
        }


@dataclass(frozen=True)
class BuildConfig:
    output_root: str = str(DEFAULT_RUNTIME["output_root"])
    page_path: str = str(DEFAULT_RUNTIME["page_path"])
    audio_path: str = str(DEFAULT_RUNTIME["audio_path"])
    basename: str = str(DEFAULT_RUNTIME["basename"])
    invocation: tuple[str, ...] = field(default_factory=tuple)
    dry_run: bool = False
