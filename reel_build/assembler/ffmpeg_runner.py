from __future__ import annotations

import os
import shutil
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

from reel_build.common.paths import FRAME_EXTENSION, FRAME_NAME_WIDTH
from reel_build.config.defaults import DEFAULT_ENCODE
from reel_build.formats.registry import FormatDescriptor


class EncodeError(RuntimeError):
    pass


class Encoder(Protocol):
    def check_available(self) -> None: ...

    def encode_video(self, fmt: FormatDescriptor, frames_dir: Path, out_path: Path, crf: int) -> None: ...

    def mux_audio(self, silent_path: Path, audio_path: Path, out_path: Path, audio_bitrate: str) -> None: ...


class FfmpegEncoder:
    def __init__(
        self,
        binary: str = str(DEFAULT_ENCODE["binary"]),
        video_codec: str = str(DEFAULT_ENCODE["video_codec"]),
        profile: str = str(DEFAULT_ENCODE["profile"]),
        pix_fmt: str = str(DEFAULT_ENCODE["pix_fmt"]),
        audio_codec: str = str(DEFAULT_ENCODE["audio_codec"]),
        stderr_tail_chars: int = int(DEFAULT_ENCODE["stderr_tail_chars"]),
    ) -> None:
        self.binary = binary
        self.video_codec = video_codec
        self.profile = profile
        self.pix_fmt = pix_fmt
        self.audio_codec = audio_codec
        self.stderr_tail_chars = stderr_tail_chars

    def check_available(self) -> None:
        if shutil.which(self.binary) is None:
            raise EncodeError(f"{self.binary} not found on PATH. Install ffmpeg and restart terminal.")
        self._run_checked([self.binary, "-version"], "version")

    def build_encode_command(self, fmt: FormatDescriptor, frames_dir: Path, out_path: Path, crf: int) -> list[str]:
        input_pattern = f"{frames_dir.as_posix()}/%0{FRAME_NAME_WIDTH}d{FRAME_EXTENSION}"
        return [
            self.binary,
            "-y",
            "-framerate",
            str(fmt.fps),
            "-i",
            input_pattern,
            "-c:v",
            self.video_codec,
            "-profile:v",
            self.profile,
            "-pix_fmt",
            self.pix_fmt,
            "-movflags",
            "+faststart",
            "-crf",
            str(int(crf)),
            str(out_path),
        ]

    def build_mux_command(self, silent_path: Path, audio_path: Path, out_path: Path, audio_bitrate: str) -> list[str]:
        return [
            self.binary,
            "-y",
            "-i",
            str(silent_path),
            "-i",
            str(audio_path),
            "-c:v",
            "copy",
            "-c:a",
            self.audio_codec,
            "-b:a",
            str(audio_bitrate),
            "-shortest",
            "-movflags",
            "+faststart",
            str(out_path),
        ]

    def encode_video(self, fmt: FormatDescriptor, frames_dir: Path, out_path: Path, crf: int) -> None:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with _staged_output(out_path) as staging:
            self._run_checked(self.build_encode_command(fmt, frames_dir, staging, crf), "encode")
            _require_output(staging, "encode")

    def mux_audio(self, silent_path: Path, audio_path: Path, out_path: Path, audio_bitrate: str) -> None:
        if not silent_path.exists():
            raise EncodeError(f"Silent MP4 not found: {silent_path}")
        if not audio_path.exists():
            raise EncodeError(f"Audio file not found: {audio_path}")
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with _staged_output(out_path) as staging:
            self._run_checked(self.build_mux_command(silent_path, audio_path, staging, audio_bitrate), "mux")
            _require_output(staging, "mux")

    def _run_checked(self, cmd: list[str], step: str) -> None:
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise EncodeError(f"FFMPEG_{step.upper()}_START_FAILED: {' '.join(cmd)}\n{exc}") from exc
        if proc.returncode != 0:
            output = (proc.stderr or proc.stdout or "").strip()
            limit = self.stderr_tail_chars
            snippet = output[-limit:] if len(output) > limit else output
            raise EncodeError(f"FFMPEG_{step.upper()}_FAILED ({proc.returncode}): {snippet}")


def _require_output(path: Path, step: str) -> None:
    if not path.exists() or path.stat().st_size <= 0:
        raise EncodeError(f"FFMPEG_{step.upper()}_EMPTY_OUTPUT: ffmpeg completed but {path} is missing or empty")


def staging_path(out_path: Path) -> Path:
    # Keep the real suffix last so ffmpeg still picks the container from it.
    return out_path.with_name(f"{out_path.stem}.partial{out_path.suffix}")


@contextmanager
def _staged_output(out_path: Path) -> Iterator[Path]:
    """Let ffmpeg write beside ``out_path`` and move the file in only once it succeeded."""
    staging = staging_path(out_path)
    try:
        yield staging
    except BaseException:
        if staging.exists():
            staging.unlink()
        raise
    os.replace(staging, out_path)
