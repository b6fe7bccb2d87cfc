"""On-disk layout of every artifact the build produces."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from reel_build.config.defaults import DEFAULT_RUNTIME

FRAME_NAME_WIDTH = 6
FRAME_EXTENSION = ".png"


@dataclass(frozen=True)
class BuildPaths:
    root: Path
    basename: str = str(DEFAULT_RUNTIME["basename"])

    @classmethod
    def from_root(cls, root: str | Path, basename: str | None = None) -> "BuildPaths":
        return cls(root=Path(root), basename=basename or str(DEFAULT_RUNTIME["basename"]))

    @property
    def dist_dir(self) -> Path:
        return self.root / "dist"

    @property
    def tmp_dir(self) -> Path:
        return self.root / "tmp"

    @property
    def manifest_path(self) -> Path:
        return self.dist_dir / "manifest.json"

    def format_dist_dir(self, key: str) -> Path:
        return self.dist_dir / key

    def format_tmp_dir(self, key: str) -> Path:
        return self.tmp_dir / key

    def frames_dir(self, key: str) -> Path:
        return self.format_tmp_dir(key) / "frames"

    def first_frame(self, key: str) -> Path:
        return self.frames_dir(key) / frame_name(0)

    def frames_pattern(self, key: str) -> Path:
        return self.frames_dir(key) / f"%0{FRAME_NAME_WIDTH}d{FRAME_EXTENSION}"

    def silent_video(self, key: str) -> Path:
        return self.format_dist_dir(key) / f"{self.basename}_{key}_silent.mp4"

    def final_video(self, key: str) -> Path:
        return self.format_dist_dir(key) / f"{self.basename}_{key}.mp4"

    def still_image(self, key: str) -> Path:
        return self.format_dist_dir(key) / f"{self.basename}_{key}.png"

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()


def frame_name(index: int) -> str:
    if index < 0:
        raise ValueError("Frame index must be >= 0")
    return f"{index:0{FRAME_NAME_WIDTH}d}{FRAME_EXTENSION}"
