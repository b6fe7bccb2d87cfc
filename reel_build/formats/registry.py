"""Static catalog of output formats."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from reel_build.common.errors import ConfigurationError


@dataclass(frozen=True)
class LayoutAnchors:
    header_top_pct: float = 0.08
    middle_pct: float = 0.50
    footer_bottom_pct: float = 0.07


@dataclass(frozen=True)
class SafeArea:
    top_pct: float = 0.10
    bottom_pct: float = 0.10


@dataclass(frozen=True)
class FormatDescriptor:
    key: str
    width: int
    height: int
    fps: int
    duration: float
    anchors: LayoutAnchors = field(default_factory=LayoutAnchors)
    safe_area: SafeArea = field(default_factory=SafeArea)
    scale_ref_height: int = 1920

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key.strip():
            raise ValueError("Format key must be a non-empty string")
        for name in ("width", "height", "fps"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"Format {self.key}: {name} must be a positive integer, got {value!r}")
        if isinstance(self.duration, bool) or not isinstance(self.duration, (int, float)) or self.duration <= 0:
            raise ValueError(f"Format {self.key}: duration must be > 0, got {self.duration!r}")

    @property
    def frame_count(self) -> int:
        return int(round(self.duration * self.fps))

    def describe(self) -> str:
        return f"{self.key}: {self.width}x{self.height}, {self.fps} fps, {self.duration:.1f}s"


class FormatRegistry:
    def __init__(self, formats: Iterable[FormatDescriptor]) -> None:
        ordered: list[FormatDescriptor] = []
        seen: set[str] = set()
        for fmt in formats:
            if fmt.key in seen:
                raise ValueError(f"Duplicate format key: {fmt.key}")
            seen.add(fmt.key)
            ordered.append(fmt)
        self._formats: tuple[FormatDescriptor, ...] = tuple(ordered)

    def list(self) -> tuple[FormatDescriptor, ...]:
        return self._formats

    def keys(self) -> tuple[str, ...]:
        return tuple(fmt.key for fmt in self._formats)

    def lookup(self, key: str) -> FormatDescriptor | None:
        for fmt in self._formats:
            if fmt.key == key:
                return fmt
        return None

    def resolve_selection(self, keys: Sequence[str] | None) -> tuple[FormatDescriptor, ...]:
        """Resolve a selection; empty means every format. Fails on the first unknown key."""
        if not keys:
            return self._formats

        selected: list[FormatDescriptor] = []
        for key in keys:
            fmt = self.lookup(key)
            if fmt is None:
                valid = ", ".join(self.keys())
                raise ConfigurationError(
                    code="FORMAT_UNKNOWN",
                    stage="select",
                    message=f'Unknown format key "{key}". Valid options: {valid}',
                    details={"format": key, "valid_keys": list(self.keys())},
                )
            if fmt not in selected:
                selected.append(fmt)
        return tuple(selected)

    def __len__(self) -> int:
        return len(self._formats)


DEFAULT_FORMATS: tuple[FormatDescriptor, ...] = (
    FormatDescriptor(key="9x16", width=1080, height=1920, fps=60, duration=10.0),
    FormatDescriptor(key="4x5", width=1080, height=1350, fps=60, duration=10.0),
    FormatDescriptor(key="1x1", width=1080, height=1080, fps=60, duration=10.0),
)

DEFAULT_REGISTRY = FormatRegistry(DEFAULT_FORMATS)


def get_format_by_key(key: str) -> FormatDescriptor | None:
    return DEFAULT_REGISTRY.lookup(key)
