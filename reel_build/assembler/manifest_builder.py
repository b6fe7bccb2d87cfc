from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import jsonschema

from reel_build.common.errors import ManifestError
from reel_build.common.io_json import read_json, write_json
from reel_build.common.paths import BuildPaths
from reel_build.common.types import RunFlags
from reel_build.formats.registry import FormatDescriptor

MANIFEST_SCHEMA_VERSION = "1.0"
MANIFEST_SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schemas" / "build_manifest.schema.json"


def build_manifest(
    flags: RunFlags,
    formats: Sequence[FormatDescriptor],
    paths: BuildPaths,
    invocation: Sequence[str],
    stage_statuses: Mapping[str, Mapping[str, str]] | None = None,
    generated_at: datetime | None = None,
    exists: Callable[[Path], bool] = os.path.exists,
) -> dict[str, Any]:
    """Snapshot of which deliverables exist on disk after a run."""
    timestamp = (generated_at or datetime.now(timezone.utc)).isoformat()

    def available(path: Path) -> str | None:
        return paths.relative(path) if exists(path) else None

    entries = []
    for fmt in formats:
        entries.append(
            {
                "key": fmt.key,
                "width": fmt.width,
                "height": fmt.height,
                "fps": fmt.fps,
                "duration": fmt.duration,
                "outputs": {
                    "final_video": available(paths.final_video(fmt.key)),
                    "silent_video": available(paths.silent_video(fmt.key)),
                    "still_image": available(paths.still_image(fmt.key)),
                },
                "stages": dict((stage_statuses or {}).get(fmt.key, {})),
            }
        )

    return {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "generated_at": timestamp,
        "invocation": [str(x) for x in invocation],
        "flags": flags.snapshot(),
        "formats": entries,
    }


def validate_manifest(payload: dict[str, Any], schema_path: Path = MANIFEST_SCHEMA_PATH) -> None:
    schema = read_json(schema_path)
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda e: str(e.path))
    if errors:
        first = errors[0]
        loc = ".".join(str(x) for x in first.path) or "<root>"
        raise ManifestError(
            code="SCHEMA_BUILD_MANIFEST",
            stage="manifest",
            message=f"{loc}: {first.message}",
            details={"errors": [e.message for e in errors[:10]]},
        )


def write_manifest(path: Path, payload: dict[str, Any]) -> Path:
    validate_manifest(payload)
    return write_json(path, payload)
