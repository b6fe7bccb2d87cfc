from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class PipelineError(Exception):
    code: str
    stage: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"[{self.stage}] {self.code}: {self.message}"

    @property
    def format_key(self) -> str | None:
        if not self.details:
            return None
        value = self.details.get("format")
        return str(value) if value is not None else None


class ConfigurationError(PipelineError):
    """Invalid selection or configuration, raised before any work starts."""


class PreconditionError(PipelineError):
    """Run-wide precondition (encoder, audio asset, renderer) not satisfied."""


class DependencyError(PipelineError):
    """A needed stage found its prerequisite artifact absent."""


class CapabilityError(PipelineError):
    """Render/encode/mux invocation failed for one format and stage."""


class ManifestError(PipelineError):
    pass


def fail(stage: str, code: str, message: str, details: dict[str, Any] | None = None) -> PipelineError:
    return PipelineError(code=code, stage=stage, message=message, details=details)
