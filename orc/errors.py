from __future__ import annotations


class OrcError(Exception):
    """Base class for orchestration errors."""


class ManifestError(OrcError, ValueError):
    """The manifest set or an overrides file is invalid."""


class ToolingUnavailable(OrcError):
    """A required CLI, daemon or cluster endpoint is missing or unreachable."""


class BuildFailure(OrcError):
    def __init__(self, unit: str, exit_status: int | None, output: str = "") -> None:
        self.unit = unit
        self.exit_status = exit_status
        self.output = output
        status = "unknown" if exit_status is None else str(exit_status)
        super().__init__(f"Image build for '{unit}' failed (exit status {status}): {output.strip() or 'no output'}")


class ApplyFailure(OrcError):
    def __init__(self, ref: str, reason: str) -> None:
        self.ref = ref
        self.reason = reason
        super().__init__(f"Cluster rejected {ref}: {reason}")


class ReadinessTimeout(OrcError):
    def __init__(self, unit: str, timeout_s: float) -> None:
        self.unit = unit
        self.timeout_s = timeout_s
        super().__init__(f"'{unit}' did not become ready within {timeout_s:g}s")


class RolloutAborted(OrcError):
    """Single summary error for a run that stopped on a fatal step."""

    def __init__(self, step: str, cause: BaseException) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"Rollout aborted during {step}: {cause}")
