"""Structured errors raised by kd.

Every failure that aborts a run is a ``KdError``. The CLI prints the
message and exits non-zero; nothing below it terminates the process.
"""

from __future__ import annotations

from typing import Any


class KdError(RuntimeError):
    """Structured exception for deployment failures."""

    default_code = "kd_error"
    default_phase = "run"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        phase: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.phase = phase or self.default_phase
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logs."""
        return {
            "code": self.code,
            "phase": self.phase,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(KdError):
    """Invalid flags or environment."""

    default_code = "invalid_configuration"
    default_phase = "configure"


class ManifestError(KdError):
    """A manifest could not be found, read or parsed."""

    default_code = "invalid_manifest"
    default_phase = "load"


class RenderError(KdError):
    """A manifest template failed to render."""

    default_code = "render_failed"
    default_phase = "render"


class ClusterClientError(KdError):
    """kubectl could not be started or exited with an error."""

    default_code = "kubectl_failed"
    default_phase = "kubectl"

    def __init__(
        self,
        message: str,
        *,
        stderr: str = "",
        returncode: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.stderr = stderr
        self.returncode = returncode


class ResourceNotFoundError(ClusterClientError):
    """kubectl reported that the object does not exist."""

    default_code = "not_found"


class SubmissionError(KdError):
    """A manifest was rejected by the cluster."""

    default_code = "submission_failed"
    default_phase = "submit"


class WatchError(KdError):
    """A watched resource did not become ready."""

    default_code = "watch_failed"
    default_phase = "watch"

    def __init__(self, message: str, *, kind: str, name: str, **kwargs: Any) -> None:
        details = {"kind": kind, "name": name, **kwargs.pop("details", {})}
        super().__init__(message, details=details, **kwargs)
        self.kind = kind
        self.name = name


class WatchTimeoutError(WatchError):
    """The deadline elapsed before the resource became ready."""

    default_code = "watch_timeout"


class WatchSupersededError(WatchError):
    """A newer rollout replaced the one being watched."""

    default_code = "watch_superseded"


class FetchExhaustedError(WatchError):
    """Status fetches kept failing until the retry bound was reached."""

    default_code = "fetch_exhausted"

    def __init__(self, message: str, *, last_error: Exception, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.last_error = last_error


__all__ = [
    "ClusterClientError",
    "ConfigurationError",
    "FetchExhaustedError",
    "KdError",
    "ManifestError",
    "RenderError",
    "ResourceNotFoundError",
    "SubmissionError",
    "WatchError",
    "WatchSupersededError",
    "WatchTimeoutError",
]
