"""Error taxonomy for MOVESLite.

Query-layer errors (``NetworkError``, ``ApiError``) are returned to the
caller wrapped in a :class:`~moveslite.client.QueryFailure`. Every other
error is raised.
"""

from __future__ import annotations


class MovesLiteError(Exception):
    """Base class for MOVESLite errors.

    Parameters
    ----------
    message : str
        Human-readable description.
    stage : str
        Pipeline stage that failed
        (query, status, build, fit, predict, backtransform, config).
    value : object
        The offending value (formula, column name, argument).
    """

    def __init__(self, message: str, *, stage: str = "", value=None):
        self.message = message
        self.stage = stage
        self.value = value
        super().__init__(self._format())

    def _format(self) -> str:
        text = self.message
        if self.value is not None:
            text = f"{text}: {self.value!r}"
        if self.stage:
            text = f"[{self.stage}] {text}"
        return text


class NetworkError(MovesLiteError):
    """The data API was unreachable or the request timed out."""


class ApiError(MovesLiteError):
    """The data API answered with a non-success status or an unreadable body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        server_message: str = "",
        stage: str = "query",
        value=None,
    ):
        self.status_code = status_code
        self.server_message = server_message
        if server_message:
            message = f"{message} (HTTP {status_code}): {server_message}"
        else:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message, stage=stage, value=value)


class ConfigurationError(MovesLiteError, ValueError):
    """A required argument is missing or invalid."""


class DataError(MovesLiteError, ValueError):
    """The data cannot support the requested operation."""


class ModelFitError(MovesLiteError):
    """The formula/data combination could not be fitted."""


__all__ = [
    "MovesLiteError",
    "NetworkError",
    "ApiError",
    "ConfigurationError",
    "DataError",
    "ModelFitError",
]
