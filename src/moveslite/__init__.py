"""
MOVESLite: fast regression approximations of EPA MOVES emissions.

This package queries a remote emissions database, fits OLS models relating
transportation activity to pollutant emissions, and projects scenarios with
confidence intervals.
"""

from .__about__ import __version__
from .api import (
    check_status,
    query,
    estimate,
    diagnose,
    project,
)
from .client import ApiClient, QueryFailure, is_failure
from .errors import (
    MovesLiteError,
    NetworkError,
    ApiError,
    ConfigurationError,
    DataError,
    ModelFitError,
)
from .scenarios import build_scenario
from .simulation import backtransform
from .transform import Transformation, detect

__all__ = [
    "__version__",
    "check_status",
    "query",
    "estimate",
    "diagnose",
    "project",
    "ApiClient",
    "QueryFailure",
    "is_failure",
    "MovesLiteError",
    "NetworkError",
    "ApiError",
    "ConfigurationError",
    "DataError",
    "ModelFitError",
    "build_scenario",
    "backtransform",
    "Transformation",
    "detect",
]
