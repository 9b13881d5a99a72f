"""Configuration constants and validation for MOVESLite."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from .errors import ConfigurationError

# Remote data API. Overridable through the environment.
DEFAULT_API_URL = "https://api.cat-apps.com/moveslite/v1"
DEFAULT_STATUS_PATH = "/test"
DEFAULT_DATA_PATH = "/retrieve_data"
DEFAULT_TIMEOUT_SEC = 10.0

# MOVES pollutant IDs
POLLUTANTS = {
    "co": 2,
    "nox": 3,
    "ch4": 5,
    "n2o": 6,
    "so2": 31,
    "voc": 87,
    "atmospheric co2": 90,
    "co2": 90,
    "co2e": 98,
    "co2 equivalent": 98,
    "pm10": 100,
    "pm2.5": 110,
    "pm25": 110,
}
POLLUTANT_IDS = frozenset(POLLUTANTS.values())

# Aggregation level: which category columns stratify the returned rows
AGGREGATION_LEVELS = {
    "overall": 16,
    "sourcetype": 8,
    "regclass": 12,
    "fueltype": 14,
    "roadtype": 15,
}
AGGREGATION_LEVEL_IDS = frozenset(AGGREGATION_LEVELS.values())

# MOVES numeric IDs by category
SOURCE_TYPE_ID_MAP = {
    11: "Motorcycle",
    21: "Passenger Car",
    31: "Passenger Truck",
    32: "Light Commercial Truck",
    41: "Other Buses",
    42: "Transit Bus",
    43: "School Bus",
    51: "Refuse Truck",
    52: "Single Unit Short-haul Truck",
    53: "Single Unit Long-haul Truck",
    54: "Motor Home",
    61: "Combination Short-haul Truck",
    62: "Combination Long-haul Truck",
}

REG_CLASS_ID_MAP = {
    10: "Motorcycles",
    20: "Light Duty Vehicles",
    30: "Light Duty Trucks",
    41: "Class 2b Trucks",
    42: "Class 3 Trucks",
    46: "Class 4-5 Trucks",
    47: "Class 6-7 Trucks",
    48: "Class 8a-8b Trucks",
    49: "Urban Bus",
}

FUEL_TYPE_ID_MAP = {
    1: "Gasoline",
    2: "Diesel",
    3: "CNG",
    5: "Ethanol (E-85)",
    9: "Electricity",
}

ROAD_TYPE_ID_MAP = {
    1: "Off-Network",
    2: "Rural Restricted Access",
    3: "Rural Unrestricted Access",
    4: "Urban Restricted Access",
    5: "Urban Unrestricted Access",
}

# Activity variables the data API can return
DEFAULT_VARIABLES = ("year", "emissions", "vmt", "vehicles", "sourcehours", "starts")
DEFAULT_PREDICTORS = ("vmt", "vehicles", "sourcehours", "starts")

_GEOID_RE = re.compile(r"^\d{2}(\d{3})?$")


@dataclass(frozen=True)
class ApiSettings:
    """Connection settings for the remote data API."""

    base_url: str = DEFAULT_API_URL
    status_path: str = DEFAULT_STATUS_PATH
    data_path: str = DEFAULT_DATA_PATH
    timeout_sec: float = DEFAULT_TIMEOUT_SEC


def api_settings() -> ApiSettings:
    """Read API settings from ``MOVESLITE_*`` environment variables."""
    raw_timeout = os.environ.get("MOVESLITE_TIMEOUT_SEC")
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT_SEC
    except ValueError:
        raise ConfigurationError(
            "MOVESLITE_TIMEOUT_SEC must be a number", stage="config", value=raw_timeout
        ) from None
    return ApiSettings(
        base_url=os.environ.get("MOVESLITE_API_URL", DEFAULT_API_URL).rstrip("/"),
        status_path=os.environ.get("MOVESLITE_STATUS_PATH", DEFAULT_STATUS_PATH),
        data_path=os.environ.get("MOVESLITE_DATA_PATH", DEFAULT_DATA_PATH),
        timeout_sec=timeout,
    )


def normalize_geoid(x) -> str:
    """Normalize a state (2-digit) or county (5-digit) FIPS code to a string."""
    if isinstance(x, int) and not isinstance(x, bool):
        key = str(x)
        # Integer codes lose their leading zero (e.g. 6 for California)
        key = key.zfill(5) if len(key) > 2 else key.zfill(2)
    else:
        key = str(x or "").strip()
    if not _GEOID_RE.match(key):
        raise ConfigurationError(
            "geoid must be a 2-digit state or 5-digit county FIPS code",
            stage="query",
            value=x,
        )
    return key


def normalize_pollutant(x) -> int:
    """Normalize a pollutant name or MOVES pollutant ID to its ID."""
    if isinstance(x, str):
        key = x.strip().lower()
        if key.isdigit():
            x = int(key)
        elif key in POLLUTANTS:
            return POLLUTANTS[key]
    if isinstance(x, int) and x in POLLUTANT_IDS:
        return x
    raise ConfigurationError(
        f"Unknown pollutant. Valid options: {sorted(POLLUTANTS)} or IDs {sorted(POLLUTANT_IDS)}",
        stage="query",
        value=x,
    )


def normalize_aggregation(x) -> int:
    """Normalize an aggregation level name or ID to its ID."""
    if isinstance(x, str) and x.strip().lower() in AGGREGATION_LEVELS:
        return AGGREGATION_LEVELS[x.strip().lower()]
    if isinstance(x, int) and x in AGGREGATION_LEVEL_IDS:
        return x
    raise ConfigurationError(
        f"Unknown aggregation level. Valid options: {sorted(AGGREGATION_LEVELS)}",
        stage="query",
        value=x,
    )


def _normalize_id(x, id_map: dict, label: str):
    if x is None:
        return None
    if isinstance(x, str):
        name = x.strip().lower()
        for k, v in id_map.items():
            if v.lower() == name:
                return k
        if name.isdigit():
            x = int(name)
    if isinstance(x, int) and x in id_map:
        return x
    raise ConfigurationError(
        f"Unknown {label}. Valid options: {sorted(id_map)}",
        stage="query",
        value=x,
    )


def normalize_source_type(x):
    """Normalize a sourcetype name or ID to its MOVES ID (None passes through)."""
    return _normalize_id(x, SOURCE_TYPE_ID_MAP, "sourcetype")


def normalize_reg_class(x):
    """Normalize a regulatory class name or ID to its MOVES ID."""
    return _normalize_id(x, REG_CLASS_ID_MAP, "regulatory class")


def normalize_fuel_type(x):
    """Normalize a fuel type name or ID to its MOVES ID."""
    return _normalize_id(x, FUEL_TYPE_ID_MAP, "fuel type")


def normalize_road_type(x):
    """Normalize a road type name or ID to its MOVES ID."""
    return _normalize_id(x, ROAD_TYPE_ID_MAP, "road type")


def validate_confidence_level(level: float) -> None:
    """Validate that a confidence level lies strictly between 0 and 1."""
    if not 0.0 < level < 1.0:
        raise ConfigurationError(
            "confidence_level must be between 0 and 1", stage="config", value=level
        )
