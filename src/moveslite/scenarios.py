"""Scenario builder: turn a partial scenario into a full prediction table.

Predictors the caller does not supply are filled by linear interpolation
over the baseline series. Every row is tagged with where it came from:

- ``custom``: the caller's scenario values
- ``benchmark``: the baseline values, unchanged
- ``pre_benchmark`` / ``post_benchmark``: the nearest baseline rows just
  before and after the custom values, for trend context

Example
-------
>>> from moveslite.scenarios import build_scenario
>>> table = build_scenario(baseline, {"year": [2023, 2024], "vmt": [3.1e9, 3.2e9]})
>>> table[["year", "type", "vmt"]]
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Sequence, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError, DataError

logger = logging.getLogger(__name__)

ROW_TYPES = ("custom", "benchmark", "pre_benchmark", "post_benchmark")
CUSTOM, BENCHMARK, PRE_BENCHMARK, POST_BENCHMARK = ROW_TYPES


def interpolate_series(x, y, at) -> np.ndarray:
    """Linear interpolation of ``y(x)`` evaluated ``at``; flat outside the range.

    ``x`` must be sorted ascending. Pairs with a missing ``y`` are skipped,
    so a gap is bridged by its observed neighbours. Values beyond either
    end take the nearest boundary observation. All-missing ``y`` gives NaN.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    at = np.asarray(at, dtype=float)
    observed = ~np.isnan(y)
    if not observed.any():
        return np.full(at.shape, np.nan)
    x, y = x[observed], y[observed]
    return np.interp(at, x, y, left=y[0], right=y[-1])


def _scenario_frame(scenario_input, stratify_by: str) -> pd.DataFrame:
    """Coerce a mapping (scalars or sequences) or DataFrame into a frame."""
    if isinstance(scenario_input, pd.DataFrame):
        frame = scenario_input.copy()
    elif isinstance(scenario_input, Mapping):
        cols = {k: np.atleast_1d(np.asarray(v)) for k, v in scenario_input.items()}
        lengths = {len(v) for v in cols.values()}
        n = max(lengths) if lengths else 0
        if lengths - {1, n}:
            raise ConfigurationError(
                "Scenario values must be scalars or sequences of equal length",
                stage="build",
                value={k: len(v) for k, v in cols.items()},
            )
        frame = pd.DataFrame({k: np.repeat(v, n) if len(v) == 1 else v for k, v in cols.items()})
    else:
        raise ConfigurationError(
            "Scenario input must be a mapping or DataFrame", stage="build", value=type(scenario_input).__name__
        )

    if stratify_by not in frame.columns:
        raise ConfigurationError(
            "Scenario input is missing the stratifying variable", stage="build", value=stratify_by
        )
    if frame[stratify_by].isna().any() or frame.empty:
        raise ConfigurationError(
            "Scenario input has no usable stratifying values", stage="build", value=stratify_by
        )
    return frame


def _baseline_frame(
    baseline_data: pd.DataFrame, stratify_by: str, exclude: Sequence[str]
) -> tuple[pd.DataFrame, list]:
    """Baseline predictors, one row per stratifying value, sorted ascending."""
    if stratify_by not in baseline_data.columns:
        raise ConfigurationError(
            "Baseline data is missing the stratifying variable", stage="build", value=stratify_by
        )
    predictors = [
        c for c in baseline_data.columns
        if c != stratify_by
        and c not in exclude
        and pd.api.types.is_numeric_dtype(baseline_data[c])
    ]
    frame = baseline_data[[stratify_by] + predictors].dropna(subset=[stratify_by])

    if frame[stratify_by].duplicated().any():
        logger.warning(
            f"Baseline has repeated {stratify_by} values; averaging predictors per {stratify_by}"
        )
        frame = frame.groupby(stratify_by, as_index=False)[predictors].mean()

    frame = frame.sort_values(stratify_by).reset_index(drop=True)
    if frame[stratify_by].nunique() < 2:
        raise DataError(
            f"Interpolation needs at least two distinct {stratify_by} values",
            stage="build",
            value=frame[stratify_by].tolist(),
        )
    return frame, predictors


def build_scenario(
    baseline_data: pd.DataFrame,
    scenario_input: Union[Mapping, pd.DataFrame],
    stratify_by: str = "year",
    exclude: Sequence[str] = ("geoid",),
    include_context: bool = True,
) -> pd.DataFrame:
    """Build the prediction input table for a scenario.

    Parameters
    ----------
    baseline_data : pd.DataFrame
        Observed rows with ``stratify_by`` and every predictor the model uses.
    scenario_input : mapping or pd.DataFrame
        Values for the scenario. Must include ``stratify_by``; any other
        predictor is optional and may be a scalar or a sequence.
    stratify_by : str
        Column that orders the series (default ``"year"``).
    exclude : sequence of str
        Baseline columns to leave out of interpolation and of the output.
    include_context : bool
        Add ``pre_benchmark`` / ``post_benchmark`` rows around the custom rows.

    Returns
    -------
    pd.DataFrame
        Columns: ``stratify_by``, ``type``, then the predictors. Rows are
        custom (ascending), benchmark (ascending), then context rows.

    Raises
    ------
    ConfigurationError
        If ``stratify_by`` is missing from the scenario input.
    DataError
        If the baseline has fewer than two distinct stratifying values, or
        the scenario names a predictor the baseline does not have.
    """
    exclude = tuple(exclude or ())
    scenario = _scenario_frame(scenario_input, stratify_by)
    baseline, predictors = _baseline_frame(baseline_data, stratify_by, exclude)

    unknown = [c for c in scenario.columns if c != stratify_by and c not in predictors and c not in exclude]
    if unknown:
        raise DataError("Scenario predictor not found in baseline data", stage="build", value=unknown[0])

    # Custom rows
    scenario = scenario.drop_duplicates(subset=[stratify_by], keep="first")
    scenario = scenario.sort_values(stratify_by).reset_index(drop=True)
    custom = pd.DataFrame({stratify_by: scenario[stratify_by].to_numpy()})
    x = baseline[stratify_by].to_numpy(dtype=float)
    for col in predictors:
        if col in scenario.columns:
            supplied = pd.to_numeric(scenario[col], errors="coerce").to_numpy(dtype=float)
            filled = interpolate_series(x, baseline[col], custom[stratify_by])
            custom[col] = np.where(np.isnan(supplied), filled, supplied)
        else:
            custom[col] = interpolate_series(x, baseline[col], custom[stratify_by])
    custom.insert(1, "type", CUSTOM)

    # Benchmark rows
    benchmark = baseline.copy()
    benchmark.insert(1, "type", BENCHMARK)

    parts = [custom, benchmark]

    # Context rows: nearest single baseline row on each side, only when the
    # bracketed custom value lies inside the baseline range
    if include_context:
        lo, hi = custom[stratify_by].min(), custom[stratify_by].max()
        b_min, b_max = baseline[stratify_by].min(), baseline[stratify_by].max()

        before = baseline[baseline[stratify_by] < lo]
        if not before.empty and lo <= b_max:
            pre = before.tail(1).copy()
            pre.insert(1, "type", PRE_BENCHMARK)
            parts.append(pre)

        after = baseline[baseline[stratify_by] > hi]
        if not after.empty and hi >= b_min:
            post = after.head(1).copy()
            post.insert(1, "type", POST_BENCHMARK)
            parts.append(post)

    table = pd.concat(parts, ignore_index=True)
    logger.debug(
        f"Built scenario table: {table['type'].value_counts().to_dict()} over {len(predictors)} predictors"
    )
    return table[[stratify_by, "type"] + predictors]


__all__ = ["build_scenario", "interpolate_series", "ROW_TYPES"]
