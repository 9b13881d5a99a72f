"""Projector: scenario table -> model prediction -> original-scale emissions.

Stages run strictly in order, with no retries:

1. build the scenario table (:func:`moveslite.scenarios.build_scenario`)
2. predict on the model's outcome scale (:func:`moveslite.model.predict`)
3. detect the outcome transform once for the model
4. back-transform each row by simulation when the outcome was transformed,
   otherwise use ``estimate ± t * se``
5. assemble tags, predictors and ``emissions/se/lower/upper``
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from .config import validate_confidence_level
from .model import FittedModel, predict
from .scenarios import build_scenario
from .simulation import backtransform, make_rng
from .transform import detect

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ("emissions", "se", "lower", "upper")


def t_interval(estimate, se, df: float, confidence_level: float = 0.95):
    """Symmetric t-based interval ``estimate ± t_{df} * se``."""
    estimate = np.asarray(estimate, dtype=float)
    se = np.asarray(se, dtype=float)
    q = stats.t.ppf(1.0 - (1.0 - confidence_level) / 2.0, df)
    return estimate - q * se, estimate + q * se


def project(
    model: FittedModel,
    baseline_data: pd.DataFrame,
    scenario_input: Union[Mapping, pd.DataFrame],
    stratify_by: str = "year",
    exclude: Sequence[str] = ("geoid",),
    include_context: bool = True,
    confidence_level: float = 0.95,
    draws: int = 1000,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Project emissions for a scenario.

    Parameters
    ----------
    model : FittedModel
        Model returned by :func:`moveslite.model.fit` or :func:`moveslite.api.estimate`.
    baseline_data : pd.DataFrame
        Observed rows supplying benchmark values and interpolation defaults.
    scenario_input : mapping or pd.DataFrame
        Scenario values; must include ``stratify_by``.
    stratify_by : str
        Ordering column (default ``"year"``).
    exclude : sequence of str
        Columns left out of interpolation and output. The model's outcome
        columns are always excluded as well.
    include_context : bool
        Add ``pre_benchmark`` / ``post_benchmark`` rows.
    confidence_level : float
        Two-sided confidence level (default 0.95).
    draws : int
        Simulation draws per row for transformed outcomes (default 1000).
    seed : int, optional
        Seed for the simulation; one stream is shared across all rows.

    Returns
    -------
    pd.DataFrame
        ``stratify_by``, ``type``, ``emissions``, ``se``, ``lower``,
        ``upper``, then the predictor columns.
    """
    validate_confidence_level(confidence_level)

    exclude = tuple(exclude or ()) + tuple(c for c in model.outcome_vars if c not in (exclude or ()))
    table = build_scenario(
        baseline_data,
        scenario_input,
        stratify_by=stratify_by,
        exclude=exclude,
        include_context=include_context,
    )

    pred = predict(model, table)
    transform = detect(model)
    logger.info(
        f"Projecting {len(table)} rows with {model.formula!r} "
        f"(transform={transform.kind.value}, df={pred.df_resid:g})"
    )

    if transform.is_identity:
        lower, upper = t_interval(pred.estimate, pred.se, pred.df_resid, confidence_level)
        result = pd.DataFrame({
            "emissions": pred.estimate,
            "se": pred.se,
            "lower": lower,
            "upper": upper,
        })
    else:
        rng = make_rng(seed)
        rows = [
            backtransform(
                est, se, transform, pred.df_resid,
                confidence_level=confidence_level, draws=draws, rng=rng,
            )
            for est, se in zip(pred.estimate, pred.se)
        ]
        result = pd.DataFrame(rows, columns=list(RESULT_COLUMNS))

    predictors = [c for c in table.columns if c not in (stratify_by, "type")]
    out = pd.concat(
        [table[[stratify_by, "type"]].reset_index(drop=True), result, table[predictors].reset_index(drop=True)],
        axis=1,
    )
    return out


__all__ = ["project", "t_interval", "RESULT_COLUMNS"]
