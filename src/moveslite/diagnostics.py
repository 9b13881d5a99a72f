"""Formula sweeps: fit many candidate formulas and compare their fit.

A formula that cannot be fitted is logged and dropped rather than aborting
the sweep.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from .errors import ModelFitError
from .model import FittedModel, fit, make_formula
from .transform import detect

logger = logging.getLogger(__name__)

DIAGNOSTIC_COLUMNS = [
    "formula", "transform", "n", "df_resid", "r_squared",
    "adj_r_squared", "sigma", "aic", "bic", "ok", "error",
]


def fit_statistics(model: FittedModel) -> dict:
    """Goodness-of-fit summary for one fitted model."""
    res = model.results
    return {
        "formula": model.formula,
        "transform": detect(model).kind.value,
        "n": model.nobs,
        "df_resid": model.df_resid,
        "r_squared": float(res.rsquared),
        "adj_r_squared": float(res.rsquared_adj),
        "sigma": float(np.sqrt(res.scale)),
        "aic": float(res.aic),
        "bic": float(res.bic),
        "ok": True,
        "error": "",
    }


def diagnose(
    data: pd.DataFrame,
    formulas: Iterable[str],
    keep_failures: bool = False,
) -> pd.DataFrame:
    """Fit each formula and tabulate its fit statistics.

    Parameters
    ----------
    data : pd.DataFrame
        Training data.
    formulas : iterable of str
        Candidate formulas.
    keep_failures : bool
        Keep rows for formulas that failed to fit (``ok=False``).

    Returns
    -------
    pd.DataFrame
        One row per formula, sorted by ``adj_r_squared`` descending.
    """
    rows = []
    for formula in formulas:
        try:
            model = fit(formula, data)
        except ModelFitError as exc:
            logger.warning(f"Skipping formula {formula!r}: {exc}")
            if keep_failures:
                rows.append({
                    "formula": formula, "transform": detect(formula).kind.value,
                    "n": len(data), "df_resid": np.nan, "r_squared": np.nan,
                    "adj_r_squared": np.nan, "sigma": np.nan, "aic": np.nan,
                    "bic": np.nan, "ok": False, "error": str(exc),
                })
            continue
        rows.append(fit_statistics(model))

    table = pd.DataFrame(rows, columns=DIAGNOSTIC_COLUMNS)
    table["ok"] = table["ok"].astype(bool)
    return table.sort_values(
        "adj_r_squared", ascending=False, na_position="last", kind="mergesort"
    ).reset_index(drop=True)


def candidate_formulas(
    variables: Sequence[str],
    *,
    transforms: Sequence[str] = ("log", "identity"),
    max_degree: int = 3,
    outcome: str = "emissions",
) -> list[str]:
    """Formulas over every transform and polynomial degree 1..max_degree.

    Predictors enter on the log scale so raw polynomials stay well conditioned.
    """
    formulas = []
    for transform in transforms:
        for degree in range(1, max_degree + 1):
            formulas.append(make_formula(
                variables, transform=transform, degree=degree,
                outcome=outcome, log_predictors=True,
            ))
    return formulas


def best_formula(data: pd.DataFrame, formulas: Iterable[str]) -> str:
    """Formula with the highest adjusted R² among those that fit.

    Raises
    ------
    ModelFitError
        If none of the formulas can be fitted.
    """
    formulas = list(formulas)
    table = diagnose(data, formulas)
    if table.empty:
        raise ModelFitError("None of the candidate formulas could be fitted", stage="fit", value=formulas)
    return table["formula"].iloc[0]


__all__ = ["diagnose", "fit_statistics", "candidate_formulas", "best_formula", "DIAGNOSTIC_COLUMNS"]
