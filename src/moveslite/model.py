"""OLS emissions model: formula helpers, fitting and prediction.

Models are fitted with ``statsmodels.formula.api.ols``. Formulas are
evaluated in a small namespace that provides ``log``, ``log10``, ``sqrt``,
``exp`` and ``poly`` so they read the same as the transform names that
:mod:`moveslite.transform` recognizes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from patsy import EvalEnvironment, PatsyError
from statsmodels.tools.sm_exceptions import MissingDataError

from .errors import ConfigurationError, DataError, ModelFitError

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")


def poly(x, degree: int = 2) -> np.ndarray:
    """Raw polynomial expansion ``[x, x**2, ..., x**degree]``.

    Stateless, so the same columns are produced for training and new data.
    """
    x = np.asarray(x, dtype=float)
    degree = int(degree)
    if degree < 1:
        raise ValueError(f"poly degree must be >= 1, got {degree}")
    return np.column_stack([x ** d for d in range(1, degree + 1)])


FORMULA_NAMESPACE = {
    "np": np,
    "log": np.log,
    "log10": np.log10,
    "sqrt": np.sqrt,
    "exp": np.exp,
    "poly": poly,
}


def _eval_env() -> EvalEnvironment:
    return EvalEnvironment([dict(FORMULA_NAMESPACE)])


@dataclass(frozen=True)
class FittedModel:
    """A fitted OLS emissions model.

    Attributes
    ----------
    formula : str
        Formula as passed to ``fit``.
    outcome : str
        Left-hand side of the formula (e.g. ``"log(emissions)"``).
    outcome_vars : tuple[str, ...]
        Data columns referenced by the outcome.
    predictors : tuple[str, ...]
        Data columns referenced by the right-hand side.
    results : statsmodels RegressionResults
        Underlying fitted results.
    """

    formula: str
    outcome: str
    outcome_vars: tuple
    predictors: tuple
    results: object

    @property
    def df_resid(self) -> float:
        return float(self.results.df_resid)

    @property
    def params(self) -> pd.Series:
        return self.results.params

    @property
    def nobs(self) -> int:
        return int(self.results.nobs)

    def __repr__(self) -> str:
        return (
            f"FittedModel({self.formula!r}, n={self.nobs}, "
            f"adj_r2={self.results.rsquared_adj:.3f})"
        )


@dataclass
class Prediction:
    """Point estimates and standard errors on the model's outcome scale."""

    estimate: np.ndarray
    se: np.ndarray
    df_resid: float


def split_formula(formula: str) -> tuple[str, str]:
    """Split ``"lhs ~ rhs"`` into its stripped sides."""
    if not isinstance(formula, str) or formula.count("~") != 1:
        raise ModelFitError("Formula must have the form 'outcome ~ predictors'", stage="fit", value=formula)
    lhs, rhs = formula.split("~")
    lhs, rhs = lhs.strip(), rhs.strip()
    if not lhs or not rhs:
        raise ModelFitError("Formula must have the form 'outcome ~ predictors'", stage="fit", value=formula)
    return lhs, rhs


def referenced_columns(expr: str, columns: Sequence[str]) -> tuple:
    """Names in ``expr`` that are columns of the data, in first-seen order."""
    cols = set(columns)
    seen = []
    for name in _IDENT_RE.findall(expr):
        if name in cols and name not in seen:
            seen.append(name)
    return tuple(seen)


def make_formula(
    variables: Sequence[str],
    *,
    transform: str = "log",
    degree: int = 1,
    outcome: str = "emissions",
    include_year: bool = True,
    log_predictors: bool = False,
) -> str:
    """Build a formula such as ``log(emissions) ~ poly(vmt, 2) + year``.

    Parameters
    ----------
    variables : sequence of str
        Predictor columns.
    transform : str
        Outcome transform: ``"log"``, ``"log10"``, ``"sqrt"`` or ``"identity"``.
    degree : int
        Polynomial degree applied to each predictor (1 = linear terms).
    outcome : str
        Outcome column.
    include_year : bool
        Append a linear ``year`` term if not already among the variables.
    log_predictors : bool
        Wrap each non-year predictor in ``log()``. Keeps raw polynomial
        terms of large activity totals (VMT in the billions) well conditioned.
    """
    if transform in ("identity", "", None):
        lhs = outcome
    elif transform in ("log", "log10", "sqrt"):
        lhs = f"{transform}({outcome})"
    else:
        raise ConfigurationError(
            "Unknown transform; use log, log10, sqrt or identity", stage="fit", value=transform
        )

    variables = [v for v in variables if v != outcome]
    terms = []
    for v in variables:
        if v == "year":
            continue
        term = f"log({v})" if log_predictors else v
        terms.append(term if degree <= 1 else f"poly({term}, {degree})")
    if include_year or "year" in variables:
        terms.append("year")
    if not terms:
        raise ConfigurationError("At least one predictor is required", stage="fit", value=list(variables))
    return f"{lhs} ~ {' + '.join(terms)}"


def fit(formula: str, data: pd.DataFrame) -> FittedModel:
    """Fit an OLS model.

    Raises
    ------
    ModelFitError
        If the formula cannot be evaluated against ``data``, the design
        matrix is singular, or no residual degrees of freedom remain.
    """
    lhs, rhs = split_formula(formula)
    try:
        results = smf.ols(formula, data=data, eval_env=_eval_env()).fit()
    except (PatsyError, MissingDataError, ValueError, TypeError, KeyError, NameError) as exc:
        raise ModelFitError(f"Could not fit formula ({exc})", stage="fit", value=formula) from exc

    exog = results.model.exog
    if not (np.isfinite(exog).all() and np.isfinite(results.model.endog).all()):
        raise ModelFitError(
            "Formula produces non-finite values (e.g. log of zero emissions)",
            stage="fit",
            value=formula,
        )
    # Scale columns so rank reflects collinearity, not units
    norms = np.linalg.norm(exog, axis=0)
    rank = np.linalg.matrix_rank(exog / np.where(norms == 0, 1.0, norms))
    if rank < exog.shape[1]:
        raise ModelFitError(
            f"Singular design matrix (rank {rank} < {exog.shape[1]} columns)",
            stage="fit",
            value=formula,
        )
    if results.df_resid < 1:
        raise ModelFitError(
            f"No residual degrees of freedom ({int(results.nobs)} rows for {exog.shape[1]} coefficients)",
            stage="fit",
            value=formula,
        )

    model = FittedModel(
        formula=formula,
        outcome=lhs,
        outcome_vars=referenced_columns(lhs, data.columns),
        predictors=referenced_columns(rhs, data.columns),
        results=results,
    )
    logger.info(f"Fitted {model!r}")
    return model


def predict(model: FittedModel, newdata: pd.DataFrame) -> Prediction:
    """Predict on the outcome's (possibly transformed) scale.

    Every row of ``newdata`` gets a prediction, in order; rows are never
    dropped.

    Raises
    ------
    DataError
        If ``newdata`` lacks a predictor the formula needs, a predictor
        value is missing, or the formula cannot be evaluated on a row.
    """
    missing = [c for c in model.predictors if c not in newdata.columns]
    if missing:
        raise DataError("Missing predictor column", stage="predict", value=missing[0])
    incomplete = [c for c in model.predictors if newdata[c].isna().any()]
    if incomplete:
        raise DataError("Missing predictor value", stage="predict", value=incomplete[0])
    try:
        frame = model.results.get_prediction(newdata).summary_frame()
    except PatsyError as exc:
        raise DataError(f"Could not evaluate formula on new data ({exc})", stage="predict",
                        value=model.formula) from exc
    # patsy drops rows whose terms evaluate to NaN (e.g. log of a negative)
    if len(frame) != len(newdata):
        raise DataError(
            f"Formula is undefined on {len(newdata) - len(frame)} of {len(newdata)} rows",
            stage="predict",
            value=model.formula,
        )
    return Prediction(
        estimate=frame["mean"].to_numpy(dtype=float),
        se=frame["mean_se"].to_numpy(dtype=float),
        df_resid=model.df_resid,
    )


__all__ = [
    "FittedModel",
    "Prediction",
    "fit",
    "predict",
    "make_formula",
    "split_formula",
    "poly",
]
