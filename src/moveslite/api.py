"""Public API for MOVESLite: query, estimate, diagnose and project."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Sequence, Union

import pandas as pd

from .client import ApiClient, QueryFailure
from .config import (
    DEFAULT_PREDICTORS,
    DEFAULT_VARIABLES,
    normalize_aggregation,
    normalize_fuel_type,
    normalize_geoid,
    normalize_pollutant,
    normalize_reg_class,
    normalize_road_type,
    normalize_source_type,
)
from .diagnostics import best_formula, candidate_formulas
from .diagnostics import diagnose as _diagnose
from .errors import DataError
from .model import FittedModel, fit, make_formula
from .projection import project as _project

logger = logging.getLogger(__name__)


def check_status(client: Optional[ApiClient] = None) -> Union[dict, QueryFailure]:
    """
    Check that the emissions data API is up.

    Returns
    -------
    dict or QueryFailure
        Decoded status payload, or a failure value if the API is unreachable
        or answers with an error status.
    """
    client = client or ApiClient.from_env()
    return client.check_status()


def query(
    geoid,
    pollutant=98,
    by="overall",
    *,
    sourcetype=None,
    regclass=None,
    fueltype=None,
    roadtype=None,
    variables: Sequence[str] = DEFAULT_VARIABLES,
    client: Optional[ApiClient] = None,
) -> Union[pd.DataFrame, QueryFailure]:
    """
    Retrieve yearly emissions and activity rows from the data API.

    Parameters
    ----------
    geoid : str or int
        2-digit state or 5-digit county FIPS code (e.g. ``"36109"``).
    pollutant : int or str
        MOVES pollutant ID or name (default 98, CO2 equivalent).
    by : str or int
        Aggregation level: ``"overall"``, ``"sourcetype"``, ``"regclass"``,
        ``"fueltype"`` or ``"roadtype"`` (or its numeric ID).
    sourcetype, regclass, fueltype, roadtype : int or str, optional
        Category filters (MOVES IDs or names).
    variables : sequence of str
        Columns to request; each must come back in the payload.
    client : ApiClient, optional
        Client to use; defaults to one built from the environment.

    Returns
    -------
    pd.DataFrame or QueryFailure
        Rows sorted by year, or a failure value for network/API errors.

    Raises
    ------
    ConfigurationError
        If an argument is not a valid code.
    DataError
        If a requested variable is missing from the returned columns.

    Examples
    --------
    >>> import moveslite
    >>> data = moveslite.query("36109", pollutant="co2e")
    >>> if not data:
    ...     print(data.message)
    """
    variables = list(dict.fromkeys(variables))
    params = {
        "geoid": normalize_geoid(geoid),
        "pollutant": normalize_pollutant(pollutant),
        "aggregation": normalize_aggregation(by),
        "var": ",".join(variables),
    }
    filters = {
        "sourcetype": normalize_source_type(sourcetype),
        "regclass": normalize_reg_class(regclass),
        "fueltype": normalize_fuel_type(fueltype),
        "roadtype": normalize_road_type(roadtype),
    }
    params.update({k: v for k, v in filters.items() if v is not None})

    client = client or ApiClient.from_env()
    result = client.retrieve(params)
    if isinstance(result, QueryFailure):
        return result

    missing = [v for v in variables if v not in result.columns]
    if missing:
        raise DataError("Requested variable absent from returned columns", stage="query", value=missing[0])
    if "year" in result.columns:
        result = result.sort_values("year", kind="mergesort").reset_index(drop=True)
    return result


def estimate(
    data: pd.DataFrame,
    vars: Sequence[str] = DEFAULT_PREDICTORS,
    *,
    transform: str = "log",
    degree: int = 1,
    best: bool = False,
    max_degree: int = 3,
    formula: Optional[str] = None,
    outcome: str = "emissions",
) -> FittedModel:
    """
    Fit an emissions model.

    Parameters
    ----------
    data : pd.DataFrame
        Training rows (e.g. from :func:`query`).
    vars : sequence of str
        Predictor columns (default: vmt, vehicles, sourcehours, starts).
        ``year`` is always included as a linear term.
    transform : str
        Outcome transform: ``"log"`` (default), ``"log10"``, ``"sqrt"`` or ``"identity"``.
    degree : int
        Polynomial degree for each predictor.
    best : bool
        Sweep transforms {log, identity} and degrees 1..max_degree and keep
        the formula with the highest adjusted R².
    max_degree : int
        Highest degree tried when ``best`` is set.
    formula : str, optional
        Explicit formula; overrides ``vars``, ``transform``, ``degree`` and ``best``.
    outcome : str
        Outcome column (default ``"emissions"``).

    Raises
    ------
    ConfigurationError
        If ``transform`` is unknown or no predictor is left.
    ModelFitError
        If the formula cannot be fitted (or, with ``best``, none can).
    """
    if formula is None:
        if best:
            formula = best_formula(data, candidate_formulas(vars, max_degree=max_degree, outcome=outcome))
        else:
            formula = make_formula(vars, transform=transform, degree=degree, outcome=outcome)
    return fit(formula, data)


def diagnose(
    data: pd.DataFrame,
    formulas: Optional[Iterable[str]] = None,
    *,
    vars: Sequence[str] = DEFAULT_PREDICTORS,
    max_degree: int = 3,
    keep_failures: bool = False,
) -> pd.DataFrame:
    """
    Compare candidate formulas on the same data.

    If ``formulas`` is omitted, the candidates used by ``estimate(best=True)``
    are compared. Formulas that fail to fit are dropped unless
    ``keep_failures`` is set.
    """
    if formulas is None:
        formulas = candidate_formulas(vars, max_degree=max_degree)
    return _diagnose(data, formulas, keep_failures=keep_failures)


def project(
    model: FittedModel,
    data: pd.DataFrame,
    newdata: Union[Mapping, pd.DataFrame],
    *,
    stratify_by: str = "year",
    exclude: Sequence[str] = ("geoid",),
    context: bool = True,
    ci: float = 0.95,
    draws: int = 1000,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Project emissions for a scenario with confidence intervals.

    Parameters
    ----------
    model : FittedModel
        Fitted model from :func:`estimate`.
    data : pd.DataFrame
        Baseline rows (benchmark values and interpolation defaults).
    newdata : mapping or pd.DataFrame
        Scenario values, e.g. ``{"year": 2030, "vmt": 4.2e9}``.
    stratify_by : str
        Ordering column (default ``"year"``).
    exclude : sequence of str
        Columns kept out of interpolation and output.
    context : bool
        Add pre/post benchmark context rows.
    ci : float
        Confidence level (default 0.95).
    draws : int
        Simulation draws per row for transformed outcomes.
    seed : int, optional
        Seed for reproducible back-transformation.

    Returns
    -------
    pd.DataFrame
        Columns ``year`` (or ``stratify_by``), ``type``, ``emissions``,
        ``se``, ``lower``, ``upper`` and the predictors.

    Examples
    --------
    >>> import moveslite
    >>> model = moveslite.estimate(data)
    >>> moveslite.project(model, data, {"year": 2030}, seed=1)
    """
    return _project(
        model,
        data,
        newdata,
        stratify_by=stratify_by,
        exclude=exclude,
        include_context=context,
        confidence_level=ci,
        draws=draws,
        seed=seed,
    )


__all__ = ["check_status", "query", "estimate", "diagnose", "project"]
