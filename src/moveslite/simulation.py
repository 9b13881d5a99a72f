"""Back-transform predictions from a transformed outcome scale by simulation.

Inverting a point estimate and the endpoints of a symmetric interval
directly gives a biased estimate on the original scale (the exponential of a
log-scale mean is the median, not the mean). Instead, plausible outcomes are
drawn from a Student-t distribution matching the fitted estimate and its
standard error, each draw is inverted, and the draws are summarized.
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np

from .config import validate_confidence_level
from .errors import ConfigurationError
from .transform import Transformation, TransformationDescriptor

_EXPR_TO_KIND = {t.inverse_expr.replace(" ", ""): t for t in Transformation}
# Alternate spellings of the same inverses
_EXPR_TO_KIND.update({
    "10**y": Transformation.LOG10,
    "y**2": Transformation.SQRT,
    "np.exp(y)": Transformation.LOG,
})


def resolve_inverse(inverse_expr) -> Transformation:
    """Map an inverse expression, descriptor or transform to a Transformation."""
    if isinstance(inverse_expr, TransformationDescriptor):
        return inverse_expr.kind
    if isinstance(inverse_expr, Transformation):
        return inverse_expr
    if isinstance(inverse_expr, str):
        key = inverse_expr.replace(" ", "")
        if key in _EXPR_TO_KIND:
            return _EXPR_TO_KIND[key]
    raise ConfigurationError(
        f"Unsupported inverse expression; expected one of {sorted(_EXPR_TO_KIND)}",
        stage="backtransform",
        value=inverse_expr,
    )


def make_rng(seed: Optional[int] = None, rng: Optional[np.random.Generator] = None) -> np.random.Generator:
    """Return ``rng`` if given, else a generator seeded with ``seed`` (None = fresh entropy)."""
    if rng is not None:
        return rng
    return np.random.default_rng(seed)


def backtransform(
    point_estimate: float,
    standard_error: float,
    inverse_expr: Union[str, Transformation, TransformationDescriptor],
    degrees_of_freedom: float,
    confidence_level: float = 0.95,
    draws: int = 1000,
    *,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> dict:
    """Simulate the original-scale distribution of a transformed-scale prediction.

    Parameters
    ----------
    point_estimate : float
        Prediction on the transformed scale.
    standard_error : float
        Standard error of the prediction on the transformed scale.
    inverse_expr : str, Transformation or TransformationDescriptor
        Inverse transform, e.g. ``"exp(y)"``, ``"10^y"``, ``"y^2"`` or ``"y"``.
    degrees_of_freedom : float
        Residual degrees of freedom of the fitted model.
    confidence_level : float
        Two-sided confidence level for ``lower`` / ``upper`` (default 0.95).
    draws : int
        Number of simulated draws (default 1000).
    seed : int, optional
        Seed for a fresh generator. Ignored when ``rng`` is given.
    rng : numpy.random.Generator, optional
        Generator to draw from; lets a caller share one stream across rows.

    Returns
    -------
    dict
        ``emissions`` (mean of draws), ``se`` (sample standard deviation),
        ``lower`` and ``upper`` (empirical quantiles).
    """
    kind = resolve_inverse(inverse_expr)
    validate_confidence_level(confidence_level)
    if int(draws) < 2:
        raise ConfigurationError("draws must be at least 2", stage="backtransform", value=draws)
    if not degrees_of_freedom > 0:
        raise ConfigurationError(
            "degrees_of_freedom must be positive", stage="backtransform", value=degrees_of_freedom
        )

    gen = make_rng(seed, rng)
    t_draws = gen.standard_t(degrees_of_freedom, size=int(draws))
    samples = kind.inverse(point_estimate + standard_error * t_draws)

    alpha = 1.0 - confidence_level
    lower, upper = np.quantile(samples, [alpha / 2.0, 1.0 - alpha / 2.0])
    return {
        "emissions": float(np.mean(samples)),
        "se": float(np.std(samples, ddof=1)),
        "lower": float(lower),
        "upper": float(upper),
    }


__all__ = ["backtransform", "resolve_inverse", "make_rng"]
