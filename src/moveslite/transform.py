"""Detect the outcome transformation of a fitted model.

The left-hand side of the model formula is matched against a fixed, ordered
list of wrappers. ``log10`` is tried before ``log`` so that ``log10(y)`` is
never read as a natural log. Anything unrecognized is treated as untransformed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)


class Transformation(str, Enum):
    """Outcome transformations the projector knows how to invert."""

    LOG = "log"
    LOG10 = "log10"
    SQRT = "sqrt"
    IDENTITY = "identity"

    @property
    def inverse_expr(self) -> str:
        return _INVERSE_EXPR[self]

    def inverse(self, y):
        """Apply the inverse transform elementwise."""
        return _INVERSE_FUNC[self](np.asarray(y, dtype=float))


_INVERSE_EXPR = {
    Transformation.LOG: "exp(y)",
    Transformation.LOG10: "10^y",
    Transformation.SQRT: "y^2",
    Transformation.IDENTITY: "y",
}

_INVERSE_FUNC = {
    Transformation.LOG: np.exp,
    Transformation.LOG10: lambda y: np.power(10.0, y),
    Transformation.SQRT: np.square,
    Transformation.IDENTITY: lambda y: y,
}

# Order matters: first match wins
_PATTERNS = (
    (Transformation.LOG10, re.compile(r"^(?:np\.|numpy\.)?log10\s*\((.+)\)$")),
    (Transformation.LOG, re.compile(r"^(?:np\.|numpy\.)?log\s*\((.+)\)$")),
    (Transformation.SQRT, re.compile(r"^(?:np\.|numpy\.)?sqrt\s*\((.+)\)$")),
)

_WRAPPER_RE = re.compile(r"^[A-Za-z_][\w.]*\s*\(")


@dataclass(frozen=True)
class TransformationDescriptor:
    """Detected transform and its inverse expression over ``y``."""

    kind: Transformation
    inverse_expr: str

    @property
    def is_identity(self) -> bool:
        return self.kind is Transformation.IDENTITY

    def inverse(self, y):
        return self.kind.inverse(y)


def descriptor_for(kind: Union[Transformation, str]) -> TransformationDescriptor:
    kind = Transformation(kind)
    return TransformationDescriptor(kind=kind, inverse_expr=kind.inverse_expr)


def detect(model) -> TransformationDescriptor:
    """Detect the outcome transform of ``model``.

    Parameters
    ----------
    model : FittedModel or str
        A fitted model, or a formula string such as ``"log(emissions) ~ vmt"``.

    Returns
    -------
    TransformationDescriptor
        ``identity`` when the outcome carries no recognized wrapper.
    """
    formula = model if isinstance(model, str) else model.formula
    outcome = formula.split("~", 1)[0].strip()

    for kind, pattern in _PATTERNS:
        if pattern.match(outcome):
            return descriptor_for(kind)

    if _WRAPPER_RE.match(outcome):
        logger.debug(f"Unrecognized outcome transform {outcome!r}; treating as identity")
    return descriptor_for(Transformation.IDENTITY)


__all__ = ["Transformation", "TransformationDescriptor", "detect", "descriptor_for"]
