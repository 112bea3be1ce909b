"""Registry of aggregate functions (``sum``, ``avg``, ``min``, ``max``, ``count``, ``prod``).

Each aggregate takes one evaluated :data:`~mdtable.formulas.values.Value` and
reduces a matrix's elements to a :class:`Scalar`.  A scalar argument passes
through unchanged, except for ``count`` which counts it as one element.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from mdtable.formulas.values import Matrix, Scalar, Value

Aggregate = Callable[[Value], Scalar]

_AGGREGATES: dict[str, Aggregate] = {}


def register_aggregate(name: str) -> Callable[[Aggregate], Aggregate]:
    """Decorator that registers an aggregate function by name.

    Args:
        name: The lookup name, lowercase.

    Returns:
        The original function, unmodified.
    """

    def decorator(fn: Aggregate) -> Aggregate:
        _AGGREGATES[name] = fn
        return fn

    return decorator


def get_aggregate_fn(name: str) -> Aggregate:
    """Look up a registered aggregate by (case-insensitive) name.

    Raises:
        KeyError: If no aggregate is registered under *name*.
    """
    key = name.lower()
    if key not in _AGGREGATES:
        raise KeyError(f"Unknown aggregate function: {name!r}")
    return _AGGREGATES[key]


def aggregate_names() -> list[str]:
    return list(_AGGREGATES)


@register_aggregate("sum")
def _sum(value: Value) -> Scalar:
    if isinstance(value, Scalar):
        return value
    return Scalar(sum(value.data, Decimal(0)))


@register_aggregate("avg")
def _avg(value: Value) -> Scalar:
    if isinstance(value, Scalar):
        return value
    if not value.data:
        return Scalar(Decimal(0))
    return Scalar(sum(value.data, Decimal(0)) / Decimal(len(value.data)))


@register_aggregate("min")
def _min(value: Value) -> Scalar:
    if isinstance(value, Scalar):
        return value
    return Scalar(min(value.data, default=Decimal(0)))


@register_aggregate("max")
def _max(value: Value) -> Scalar:
    if isinstance(value, Scalar):
        return value
    return Scalar(max(value.data, default=Decimal(0)))


@register_aggregate("count")
def _count(value: Value) -> Scalar:
    if isinstance(value, Matrix):
        return Scalar(Decimal(len(value.data)))
    return Scalar(Decimal(1))


@register_aggregate("prod")
def _prod(value: Value) -> Scalar:
    if isinstance(value, Scalar):
        return value
    result = Decimal(1)
    for d in value.data:
        result *= d
    return Scalar(result)
