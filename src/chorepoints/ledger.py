"""Point arithmetic shared by the task and reward claim engines."""

from __future__ import annotations

from typing import Union

from .exceptions import ValidationError

PointsLike = Union[int, float, str]


def to_points(value: PointsLike) -> int:
    """Convert ``value`` to an integer point amount."""

    if isinstance(value, bool):
        raise ValidationError("Points must be a whole number, not a boolean.")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"Points must be a whole number: {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ValidationError(f"Points must be a whole number: {value!r}") from exc
    raise ValidationError(f"Unsupported points type: {type(value)!r}")


def require_points(amount: int, *, allow_zero: bool = False) -> int:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < 0:
            raise ValidationError("Points must be zero or greater.")
    elif amount <= 0:
        raise ValidationError("Points must be greater than zero.")
    return amount


def can_afford(balance: int, cost: int) -> bool:
    return balance >= cost


def debit(balance: int, cost: int) -> int:
    """Return the balance after spending ``cost``.

    Only computes; callers check :func:`can_afford` against the same
    transaction snapshot first.
    """

    return balance - cost


def credit(balance: int, amount: int) -> int:
    """Return the balance after awarding the full ``amount``."""

    return balance + amount


def progress(balance: int, cost: int) -> float:
    """Return how far ``balance`` gets towards ``cost`` as a ratio capped at 1."""

    if balance <= 0 or cost <= 0:
        return 0.0
    return min(balance / cost, 1.0)


__all__ = [
    "PointsLike",
    "can_afford",
    "credit",
    "debit",
    "progress",
    "require_points",
    "to_points",
]
