"""Validation of payout splits across pots."""

from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .exceptions import NegativeAmountError, PolicyViolationError, SliceMismatchError, ValidationError
from .models import Pot, coerce_pot

Slices = Mapping[Pot, int]
AllocationPolicy = Callable[[int, Slices], Optional[str]]
"""A policy returns ``None`` when satisfied, or the reason it was violated."""


def require_savings_share(total: int, slices: Slices) -> Optional[str]:
    """Spending a whole payout is not allowed; save or invest must get something."""

    if slices.get(Pot.SAVE, 0) + slices.get(Pot.INVEST, 0) > 0:
        return None
    return "save + invest must be greater than zero"


def normalise_slices(slices: Mapping[Pot | str, int]) -> Dict[Pot, int]:
    """Key ``slices`` by :class:`Pot`, filling missing pots with zero."""

    result: Dict[Pot, int] = {pot: 0 for pot in Pot}
    for key, amount in slices.items():
        pot = coerce_pot(key)
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(
                f"Slice for {pot.value} must be whole cents.", details={"pot": pot.value}
            )
        result[pot] += amount
    return result


class AllocationValidator:
    """Check that a payout is fully and sensibly assigned across pots."""

    __slots__ = ("_policies",)

    def __init__(self, policies: Sequence[AllocationPolicy] = (require_savings_share,)) -> None:
        self._policies: Tuple[AllocationPolicy, ...] = tuple(policies)

    @property
    def policies(self) -> Tuple[AllocationPolicy, ...]:
        return self._policies

    def with_policies(self, *policies: AllocationPolicy) -> "AllocationValidator":
        return AllocationValidator(self._policies + policies)

    def validate(self, total: int, slices: Mapping[Pot | str, int]) -> Dict[Pot, int]:
        """Raise unless ``slices`` are non-negative, sum to ``total`` and meet every policy.

        Returns the normalised slices so callers work with the same mapping
        that was checked.
        """

        normalised = normalise_slices(slices)
        if total < 0:
            raise NegativeAmountError("The total cannot be negative.", details={"total": total})
        negative = [pot.value for pot, amount in normalised.items() if amount < 0]
        if negative:
            raise NegativeAmountError(
                f"Negative slice for {', '.join(negative)}.", details={"pots": negative}
            )

        allocated = sum(normalised.values())
        if allocated != total:
            raise SliceMismatchError(
                f"Allocation {allocated} does not equal total {total}.",
                details={"allocated": allocated, "total": total},
            )

        for policy in self._policies:
            reason = policy(total, normalised)
            if reason is not None:
                raise PolicyViolationError(reason, details={"policy": getattr(policy, "__name__", "policy")})
        return normalised


__all__ = ["AllocationPolicy", "AllocationValidator", "Slices", "normalise_slices", "require_savings_share"]
