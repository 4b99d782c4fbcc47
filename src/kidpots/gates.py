"""Eligibility rules for moving money out of, or into, gated pots."""

from __future__ import annotations

from .config import DONATE_POLICY_AGE
from .exceptions import BelowThresholdError, DonateDisabledError
from .models import BalanceSnapshot, ChildProfile, PotSettings


class ThresholdGate:
    """Decide whether the invest and donate pots are usable for a child."""

    __slots__ = ("policy_age",)

    def __init__(self, *, policy_age: int = DONATE_POLICY_AGE) -> None:
        self.policy_age = policy_age

    def can_transfer_invest(self, balance: BalanceSnapshot, settings: PotSettings) -> bool:
        return balance.invest >= settings.invest_threshold_cents

    def ensure_can_transfer_invest(self, balance: BalanceSnapshot, settings: PotSettings) -> None:
        """Raise :class:`BelowThresholdError` unless the live invest balance qualifies."""

        if not self.can_transfer_invest(balance, settings):
            raise BelowThresholdError(
                f"Invest pot holds {balance.invest}, threshold is {settings.invest_threshold_cents}.",
                details={
                    "invest_cents": balance.invest,
                    "threshold_cents": settings.invest_threshold_cents,
                },
            )

    def donate_enabled(self, child: ChildProfile, balance: BalanceSnapshot) -> bool:
        """Donate shows once the child is old enough, opted in, or already has money there.

        The last condition keeps a non-empty pot visible even after the opt-in
        is switched off again.
        """

        if child.age is not None and child.age >= self.policy_age:
            return True
        return child.donate_enabled or balance.donate > 0

    def ensure_donate_enabled(self, child: ChildProfile, balance: BalanceSnapshot) -> None:
        if not self.donate_enabled(child, balance):
            raise DonateDisabledError(
                f"Donate pot is not enabled for child {child.id}.",
                details={"child_id": child.id, "policy_age": self.policy_age},
            )


__all__ = ["ThresholdGate"]
