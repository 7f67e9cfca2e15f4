"""
Fee policy and payout computation.

compute_fees() and validate_policy_update() are pure. FeePolicyService
wraps the append-only policy history kept in the task store.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, cast

from task_market_service.core.exceptions import ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.permissions import require_role

if TYPE_CHECKING:
    from task_market_service.services.permissions import Actor
    from task_market_service.services.task_store import TaskStore

logger = get_logger(__name__)

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)


def _to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _round_cents(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeePolicy:
    """Rates are fractions (0.05 for 5%). The trust and support fee is a flat amount."""

    platform_fee_rate: Decimal
    commission_rate: Decimal
    trust_and_support_fee: Decimal

    @classmethod
    def from_percentages(
        cls,
        platform_fee_percentage: float | int | Decimal,
        commission_percentage: float | int | Decimal,
        trust_and_support_fee: float | int | Decimal,
    ) -> FeePolicy:
        """Build a policy from whole-percent rates."""
        return cls(
            platform_fee_rate=_to_decimal(platform_fee_percentage) / _HUNDRED,
            commission_rate=_to_decimal(commission_percentage) / _HUNDRED,
            trust_and_support_fee=_to_decimal(trust_and_support_fee),
        )

    @property
    def platform_fee_percentage(self) -> float:
        return float(self.platform_fee_rate * _HUNDRED)

    @property
    def commission_percentage(self) -> float:
        return float(self.commission_rate * _HUNDRED)


@dataclass(frozen=True)
class FeeBreakdown:
    """Monetary snapshot derived from a budget and a policy. budget is the cent-rounded amount."""

    budget: Decimal
    platform_fee: Decimal
    commission_amount: Decimal
    trust_and_support_fee: Decimal
    final_tasker_payout: Decimal
    total_amount_paid_by_customer: Decimal

    def to_dict(self) -> dict[str, float]:
        return {
            "budget": float(self.budget),
            "platform_fee": float(self.platform_fee),
            "commission_amount": float(self.commission_amount),
            "trust_and_support_fee": float(self.trust_and_support_fee),
            "final_tasker_payout": float(self.final_tasker_payout),
            "total_amount_paid_by_customer": float(self.total_amount_paid_by_customer),
        }


def compute_fees(budget: float | int | Decimal, policy: FeePolicy) -> FeeBreakdown:
    """
    Compute the fee breakdown for a budget.

    Amounts are rounded half-up to cents. The payout and the customer total
    are derived from the rounded parts, so
    payout + commission == budget and
    total == budget + platform fee + trust and support fee hold exactly
    against the returned budget, which callers store in place of the raw one.
    """
    amount = _round_cents(_to_decimal(budget))
    platform_fee = _round_cents(amount * policy.platform_fee_rate)
    commission_amount = _round_cents(amount * policy.commission_rate)
    trust_and_support_fee = _round_cents(policy.trust_and_support_fee)
    return FeeBreakdown(
        budget=amount,
        platform_fee=platform_fee,
        commission_amount=commission_amount,
        trust_and_support_fee=trust_and_support_fee,
        final_tasker_payout=amount - commission_amount,
        total_amount_paid_by_customer=amount + platform_fee + trust_and_support_fee,
    )


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_policy_update(data: dict[str, Any]) -> tuple[float, float, float]:
    """
    Validate a fee policy update body.

    Returns:
        (platform_fee_percentage, commission_percentage, trust_and_support_fee)

    Raises:
        ValidationError: If a value is missing, not a number or out of range.
    """
    platform_pct = data.get("platform_fee_percentage")
    commission_pct = data.get("commission_percentage")
    flat_fee = data.get("trust_and_support_fee")

    for field_name, value in (
        ("platform_fee_percentage", platform_pct),
        ("commission_percentage", commission_pct),
        ("trust_and_support_fee", flat_fee),
    ):
        if not _is_number(value):
            raise ValidationError(
                f"Field '{field_name}' must be a number",
                {"field": field_name},
                error="INVALID_FEE_POLICY",
            )

    platform_pct = cast("float", platform_pct)
    commission_pct = cast("float", commission_pct)
    flat_fee = cast("float", flat_fee)

    for field_name, value in (
        ("platform_fee_percentage", platform_pct),
        ("commission_percentage", commission_pct),
    ):
        if not 0 <= value <= 100:
            raise ValidationError(
                "Fee percentages must be between 0 and 100",
                {"field": field_name},
                error="INVALID_FEE_POLICY",
            )

    if flat_fee < 0:
        raise ValidationError(
            "Trust and support fee cannot be negative",
            {"field": "trust_and_support_fee"},
            error="INVALID_FEE_POLICY",
        )

    return float(platform_pct), float(commission_pct), float(flat_fee)


class FeePolicyService:
    """Current fee policy lookup and administrator updates."""

    def __init__(self, store: TaskStore, default_policy: FeePolicy) -> None:
        self._store = store
        self._default_policy = default_policy

    def current_policy(self) -> FeePolicy:
        """The most recently stored policy, or the configured default."""
        record = self._store.get_latest_fee_policy()
        if record is None:
            return self._default_policy
        return FeePolicy.from_percentages(
            record["platform_fee_percentage"],
            record["commission_percentage"],
            record["trust_and_support_fee"],
        )

    def get_policy(self) -> dict[str, Any]:
        """Describe the current policy for API responses."""
        record = self._store.get_latest_fee_policy()
        if record is None:
            return {
                "policy_id": None,
                "platform_fee_percentage": self._default_policy.platform_fee_percentage,
                "commission_percentage": self._default_policy.commission_percentage,
                "trust_and_support_fee": float(self._default_policy.trust_and_support_fee),
                "updated_by": None,
                "created_at": None,
                "is_default": True,
            }
        return {**record, "is_default": False}

    def update_policy(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Append a new policy record. Administrators only.

        Raises:
            ForbiddenError: If the actor is not an administrator.
            ValidationError: If the body is invalid.
        """
        require_role(actor, {"admin"}, "Only administrators can update fees")
        platform_pct, commission_pct, flat_fee = validate_policy_update(data)

        record = {
            "policy_id": f"fee-{uuid.uuid4()}",
            "platform_fee_percentage": platform_pct,
            "commission_percentage": commission_pct,
            "trust_and_support_fee": flat_fee,
            "updated_by": actor.id,
            "created_at": datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z"),
        }
        self._store.insert_fee_policy(record)
        logger.info(
            "Fee policy updated",
            extra={
                "policy_id": record["policy_id"],
                "platform_fee_percentage": platform_pct,
                "commission_percentage": commission_pct,
                "trust_and_support_fee": flat_fee,
                "updated_by": actor.id,
            },
        )
        return {**record, "is_default": False}

    def policy_history(self, actor: Actor) -> list[dict[str, Any]]:
        """
        Every stored policy, newest first. Administrators only.

        Raises:
            ForbiddenError: If the actor is not an administrator.
        """
        require_role(actor, {"admin"}, "Only administrators can view fee history")
        return self._store.list_fee_policies()
