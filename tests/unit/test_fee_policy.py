"""Unit tests for fee computation and fee policy validation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from task_market_service.core.exceptions import ForbiddenError, ValidationError
from task_market_service.services.fee_policy import (
    FeePolicy,
    FeePolicyService,
    compute_fees,
    validate_policy_update,
)
from task_market_service.services.task_store import TaskStore
from tests.helpers import ADMIN, ALICE

DEFAULT_POLICY = FeePolicy.from_percentages(5, 15, 2)


@pytest.mark.unit
def test_compute_fees_reference_budget() -> None:
    """A budget of 1000 at 5% / 15% / 2 gives the documented breakdown."""
    fees = compute_fees(1000, DEFAULT_POLICY)
    assert fees.to_dict() == {
        "budget": 1000.0,
        "platform_fee": 50.0,
        "commission_amount": 150.0,
        "trust_and_support_fee": 2.0,
        "final_tasker_payout": 850.0,
        "total_amount_paid_by_customer": 1052.0,
    }


@pytest.mark.unit
def test_compute_fees_rounds_half_up_to_cents() -> None:
    """Fractional cents round half up and the totals stay consistent."""
    fees = compute_fees(10.1, FeePolicy.from_percentages(5, 15, 0))
    # 10.10 * 0.05 = 0.505 and 10.10 * 0.15 = 1.515
    assert fees.platform_fee == Decimal("0.51")
    assert fees.commission_amount == Decimal("1.52")
    assert fees.final_tasker_payout == Decimal("8.58")
    assert fees.total_amount_paid_by_customer == Decimal("10.61")


@pytest.mark.unit
@pytest.mark.parametrize("budget", [0, 0.01, 19.99, 333.33, 12345.67])
def test_compute_fees_parts_add_up(budget: float) -> None:
    """payout + commission == budget and total == budget + platform fee + flat fee."""
    fees = compute_fees(budget, FeePolicy.from_percentages(7.5, 12.5, 1.25))
    assert fees.budget == Decimal(str(budget)).quantize(Decimal("0.01"))
    assert fees.final_tasker_payout + fees.commission_amount == fees.budget
    assert fees.total_amount_paid_by_customer == fees.budget + fees.platform_fee + fees.trust_and_support_fee


@pytest.mark.unit
def test_zero_budget_still_charges_flat_fee() -> None:
    """The trust and support fee is charged even on a zero budget."""
    fees = compute_fees(0, DEFAULT_POLICY)
    assert fees.platform_fee == Decimal("0.00")
    assert fees.total_amount_paid_by_customer == Decimal("2.00")


@pytest.mark.unit
def test_policy_percentages_round_trip() -> None:
    """Percentages are exposed back as whole-percent floats."""
    policy = FeePolicy.from_percentages(7.5, 12, 1.5)
    assert policy.platform_fee_rate == Decimal("0.075")
    assert policy.platform_fee_percentage == 7.5
    assert policy.commission_percentage == 12.0


@pytest.mark.unit
@pytest.mark.parametrize(
    ("body", "field"),
    [
        ({"commission_percentage": 10, "trust_and_support_fee": 1}, "platform_fee_percentage"),
        ({"platform_fee_percentage": 100.5, "commission_percentage": 10, "trust_and_support_fee": 1}, "platform_fee_percentage"),
        ({"platform_fee_percentage": 5, "commission_percentage": -0.1, "trust_and_support_fee": 1}, "commission_percentage"),
        ({"platform_fee_percentage": 5, "commission_percentage": 10, "trust_and_support_fee": -1}, "trust_and_support_fee"),
        ({"platform_fee_percentage": False, "commission_percentage": 10, "trust_and_support_fee": 1}, "platform_fee_percentage"),
    ],
)
def test_validate_policy_update_rejects(body: dict[str, object], field: str) -> None:
    """Invalid fee bodies raise INVALID_FEE_POLICY naming the field."""
    with pytest.raises(ValidationError) as exc_info:
        validate_policy_update(body)
    assert exc_info.value.error == "INVALID_FEE_POLICY"
    assert exc_info.value.details["field"] == field


@pytest.mark.unit
def test_validate_policy_update_accepts_bounds() -> None:
    """0 and 100 percent are both allowed."""
    assert validate_policy_update(
        {"platform_fee_percentage": 0, "commission_percentage": 100, "trust_and_support_fee": 0}
    ) == (0.0, 100.0, 0.0)


@pytest.mark.unit
def test_service_uses_default_until_policy_stored(tmp_path) -> None:
    """current_policy() falls back to the default, then follows the latest stored record."""
    store = TaskStore(db_path=str(tmp_path / "fees.db"))
    service = FeePolicyService(store=store, default_policy=DEFAULT_POLICY)
    assert service.current_policy() == DEFAULT_POLICY
    assert service.get_policy()["is_default"] is True

    service.update_policy(
        ADMIN,
        {"platform_fee_percentage": 10, "commission_percentage": 20, "trust_and_support_fee": 3},
    )
    assert service.current_policy() == FeePolicy.from_percentages(10, 20, 3)
    assert len(service.policy_history(ADMIN)) == 1
    store.close()


@pytest.mark.unit
def test_service_update_requires_admin(tmp_path) -> None:
    """Non-admins cannot update or list fee policies."""
    store = TaskStore(db_path=str(tmp_path / "fees.db"))
    service = FeePolicyService(store=store, default_policy=DEFAULT_POLICY)
    with pytest.raises(ForbiddenError):
        service.update_policy(
            ALICE,
            {"platform_fee_percentage": 10, "commission_percentage": 20, "trust_and_support_fee": 3},
        )
    with pytest.raises(ForbiddenError):
        service.policy_history(ALICE)
    store.close()
