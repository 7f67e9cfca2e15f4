"""Service layer components."""

from task_market_service.services.bid_ledger import BidLedger
from task_market_service.services.fee_policy import FeePolicy, FeePolicyService
from task_market_service.services.notifier import Notifier
from task_market_service.services.review_aggregator import ReviewAggregator
from task_market_service.services.task_lifecycle import TaskLifecycle

__all__ = [
    "BidLedger",
    "FeePolicy",
    "FeePolicyService",
    "Notifier",
    "ReviewAggregator",
    "TaskLifecycle",
]
