"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_market_service.clients.category_client import CategoryClient
from task_market_service.clients.identity_client import IdentityClient
from task_market_service.clients.push_client import PushClient
from task_market_service.clients.realtime_client import RealtimeClient
from task_market_service.config import get_settings
from task_market_service.core.state import init_app_state
from task_market_service.logging import get_logger, setup_logging
from task_market_service.services.bid_ledger import BidLedger
from task_market_service.services.fee_policy import FeePolicy, FeePolicyService
from task_market_service.services.notification_store import NotificationStore
from task_market_service.services.notifier import Notifier
from task_market_service.services.review_aggregator import ReviewAggregator
from task_market_service.services.review_store import ReviewStore
from task_market_service.services.task_lifecycle import TaskLifecycle
from task_market_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db_path = settings.database.path

    # HTTP clients for collaborating services
    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_path=settings.identity.verify_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    category_client = CategoryClient(
        base_url=settings.categories.base_url,
        category_path=settings.categories.category_path,
        timeout_seconds=settings.categories.timeout_seconds,
    )
    state.category_client = category_client

    realtime_client = RealtimeClient(
        base_url=settings.realtime.base_url,
        deliver_path=settings.realtime.deliver_path,
        timeout_seconds=settings.realtime.timeout_seconds,
    )
    state.realtime_client = realtime_client

    push_client = PushClient(
        base_url=settings.push.base_url,
        send_path=settings.push.send_path,
        timeout_seconds=settings.push.timeout_seconds,
    )
    state.push_client = push_client

    # Stores share one SQLite file, each with its own connection
    task_store = TaskStore(db_path=db_path)
    review_store = ReviewStore(db_path=db_path)
    notification_store = NotificationStore(db_path=db_path)

    notifier = Notifier(
        store=notification_store,
        realtime_client=realtime_client,
        push_client=push_client,
        page_size=settings.listing.notification_page_size,
    )
    state.notifier = notifier

    fee_service = FeePolicyService(
        store=task_store,
        default_policy=FeePolicy.from_percentages(
            settings.fees.default_platform_fee_percentage,
            settings.fees.default_commission_percentage,
            settings.fees.default_trust_and_support_fee,
        ),
    )
    state.fee_service = fee_service

    bid_ledger = BidLedger(store=task_store, notifier=notifier)
    state.bid_ledger = bid_ledger

    task_lifecycle = TaskLifecycle(
        store=task_store,
        bid_ledger=bid_ledger,
        notifier=notifier,
        fee_service=fee_service,
        category_client=category_client,
        page_size=settings.listing.task_page_size,
    )
    state.task_lifecycle = task_lifecycle

    review_aggregator = ReviewAggregator(
        review_store=review_store,
        task_store=task_store,
        notifier=notifier,
    )
    state.review_aggregator = review_aggregator

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "identity_base_url": settings.identity.base_url,
            "categories_base_url": settings.categories.base_url,
            "realtime_base_url": settings.realtime.base_url,
            "push_base_url": settings.push.base_url,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    # Let in-flight notification deliveries finish before closing their clients
    await notifier.drain()

    task_lifecycle.close()
    review_aggregator.close()
    notification_store.close()

    await identity_client.close()
    await category_client.close()
    await realtime_client.close()
    await push_client.close()
