"""API routers."""

from task_market_service.routers import bids, fees, health, notifications, reviews, tasks

__all__ = ["bids", "fees", "health", "notifications", "reviews", "tasks"]
