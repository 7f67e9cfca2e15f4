"""HTTP clients for collaborating services."""

from task_market_service.clients.category_client import CategoryClient
from task_market_service.clients.identity_client import IdentityClient
from task_market_service.clients.push_client import PushClient
from task_market_service.clients.realtime_client import RealtimeClient

__all__ = ["CategoryClient", "IdentityClient", "PushClient", "RealtimeClient"]
