"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .redis_client import get_redis, close_redis, RedisClient
from .http_gateway import HttpPaymentGateway
from .webhook_notifier import WebhookNotifier

__all__ = ['get_redis', 'close_redis', 'RedisClient', 'HttpPaymentGateway', 'WebhookNotifier']
