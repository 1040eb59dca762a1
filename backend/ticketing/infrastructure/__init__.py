"""
Outbound integrations: the M-Pesa Daraja API and the Redis event channel.
"""

from .redis_client import get_redis, close_redis
from .mpesa_client import MpesaClient, get_mpesa_client

__all__ = ['get_redis', 'close_redis', 'MpesaClient', 'get_mpesa_client']
