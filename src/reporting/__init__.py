"""
Reporting Module
================

Subscriber notification fan-out and email delivery.
"""

from .email_service import EmailDeliveryProvider, is_valid_email
from .notification_service import NotificationFanout, FanoutResult

__all__ = [
    'EmailDeliveryProvider',
    'is_valid_email',
    'NotificationFanout',
    'FanoutResult',
]
