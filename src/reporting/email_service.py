"""
Email Service
=============

Sends new-video notification emails through the Resend Emails API.
"""

import asyncio
import html
import re
from typing import Optional

import resend

from src.utils.config import get_credential
from src.utils.error_codes import DeliveryFailure
from src.utils.logger import setup_worker_logger

logger = setup_worker_logger('email_service')

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def is_valid_email(address: Optional[str]) -> bool:
    return bool(address) and EMAIL_PATTERN.match(address) is not None


def get_resend_api_key() -> str:
    """Get the Resend API key from the environment."""
    api_key = get_credential('RESEND_API_KEY')
    if not api_key:
        raise ValueError("RESEND_API_KEY environment variable is required")
    return api_key


def render_notification_email(item_title: str, item_id: int, channel_title: str,
                              thumbnail_url: Optional[str], site_url: str = '') -> str:
    link = f"{site_url.rstrip('/')}/video/{item_id}"
    thumbnail = (
        f'<a href="{html.escape(link)}"><img src="{html.escape(thumbnail_url)}" '
        f'alt="" width="480" style="border-radius:8px"></a>'
        if thumbnail_url else ''
    )
    return f"""<div style="font-family:Arial,sans-serif;max-width:520px">
  <p><strong>{html.escape(channel_title or '')}</strong> ha publicado un nuevo video:</p>
  <h2 style="font-size:18px">{html.escape(item_title or '')}</h2>
  {thumbnail}
  <p><a href="{html.escape(link)}">Ver el video</a></p>
</div>"""


class EmailDeliveryProvider:
    """
    Delivery provider for subscriber notifications.

    send_notification_email returns True when the message was accepted, False
    for addresses that fail validation, and raises DeliveryFailure when Resend
    rejects the message or does not answer within timeout seconds.
    """

    def __init__(self, from_email: str = "Fanhub <notificaciones@fanhub.example>", site_url: str = '',
                 dry_run: bool = False, api_key: Optional[str] = None, timeout: float = 15):
        self.from_email = from_email
        self.timeout = timeout
        self.site_url = site_url
        self.dry_run = dry_run
        self._api_key = api_key

    @classmethod
    def from_config(cls, notifications_config: dict) -> 'EmailDeliveryProvider':
        return cls(
            from_email=notifications_config.get('from_email', "Fanhub <notificaciones@fanhub.example>"),
            site_url=notifications_config.get('site_url', ''),
            dry_run=bool(notifications_config.get('dry_run', False)),
            timeout=float(notifications_config.get('timeout', 15)),
        )

    def _send(self, payload: dict) -> dict:
        resend.api_key = self._api_key or get_resend_api_key()
        return resend.Emails.send(payload)

    async def send_notification_email(self, address: str, item_title: str, item_id: int,
                                      channel_title: str, thumbnail_url: Optional[str] = None) -> bool:
        if not is_valid_email(address):
            logger.warning(f"Skipping invalid email address: {address!r}")
            return False

        subject = f"Nuevo video de {channel_title}: {item_title}"
        payload = {
            "from": self.from_email,
            "to": [address],
            "subject": subject[:200],
            "html": render_notification_email(item_title, item_id, channel_title, thumbnail_url, self.site_url),
        }

        if self.dry_run:
            logger.info(f"[DRY RUN] Would email {address}: {subject}")
            return True

        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(loop.run_in_executor(None, self._send, payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Notification email to {address} timed out after {self.timeout}s")
            raise DeliveryFailure(f"Email to {address} timed out", {'address': address}) from e
        except Exception as e:
            logger.error(f"Failed to send notification email to {address}: {e}")
            raise DeliveryFailure(f"Email to {address} failed: {e}", {'address': address}) from e

        logger.debug(f"Notification email sent to {address}: {result.get('id') if isinstance(result, dict) else result}")
        return True
