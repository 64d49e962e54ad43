"""Thin Postmark client for transactional email delivery.

Uses Postmark's REST API directly via httpx — no SDK needed.
Delivery failures are raised as `DeliveryFailure` so the notification queue
can schedule a retry; the caller decides what a failure means.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from app.config import settings
from app.services.fulfillment.exceptions import DeliveryFailure

logger = logging.getLogger(__name__)

POSTMARK_API_URL = "https://api.postmarkapp.com/email"
POSTMARK_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class PostmarkService:
    """Send transactional emails via Postmark's REST API."""

    _shared_client: httpx.AsyncClient | None = None

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(settings.provider_timeout_seconds, connect=5.0)

    @asynccontextmanager
    async def batch(self) -> AsyncIterator["PostmarkService"]:
        """Context manager that holds an HTTP client open for multiple sends.

        Usage::

            async with postmark_service.batch() as pm:
                await pm.send(to="a@b.com", ...)
                await pm.send(to="c@d.com", ...)
        """
        async with httpx.AsyncClient(timeout=self._timeout()) as client:
            self._shared_client = client
            try:
                yield self
            finally:
                self._shared_client = None

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        tag: str | None = None,
    ) -> str:
        """
        Send a single transactional email and return Postmark's MessageID.

        Raises DeliveryFailure when Postmark is not configured, rejects the
        message, or cannot be reached. When called inside a `batch()` context,
        reuses the shared HTTP client.
        """
        if not settings.postmark_enabled:
            logger.warning("[postmark] Skipped (POSTMARK_API_KEY not configured)")
            raise DeliveryFailure("Postmark is not configured")

        payload = {
            "From": settings.postmark_from_email,
            "To": to,
            "Subject": subject,
            "HtmlBody": html_body,
            "TextBody": text_body,
            "MessageStream": "outbound",
        }
        if tag:
            payload["Tag"] = tag

        headers = {
            **POSTMARK_HEADERS,
            "X-Postmark-Server-Token": settings.postmark_api_key,
        }

        try:
            client = self._shared_client
            if client:
                response = await client.post(
                    POSTMARK_API_URL, json=payload, headers=headers,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout()) as client:
                    response = await client.post(
                        POSTMARK_API_URL, json=payload, headers=headers,
                    )
            response.raise_for_status()
            message_id = str(response.json().get("MessageID", ""))
            logger.info(f"[postmark] Sent to {to}: {subject} ({message_id})")
            return message_id

        except httpx.HTTPStatusError as e:
            logger.error(
                f"[postmark] HTTP {e.response.status_code} sending to {to}: {e.response.text}"
            )
            raise DeliveryFailure(
                f"Postmark returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"[postmark] Request failed sending to {to}: {e}")
            raise DeliveryFailure(f"Postmark request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise DeliveryFailure("Postmark returned an unreadable response") from e


postmark_service = PostmarkService()
