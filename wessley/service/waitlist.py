from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from wessley.logging import get_logger
from wessley.service.errors import ServerError, ServiceUnavailableError

logger = get_logger(__name__)

BEEHIIV_API_URL = "https://api.beehiiv.com/v2"
BEEHIIV_TIMEOUT = 10.0


class WaitlistService:
    """Newsletter signups through the Beehiiv subscriptions API."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        publication_id: Optional[str],
        base_url: str = BEEHIIV_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.publication_id = publication_id
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.publication_id)

    async def subscribe(self, email: str) -> Dict[str, Any]:
        if not self.is_configured:
            logger.error("waitlist_not_configured")
            raise ServiceUnavailableError("Service unavailable")

        url = f"{self.base_url}/publications/{self.publication_id}/subscriptions"
        payload = {
            "email": email,
            "reactivate_existing": False,
            "send_welcome_email": True,
            "utm_source": "waitlist",
            "utm_medium": "website",
            "referring_site": "wessley.ai",
        }
        try:
            async with httpx.AsyncClient(
                timeout=BEEHIIV_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.error("waitlist_request_failed", error_type=type(exc).__name__)
            raise ServerError("Failed to subscribe") from exc

        if not response.is_success:
            logger.error(
                "waitlist_subscribe_rejected",
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise ServerError("Failed to subscribe")

        logger.info("waitlist_subscribed", email=email)
        return response.json()
