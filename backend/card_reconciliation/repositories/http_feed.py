"""
HTTP Card Feed Source

Fetches raw transaction records from the card provider's REST feed.

GET {base_url}/cards/{card_id}/transactions?from=YYYY-MM-DD&to=YYYY-MM-DD

The response is either a JSON list of records or an object with a
`transactions` list and an optional `next_cursor` for the following page.
Timeouts, transport errors and non-200 responses are raised as
DownstreamUnavailableError; this client does not retry.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from card_reconciliation.errors import DownstreamUnavailableError
from card_reconciliation.models import CorporateCard
from card_reconciliation.repositories.base import FeedSource

logger = logging.getLogger(__name__)

MAX_PAGES = 100


class HttpCardFeedSource(FeedSource):

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def fetch_transactions(
        self,
        card: CorporateCard,
        from_date: date,
        to_date: date
    ) -> List[Dict[str, Any]]:
        if not self.base_url:
            raise DownstreamUnavailableError("card feed", "FEED_BASE_URL is not configured")

        url = f"{self.base_url}/cards/{card.id}/transactions"
        params: Dict[str, Any] = {"from": from_date.isoformat(), "to": to_date.isoformat()}
        records: List[Dict[str, Any]] = []

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                for _ in range(MAX_PAGES):
                    response = await client.get(url, params=params, headers=self._headers())

                    if response.status_code != 200:
                        logger.error(f"Card feed returned {response.status_code} for card {card.id}")
                        raise DownstreamUnavailableError(
                            "card feed", f"HTTP {response.status_code}"
                        )

                    payload = response.json()
                    if isinstance(payload, list):
                        records.extend(payload)
                        break

                    records.extend(payload.get("transactions") or [])
                    next_cursor = payload.get("next_cursor")
                    if not next_cursor:
                        break
                    params = {**params, "cursor": next_cursor}
                else:
                    logger.warning(f"Card feed for card {card.id} stopped after {MAX_PAGES} pages")

        except httpx.TimeoutException as e:
            logger.error(f"Card feed request timed out for card {card.id}")
            raise DownstreamUnavailableError("card feed", "request timed out") from e
        except httpx.RequestError as e:
            logger.error(f"Card feed request error: {e}")
            raise DownstreamUnavailableError("card feed", str(e)) from e
        except ValueError as e:
            raise DownstreamUnavailableError("card feed", f"invalid JSON: {e}") from e

        logger.info(f"Fetched {len(records)} feed records for card {card.id}")
        return records
