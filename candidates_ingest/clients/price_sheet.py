"""
Client for the public token price sheet (Ref Finance prices mirrored on GitHub).
"""
import math

import structlog

from candidates_ingest.clients.base import BaseAPIClient
from candidates_ingest.models import PriceEntry

logger = structlog.get_logger()


class PriceSheetClient(BaseAPIClient):
    """Fetches `{contract: {"price": "<decimal>"}}` from a static JSON file."""

    SOURCE = "price_sheet"

    def _get_default_base_url(self) -> str:
        return self._settings.price_sheet_url

    def _get_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def fetch_prices(self) -> dict[str, float]:
        """
        Fetch the sheet and parse every price.

        An entry whose price is not a finite number is skipped, so one bad
        row never costs the rest of the sheet.
        """
        # base_url is the file itself; an absolute URL bypasses httpx path joining
        sheet: dict[str, PriceEntry] = await self.get(self.base_url, dict[str, PriceEntry])

        prices: dict[str, float] = {}
        for contract, entry in sheet.items():
            try:
                price = float(entry.price)
            except ValueError:
                price = math.nan
            if not math.isfinite(price):
                logger.warning("Skipping unparseable price", contract_id=contract, price=entry.price)
                continue
            prices[contract] = price
        return prices
