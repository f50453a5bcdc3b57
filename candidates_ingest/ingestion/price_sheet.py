"""
Process-lifetime token price sheet.

Loaded once per engine process and never persisted. Prices are copied onto
fungible metadata that already exists at load time and onto metadata created
afterwards; an entry created before a price appears is not revisited until
the next process loads the sheet again.
"""
from typing import Optional

import structlog

from candidates_ingest.clients import PriceSheetClient
from candidates_ingest.models import FtMetadata

logger = structlog.get_logger()


class PriceSheet:
    def __init__(self):
        self.prices: dict[str, float] = {}
        self.loaded = False

    def get(self, contract_id: str) -> Optional[float]:
        return self.prices.get(contract_id)

    async def ensure_loaded(
        self,
        client: PriceSheetClient,
        ft_metas: dict[str, FtMetadata],
    ) -> bool:
        """
        Fetch the sheet if this process has not done so yet.

        Errors propagate: a cycle does not run without prices.
        Returns True when a fetch happened.
        """
        if self.loaded:
            return False

        prices = await client.fetch_prices()
        attached = 0
        for contract_id, price in prices.items():
            self.prices[contract_id] = price
            meta = ft_metas.get(contract_id)
            if meta is not None:
                meta.price = price
                attached += 1
        self.loaded = True

        logger.info("Loaded price sheet", prices=len(self.prices), attached=attached)
        return True
