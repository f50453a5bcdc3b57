"""
Pikespeak API client.
Serves the nominations listing plus voter, tx-count, balance and bridge lookups.
"""
from candidates_ingest.clients.base import BaseAPIClient
from candidates_ingest.models import BalanceRow, SeedRow, VoteRow


class PikespeakClient(BaseAPIClient):
    """
    Client for the Pikespeak API.

    Requests must carry the API key and a near.social Origin header.
    """

    SOURCE = "pikespeak"

    def __init__(self, api_key: str = "", **kwargs):
        self.api_key = api_key
        super().__init__(**kwargs)

    def _get_default_base_url(self) -> str:
        return self._settings.pikespeak_api_base_url

    def _get_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Origin": self._settings.pikespeak_origin,
        }

    async def fetch_candidates_page(self, offset: int) -> list[SeedRow]:
        """Fetch one page of nominees; an empty list marks the end."""
        return await self.get(
            "/nominations/candidates",
            list[SeedRow],
            params={"contract": self._settings.nominations_contract, "offset": offset},
        )

    async def fetch_voters(self, candidate: str) -> list[str]:
        rows = await self.get(
            "/election/votes-by-candidate",
            list[VoteRow],
            params={"contract": self._settings.elections_contract, "candidate": candidate},
        )
        return [row.voter for row in rows]

    async def fetch_tx_count(self, candidate: str) -> int:
        return await self.get(f"/account/tx-count/{candidate}", int)

    async def fetch_balances(self, candidate: str) -> list[BalanceRow]:
        return await self.get(f"/account/balance/{candidate}", list[BalanceRow])

    async def fetch_eth_addresses(self, candidate: str) -> list[str]:
        return await self.get(f"/bridge/probable-eth-addresses/{candidate}", list[str])
