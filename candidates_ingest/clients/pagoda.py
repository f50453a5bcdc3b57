"""
Pagoda Enhanced API client (NFT holdings with inline contract metadata).
"""
from candidates_ingest.clients.base import BaseAPIClient
from candidates_ingest.models import NftCount, NftCountsResponse


class PagodaClient(BaseAPIClient):
    """Client for the Pagoda Enhanced API; needs its own API key."""

    SOURCE = "pagoda"

    def __init__(self, api_key: str = "", **kwargs):
        self.api_key = api_key
        super().__init__(**kwargs)

    def _get_default_base_url(self) -> str:
        return self._settings.pagoda_api_base_url

    def _get_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    async def fetch_nft_counts(self, account_id: str) -> list[NftCount]:
        response: NftCountsResponse = await self.get(
            f"/eapi/v1/accounts/{account_id}/NFT", NftCountsResponse
        )
        return response.nft_counts
