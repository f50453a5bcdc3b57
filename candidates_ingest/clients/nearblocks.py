"""
NearBlocks API client (account balance and creation time).
"""
from candidates_ingest.clients.base import BaseAPIClient
from candidates_ingest.errors import UpstreamError
from candidates_ingest.models import AccountResponse, AccountRow


class NearBlocksClient(BaseAPIClient):
    """Client for the public NearBlocks v1 API. No credentials required."""

    SOURCE = "nearblocks"

    def _get_default_base_url(self) -> str:
        return self._settings.nearblocks_api_base_url

    def _get_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def fetch_account(self, account_id: str) -> AccountRow:
        path = f"/v1/account/{account_id}"
        response: AccountResponse = await self.get(path, AccountResponse)
        if not response.account:
            raise UpstreamError(f"No account record for {account_id}", url=path)
        return response.account[0]
