"""
NEAR JSON-RPC client.
Used for `ft_metadata` view calls on fungible token contracts.
"""
import json
from typing import Optional

import structlog

from candidates_ingest.clients.base import BaseAPIClient
from candidates_ingest.errors import UpstreamError
from candidates_ingest.models import FtMetadata, RpcFtMetadata, RpcResponse

logger = structlog.get_logger()


class NearRpcClient(BaseAPIClient):
    """Client for a public NEAR RPC node."""

    SOURCE = "near_rpc"

    def _get_default_base_url(self) -> str:
        return self._settings.near_rpc_url

    def _get_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def fetch_ft_metadata(self, contract_id: str) -> Optional[FtMetadata]:
        """
        Best-effort `ft_metadata` lookup.

        Returns None instead of raising when the call fails, the node reports
        an error, or the contract returns something that is not NEP-148
        metadata. The call still counts against the cycle budget.
        """
        body = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": "query",
            "params": {
                "request_type": "call_function",
                "finality": "final",
                "account_id": contract_id,
                "method_name": "ft_metadata",
                "args_base64": "",
            },
        }
        try:
            response: RpcResponse = await self.post("/", RpcResponse, json_body=body)
        except UpstreamError as e:
            logger.debug("ft_metadata call failed", contract_id=contract_id, error=str(e))
            return None

        if response.result is None:
            logger.debug("ft_metadata returned no result", contract_id=contract_id)
            return None

        try:
            raw = json.loads(bytes(response.result.result).decode("utf-8"))
            meta = RpcFtMetadata.model_validate(raw)
        except ValueError as e:
            logger.debug("ft_metadata payload unreadable", contract_id=contract_id, error=str(e))
            return None

        return FtMetadata(
            contract_id=contract_id,
            name=meta.name,
            symbol=meta.symbol,
            decimals=meta.decimals,
        )
