"""
Client package initialization.
Exports all API clients and the per-cycle client bundle.
"""
from typing import Any, Optional

import httpx

from candidates_ingest.clients.base import BaseAPIClient, CallBudget
from candidates_ingest.clients.near_rpc import NearRpcClient
from candidates_ingest.clients.nearblocks import NearBlocksClient
from candidates_ingest.clients.pagoda import PagodaClient
from candidates_ingest.clients.pikespeak import PikespeakClient
from candidates_ingest.clients.price_sheet import PriceSheetClient
from candidates_ingest.config import Settings
from candidates_ingest.models import Credentials

__all__ = [
    "BaseAPIClient",
    "CallBudget",
    "NearBlocksClient",
    "NearRpcClient",
    "PagodaClient",
    "PikespeakClient",
    "PriceSheetClient",
    "SourceClients",
]


class SourceClients:
    """
    Every upstream client needed by one cycle, sharing a single CallBudget.

    Built per invocation because the trigger supplies the credentials.
    Use as an async context manager to open and close all connections.
    """

    def __init__(
        self,
        credentials: Credentials,
        budget: CallBudget,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        shared: dict[str, Any] = {"budget": budget, "settings": settings, "transport": transport}
        self.budget = budget
        self.pikespeak = PikespeakClient(api_key=credentials.pikespeak_api_key, **shared)
        self.nearblocks = NearBlocksClient(**shared)
        self.pagoda = PagodaClient(api_key=credentials.pagoda_api_key, **shared)
        self.near_rpc = NearRpcClient(**shared)
        self.price_sheet = PriceSheetClient(**shared)

    @property
    def all(self) -> list[BaseAPIClient]:
        return [self.pikespeak, self.nearblocks, self.pagoda, self.near_rpc, self.price_sheet]

    async def __aenter__(self) -> "SourceClients":
        for client in self.all:
            await client.connect()
        return self

    async def __aexit__(self, *args) -> None:
        for client in self.all:
            await client.close()

    def get_metrics(self) -> list[dict[str, Any]]:
        return [client.get_metrics() for client in self.all]
