"""
Shared fixtures: settings without retry delays, an in-memory state store and
a fake of every upstream served through httpx.MockTransport.
"""
import json
from typing import Optional

import httpx
import pytest

from candidates_ingest.codec import encode_candidates
from candidates_ingest.config import Settings
from candidates_ingest.database import CANDIDATES_KEY, INDEX_KEY, MemoryStateStore
from candidates_ingest.errors import PersistenceError
from candidates_ingest.ingestion import CandidateEngine
from candidates_ingest.models import Candidate, Credentials

NATIVE_BALANCE = {"contract": "Near", "amount": "5000", "symbol": "NEAR"}
WRAP_BALANCE = {"contract": "wrap.near", "amount": "100", "symbol": "wNEAR"}


class FakeUpstream:
    """Answers every upstream the engine talks to, with failure injection."""

    def __init__(self, universe: list[str]):
        self.universe = list(universe)
        self.requests: list[httpx.Request] = []
        self.prices: dict[str, dict] = {"wrap.near": {"price": "1.23"}}
        self.ft_metadata: dict[str, dict] = {
            "wrap.near": {"name": "Wrapped NEAR", "symbol": "wNEAR", "decimals": 24},
        }
        self.balances: dict[str, list[dict]] = {}
        self.failures: list[tuple[str, int]] = []
        self.rate_limited: dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Controls
    # -------------------------------------------------------------------------

    def fail(self, fragment: str, status: int = 500) -> None:
        """Answer `status` to every request whose URL contains `fragment`."""
        self.failures.append((fragment, status))

    def rate_limit(self, fragment: str, times: int) -> None:
        """Answer 429 to the next `times` requests whose URL contains `fragment`."""
        self.rate_limited[fragment] = times

    def clear_failures(self) -> None:
        self.failures.clear()
        self.rate_limited.clear()

    def calls_to(self, fragment: str) -> int:
        return sum(1 for request in self.requests if fragment in str(request.url))

    def rpc_calls_for(self, contract_id: str) -> int:
        return sum(
            1 for request in self.requests
            if request.url.host == "rpc.mainnet.near.org"
            and json.loads(request.content)["params"]["account_id"] == contract_id
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        for fragment, remaining in self.rate_limited.items():
            if fragment in url and remaining > 0:
                self.rate_limited[fragment] = remaining - 1
                return httpx.Response(429, text="slow down")

        for fragment, status in self.failures:
            if fragment in url:
                return httpx.Response(status, text="boom")

        host = request.url.host
        path = request.url.path
        if host == "raw.githubusercontent.com":
            return httpx.Response(200, json=self.prices)
        if host == "rpc.mainnet.near.org":
            return self._rpc(request)
        if host == "api.nearblocks.io":
            return httpx.Response(200, json={
                "account": [{"amount": "1000", "created": {"block_timestamp": 1690000000}}],
            })
        if host == "near-mainnet.api.pagoda.co":
            return httpx.Response(200, json={"nft_counts": [{
                "contract_account_id": "nft.example.near",
                "nft_count": 2,
                "contract_metadata": {"name": "Example", "symbol": "EX"},
            }]})
        if host == "api.pikespeak.ai":
            return self._pikespeak(request, path)
        return httpx.Response(404)

    def _pikespeak(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/nominations/candidates":
            offset = int(request.url.params["offset"])
            rows = [
                {"nominee": nominee, "house": "HouseOfMerit", "timestamp": "2023-08-01T00:00:00Z"}
                for nominee in self.universe[offset:offset + 50]
            ]
            return httpx.Response(200, json=rows)
        if path == "/election/votes-by-candidate":
            candidate = request.url.params["candidate"]
            return httpx.Response(200, json=[{"voter": f"fan-of-{candidate}"}])

        account = path.rsplit("/", 1)[-1]
        if path.startswith("/account/tx-count/"):
            return httpx.Response(200, json=42)
        if path.startswith("/account/balance/"):
            return httpx.Response(200, json=self.balances.get(account, [NATIVE_BALANCE, WRAP_BALANCE]))
        if path.startswith("/bridge/probable-eth-addresses/"):
            return httpx.Response(200, json=["0x00000000000000000000000000000000000000aa"])
        return httpx.Response(404)

    def _rpc(self, request: httpx.Request) -> httpx.Response:
        contract_id = json.loads(request.content)["params"]["account_id"]
        meta = self.ft_metadata.get(contract_id)
        if meta is None:
            return httpx.Response(200, json={
                "jsonrpc": "2.0",
                "id": "dontcare",
                "error": {"name": "HANDLER_ERROR", "cause": {"name": "UNKNOWN_ACCOUNT"}},
            })
        return httpx.Response(200, json={
            "jsonrpc": "2.0",
            "id": "dontcare",
            "result": {"result": list(json.dumps(meta).encode("utf-8")), "logs": []},
        })


class FailingStore(MemoryStateStore):
    """Memory store whose writes to selected keys raise PersistenceError."""

    def __init__(self, failing_keys: set[str], initial: Optional[dict[str, bytes]] = None):
        super().__init__(initial)
        self.failing_keys = failing_keys

    async def put(self, key: str, value: bytes) -> None:
        if key in self.failing_keys:
            raise PersistenceError(f"disk full while writing {key}")
        await super().put(key, value)


def seeded_state(nominees: list[str], index: int = 0) -> dict[str, bytes]:
    """Raw store contents for an already seeded universe."""
    stubs = {
        nominee: Candidate(nominee=nominee, house="HouseOfMerit", timestamp="2023-08-01T00:00:00Z")
        for nominee in nominees
    }
    return {
        CANDIDATES_KEY: encode_candidates(stubs),
        INDEX_KEY: str(index).encode(),
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, retry_base_delay_seconds=0.0, database_url="sqlite://")


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(pikespeak_api_key="pk-test", pagoda_api_key="pg-test")


@pytest.fixture
def make_engine(settings):
    def _make(store: MemoryStateStore, upstream: FakeUpstream) -> CandidateEngine:
        return CandidateEngine(store, settings, transport=upstream.transport)

    return _make
