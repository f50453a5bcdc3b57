"""
Pydantic models for candidate data.
Provides type-safe schemas for stored entities and for every upstream payload.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EngineState(str, Enum):
    """Lifecycle of the engine's candidate store."""
    UNINITIALIZED = "uninitialized"  # nothing persisted yet
    SEEDING = "seeding"              # discovery in progress, store not committed
    READY = "ready"                  # fully keyed store loaded


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseEntity(BaseModel):
    """Base model for stored entities. Serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# CANDIDATE MODELS
# =============================================================================

class FungibleHolding(BaseEntity):
    """A fungible token position: raw amount in the token's smallest unit."""
    contract_id: str
    amount: str


class NonFungibleHolding(BaseEntity):
    """Number of NFTs held on a single contract."""
    contract_id: str
    quantity: int


class Candidate(BaseEntity):
    """
    A nominee and everything gathered about it.

    Only `nominee`, `house` and `timestamp` exist after seeding; every other
    field is filled in by enrichment and stays None until its step succeeds.
    """
    nominee: str
    house: Optional[str] = None
    timestamp: Optional[str] = None

    voters: Optional[list[str]] = None
    amount: Optional[str] = None
    created: Optional[int] = None
    tx_count: Optional[int] = None
    fts: Optional[list[FungibleHolding]] = None
    nfts: Optional[list[NonFungibleHolding]] = None
    eth_addresses: Optional[list[str]] = None


# =============================================================================
# REFERENCE METADATA MODELS
# =============================================================================

class FtMetadata(BaseEntity):
    """Fungible token metadata, created once per contract."""
    contract_id: str
    name: str
    symbol: str
    decimals: int
    price: Optional[float] = None


class NftMetadata(BaseEntity):
    """NFT contract metadata, refreshed on every sighting."""
    contract_id: str
    name: str
    symbol: str


# =============================================================================
# TRIGGER MODELS
# =============================================================================

class Credentials(BaseModel):
    """API keys forwarded by the trigger to the upstreams that need them."""
    pikespeak_api_key: str = ""
    pagoda_api_key: str = ""

    @classmethod
    def from_settings(cls, settings) -> "Credentials":
        return cls(
            pikespeak_api_key=settings.pikespeak_api_key,
            pagoda_api_key=settings.pagoda_api_key,
        )


# =============================================================================
# UPSTREAM RESPONSE SCHEMAS
# =============================================================================

class SeedRow(BaseModel):
    """Row of the Pikespeak nominations listing."""
    nominee: str
    house: str
    timestamp: str


class VoteRow(BaseModel):
    voter: str


class AccountCreated(BaseModel):
    block_timestamp: int


class AccountRow(BaseModel):
    amount: str
    created: AccountCreated


class AccountResponse(BaseModel):
    """NearBlocks account lookup."""
    account: list[AccountRow]


class NftContractMetadata(BaseModel):
    name: str
    symbol: str


class NftCount(BaseModel):
    contract_account_id: str
    nft_count: int
    contract_metadata: NftContractMetadata


class NftCountsResponse(BaseModel):
    """Pagoda Enhanced API NFT counts per contract."""
    nft_counts: list[NftCount]


class BalanceRow(BaseModel):
    """Pikespeak balance entry; the native currency shows up as contract "Near"."""
    contract: str
    amount: str
    symbol: str
    icon: Optional[str] = None


class PriceEntry(BaseModel):
    """Prices are published as decimal strings; each one is parsed on its own."""
    price: str


class RpcFtMetadata(BaseModel):
    """NEP-148 `ft_metadata` view result."""
    name: str
    symbol: str
    decimals: int


class RpcCallResult(BaseModel):
    result: list[int] = Field(default_factory=list)


class RpcResponse(BaseModel):
    """JSON-RPC envelope; `result` is absent when the call errored."""
    result: Optional[RpcCallResult] = None
