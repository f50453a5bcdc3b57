"""
Per-candidate enrichment.

Enrichment is an ordered list of steps. Each step makes its upstream call(s)
and writes its fields onto the candidate as soon as they return, so when a
later step fails the fields written by earlier steps are kept and persisted.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from candidates_ingest.clients import SourceClients
from candidates_ingest.config import Settings
from candidates_ingest.errors import EnrichmentError
from candidates_ingest.ingestion.price_sheet import PriceSheet
from candidates_ingest.ingestion.reference_cache import ReferenceCaches
from candidates_ingest.models import Candidate, FungibleHolding, NonFungibleHolding

logger = structlog.get_logger()


@dataclass
class EnrichmentContext:
    """What a step needs besides the candidate itself."""
    clients: SourceClients
    caches: ReferenceCaches
    prices: PriceSheet
    settings: Settings


EnrichmentStep = Callable[[EnrichmentContext, Candidate], Awaitable[None]]


# =============================================================================
# STEPS
# =============================================================================

async def enrich_voters(ctx: EnrichmentContext, candidate: Candidate) -> None:
    candidate.voters = await ctx.clients.pikespeak.fetch_voters(candidate.nominee)


async def enrich_account(ctx: EnrichmentContext, candidate: Candidate) -> None:
    account = await ctx.clients.nearblocks.fetch_account(candidate.nominee)
    candidate.amount = account.amount
    candidate.created = account.created.block_timestamp


async def enrich_nfts(ctx: EnrichmentContext, candidate: Candidate) -> None:
    nft_counts = await ctx.clients.pagoda.fetch_nft_counts(candidate.nominee)
    ctx.caches.upsert_nfts(nft_counts)
    candidate.nfts = [
        NonFungibleHolding(contract_id=nft.contract_account_id, quantity=nft.nft_count)
        for nft in nft_counts
    ]


async def enrich_tx_count(ctx: EnrichmentContext, candidate: Candidate) -> None:
    candidate.tx_count = await ctx.clients.pikespeak.fetch_tx_count(candidate.nominee)


async def enrich_fts(ctx: EnrichmentContext, candidate: Candidate) -> None:
    native = ctx.settings.native_token_contract
    balances = [
        row for row in await ctx.clients.pikespeak.fetch_balances(candidate.nominee)
        if row.contract != native
    ]
    await ctx.caches.ensure_ft_metadata(
        (row.contract for row in balances),
        ctx.clients.near_rpc,
        ctx.prices,
    )
    candidate.fts = [
        FungibleHolding(contract_id=row.contract, amount=row.amount)
        for row in balances
    ]


async def enrich_eth_addresses(ctx: EnrichmentContext, candidate: Candidate) -> None:
    candidate.eth_addresses = await ctx.clients.pikespeak.fetch_eth_addresses(candidate.nominee)


# Order matters: it decides which fields survive a mid-sequence failure.
ENRICHMENT_STEPS: list[tuple[str, EnrichmentStep]] = [
    ("voters", enrich_voters),
    ("account", enrich_account),
    ("nfts", enrich_nfts),
    ("tx_count", enrich_tx_count),
    ("fts", enrich_fts),
    ("eth_addresses", enrich_eth_addresses),
]


async def enrich_candidate(ctx: EnrichmentContext, candidate: Candidate) -> None:
    """Run every step in order; the first failure stops the sequence."""
    logger.info("Fetching information about candidate", candidate=candidate.nominee)

    for name, step in ENRICHMENT_STEPS:
        try:
            await step(ctx, candidate)
        except Exception as e:
            raise EnrichmentError(
                f"Step {name!r} failed for {candidate.nominee}: {e}",
                candidate=candidate.nominee,
                step=name,
            ) from e
