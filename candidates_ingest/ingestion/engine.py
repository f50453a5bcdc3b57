"""
Candidate engine: owns the candidate store and drives enrichment cycles.

Cycle Strategy:
===============
1. Load the price sheet (once per process). Failure aborts the cycle.
2. First run only: seed the full candidate universe and commit it in one
   write. Failure leaves storage untouched and raises SeedingError.
3. Round-robin: starting at the persisted cursor, enrich up to
   `max_candidates_per_cycle` candidates, starting a new one only while
   fewer than `call_budget` calls were made this cycle. The cursor moves
   past a candidate only when all of its steps succeeded.
4. Commit cursor, candidates and metadata caches whatever happened in 3.

A single asyncio.Lock serializes cycles, and every operation waits for the
initial load from storage before touching state.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
import structlog

from candidates_ingest.clients import CallBudget, PikespeakClient, SourceClients
from candidates_ingest.codec import (
    decode_candidates,
    decode_metadata,
    encode_candidates,
    encode_metadata,
)
from candidates_ingest.config import Settings, get_settings
from candidates_ingest.database import (
    CANDIDATES_KEY,
    FT_METAS_KEY,
    INDEX_KEY,
    NFT_METAS_KEY,
    StateStore,
)
from candidates_ingest.errors import (
    CodecError,
    IngestError,
    NotSeededError,
    PersistenceError,
    SeedingError,
)
from candidates_ingest.ingestion.enrichment import EnrichmentContext, enrich_candidate
from candidates_ingest.ingestion.price_sheet import PriceSheet
from candidates_ingest.ingestion.reference_cache import ReferenceCaches
from candidates_ingest.ingestion.seeder import seed_candidates
from candidates_ingest.models import Candidate, Credentials, EngineState, FtMetadata, NftMetadata
from candidates_ingest.utils import LogContext

logger = structlog.get_logger()


@dataclass
class CycleReport:
    """Result of one enrichment cycle."""
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    seeded: bool = False
    index_before: int = 0
    index_after: int = 0
    enriched: list[str] = field(default_factory=list)
    calls_made: int = 0
    enrichment_error: Optional[str] = None
    client_metrics: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.finished_at is not None and self.enrichment_error is None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "seeded": self.seeded,
            "index_before": self.index_before,
            "index_after": self.index_after,
            "enriched": self.enriched,
            "calls_made": self.calls_made,
            "enrichment_error": self.enrichment_error,
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 3),
            "client_metrics": self.client_metrics,
        }


class CandidateEngine:
    """Single owner of candidates, cursor and reference caches."""

    def __init__(
        self,
        store: StateStore,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._transport = transport

        self.state = EngineState.UNINITIALIZED
        self.index = 0
        self.candidates: dict[str, Candidate] = {}
        self.caches = ReferenceCaches()
        self.prices = PriceSheet()
        self.budget = CallBudget()

        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()

    # =========================================================================
    # LOADING
    # =========================================================================

    async def load(self) -> None:
        """Restore persisted state. Safe to call more than once."""
        async with self._lock:
            await self._load_locked()

    async def _load_locked(self) -> None:
        if self._ready.is_set():
            return

        raw_index = await self.store.get(INDEX_KEY)
        try:
            self.index = int(raw_index) if raw_index else 0
        except ValueError as e:
            raise CodecError(f"Invalid cursor entry: {raw_index!r}") from e

        blob = await self.store.get(CANDIDATES_KEY)
        if blob is None:
            self.candidates = {}
            self.state = EngineState.UNINITIALIZED
        else:
            self.candidates = decode_candidates(blob)
            self.state = EngineState.READY

        ft_blob = await self.store.get(FT_METAS_KEY)
        nft_blob = await self.store.get(NFT_METAS_KEY)
        self.caches = ReferenceCaches(
            ft_metas=decode_metadata(ft_blob, FtMetadata) if ft_blob else {},
            nft_metas=decode_metadata(nft_blob, NftMetadata) if nft_blob else {},
        )

        self._ready.set()
        logger.info(
            "Engine loaded",
            state=self.state.value,
            index=self.index,
            candidates=len(self.candidates),
            ft_metas=len(self.caches.ft_metas),
            nft_metas=len(self.caches.nft_metas),
        )

    async def _ensure_ready(self) -> None:
        if not self._ready.is_set():
            await self.load()

    # =========================================================================
    # READS
    # =========================================================================

    async def get_candidates(self) -> list[Candidate]:
        await self._ensure_ready()
        if self.state is not EngineState.READY:
            raise NotSeededError("Candidates have not been seeded yet")
        return [candidate.model_copy(deep=True) for candidate in self.candidates.values()]

    async def get_ft_metadata(self) -> list[FtMetadata]:
        await self._ensure_ready()
        return [meta.model_copy() for meta in self.caches.ft_metas.values()]

    async def get_nft_metadata(self) -> list[NftMetadata]:
        await self._ensure_ready()
        return [meta.model_copy() for meta in self.caches.nft_metas.values()]

    async def status(self) -> dict[str, Any]:
        await self._ensure_ready()
        return {
            "state": self.state.value,
            "index": self.index,
            "candidates": len(self.candidates),
            "ft_metas": len(self.caches.ft_metas),
            "nft_metas": len(self.caches.nft_metas),
            "prices_loaded": self.prices.loaded,
        }

    # =========================================================================
    # CYCLE
    # =========================================================================

    async def run_cycle(self, credentials: Credentials) -> CycleReport:
        """
        Run one enrichment cycle.

        Raises:
            SeedingError: the first-run discovery failed; nothing was stored.
            UpstreamError: the price sheet could not be loaded.
        Enrichment failures are logged and reported, never raised.
        """
        async with self._lock:
            await self._load_locked()

            report = CycleReport(
                run_id=str(uuid.uuid4()),
                started_at=datetime.now(timezone.utc),
            )
            self.budget.reset()

            with LogContext(run_id=report.run_id):
                async with SourceClients(credentials, self.budget, self.settings, self._transport) as clients:
                    try:
                        await self.prices.ensure_loaded(clients.price_sheet, self.caches.ft_metas)

                        if self.state is not EngineState.READY:
                            await self._seed(clients.pikespeak)
                            report.seeded = True

                        report.index_before = self.index
                        try:
                            await self._enrich_round(clients, report)
                        except Exception as e:
                            logger.error("Enrichment cycle aborted", error=str(e))
                            report.enrichment_error = str(e)

                        await self._commit()
                    finally:
                        report.calls_made = self.budget.calls
                        report.client_metrics = clients.get_metrics()

            report.index_after = self.index
            report.finished_at = datetime.now(timezone.utc)
            logger.info(
                "New index",
                run_id=report.run_id,
                index=self.index,
                total=len(self.candidates),
                enriched=len(report.enriched),
                calls=report.calls_made,
            )
            return report

    async def _seed(self, client: PikespeakClient) -> None:
        self.state = EngineState.SEEDING
        try:
            candidates = await seed_candidates(client, self.settings.seed_page_size)
            await self.store.put(CANDIDATES_KEY, encode_candidates(candidates))
            self.candidates = candidates
            self.state = EngineState.READY
        except IngestError as e:
            logger.error("Initialization threw exception", error=str(e))
            raise SeedingError(f"Seeding failed: {e}") from e
        finally:
            if self.state is EngineState.SEEDING:
                self.state = EngineState.UNINITIALIZED

        logger.info("Seeded candidates", total=len(self.candidates))

    async def _enrich_round(self, clients: SourceClients, report: CycleReport) -> None:
        keys = list(self.candidates)
        if not keys:
            return
        self.index %= len(keys)

        ctx = EnrichmentContext(
            clients=clients,
            caches=self.caches,
            prices=self.prices,
            settings=self.settings,
        )

        while (
            len(report.enriched) < self.settings.max_candidates_per_cycle
            and not self.budget.exhausted(self.settings.call_budget)
        ):
            nominee = keys[self.index]
            await enrich_candidate(ctx, self.candidates[nominee])
            report.enriched.append(nominee)
            self.index = (self.index + 1) % len(keys)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _commit(self) -> None:
        """Write every entry independently; a failed write is logged only."""
        await self._persist(INDEX_KEY, lambda: str(self.index).encode())
        await self._persist(CANDIDATES_KEY, lambda: encode_candidates(self.candidates))
        await self._persist(FT_METAS_KEY, lambda: encode_metadata(self.caches.ft_metas))
        await self._persist(NFT_METAS_KEY, lambda: encode_metadata(self.caches.nft_metas))

    async def _persist(self, key: str, encode: Callable[[], bytes]) -> None:
        try:
            await self.store.put(key, encode())
        except PersistenceError as e:
            logger.error("Saving state threw exception", key=key, error=str(e))
