"""
Ingestion package initialization.
Exports the engine and its building blocks.
"""
from candidates_ingest.ingestion.engine import CandidateEngine, CycleReport
from candidates_ingest.ingestion.enrichment import (
    ENRICHMENT_STEPS,
    EnrichmentContext,
    enrich_candidate,
)
from candidates_ingest.ingestion.price_sheet import PriceSheet
from candidates_ingest.ingestion.reference_cache import ReferenceCaches
from candidates_ingest.ingestion.seeder import seed_candidates

__all__ = [
    # Engine
    "CandidateEngine",
    "CycleReport",

    # Components
    "ENRICHMENT_STEPS",
    "EnrichmentContext",
    "enrich_candidate",
    "PriceSheet",
    "ReferenceCaches",
    "seed_candidates",
]
