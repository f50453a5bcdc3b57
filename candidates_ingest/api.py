"""
Read-only HTTP surface over the engine's snapshots, optionally with the
cycle scheduler running in the same process.

GET /candidates  -> all candidates (500 before the first successful seed)
GET /ftmetas     -> fungible token metadata
GET /nftmetas    -> NFT contract metadata
"""
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from candidates_ingest.config import Settings, get_settings
from candidates_ingest.database import DatabaseManager
from candidates_ingest.errors import NotSeededError
from candidates_ingest.ingestion import CandidateEngine
from candidates_ingest.scheduler import CycleScheduler

logger = structlog.get_logger()

router = APIRouter()


def get_engine(request: Request) -> CandidateEngine:
    return request.app.state.engine


@router.get("/candidates", tags=["candidates"])
async def list_candidates(engine: CandidateEngine = Depends(get_engine)) -> list[dict[str, Any]]:
    return [candidate.to_json_dict() for candidate in await engine.get_candidates()]


@router.get("/ftmetas", tags=["metadata"])
async def list_ft_metadata(engine: CandidateEngine = Depends(get_engine)) -> list[dict[str, Any]]:
    return [meta.to_json_dict() for meta in await engine.get_ft_metadata()]


@router.get("/nftmetas", tags=["metadata"])
async def list_nft_metadata(engine: CandidateEngine = Depends(get_engine)) -> list[dict[str, Any]]:
    return [meta.to_json_dict() for meta in await engine.get_nft_metadata()]


def create_app(
    engine: CandidateEngine,
    settings: Optional[Settings] = None,
    scheduler: Optional[CycleScheduler] = None,
    db: Optional[DatabaseManager] = None,
) -> FastAPI:
    """
    Build the FastAPI app around an engine instance.

    When a scheduler is given it drives cycles on the same engine the routes
    read from, so every committed cycle is visible to the next request. The
    scheduler is stopped and `db` closed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.load()
        if scheduler is not None:
            scheduler.start(run_now=settings.run_cycle_on_startup)
        logger.info("Read API started", scheduled=scheduler is not None)

        yield

        if scheduler is not None:
            scheduler.stop()
        if db is not None:
            db.close()
        logger.info("Read API stopped")

    app = FastAPI(title="Candidates API", lifespan=lifespan)
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotSeededError)
    async def not_seeded_handler(request: Request, exc: NotSeededError) -> Response:
        logger.warning("Snapshot requested before seeding", path=request.url.path)
        return Response(status_code=500)

    app.include_router(router)
    return app
