"""
Seeder: discovers the full candidate universe from the nominations listing.
"""
import structlog

from candidates_ingest.clients import PikespeakClient
from candidates_ingest.models import Candidate

logger = structlog.get_logger()


async def seed_candidates(client: PikespeakClient, page_size: int) -> dict[str, Candidate]:
    """
    Page through the listing until an empty page and build stub candidates.

    The result only lives in memory; any error propagates so the caller can
    drop the partial map and start over from offset 0 next time.
    """
    candidates: dict[str, Candidate] = {}
    offset = 0

    while True:
        rows = await client.fetch_candidates_page(offset)
        if not rows:
            break

        for row in rows:
            candidates[row.nominee] = Candidate(
                nominee=row.nominee,
                house=row.house,
                timestamp=row.timestamp,
            )

        logger.info(
            "Fetched candidates page",
            offset=offset,
            batch_size=len(rows),
            total=len(candidates),
        )
        offset += page_size

    return candidates
