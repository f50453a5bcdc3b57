"""
Candidates Ingest package.
Incremental enrichment of NDC election candidates from NEAR data providers.
"""
from candidates_ingest.config import get_settings, Settings
from candidates_ingest.models import Candidate, Credentials, EngineState, FtMetadata, NftMetadata

__version__ = "1.0.0"
__all__ = [
    "get_settings",
    "Settings",
    "Candidate",
    "Credentials",
    "EngineState",
    "FtMetadata",
    "NftMetadata",
]
