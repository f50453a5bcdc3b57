"""
State codec: candidate map <-> compressed blob.

The candidate map is the only large value the engine stores, so it is
written as compact JSON deflated with zlib. Reference caches are small and
stored as plain JSON.
"""
import json
import zlib
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from candidates_ingest.errors import CodecError
from candidates_ingest.models import Candidate

T = TypeVar("T", bound=BaseModel)


def _dumps(data) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def encode_candidates(candidates: dict[str, Candidate]) -> bytes:
    """Serialize the candidate map, preserving key order."""
    payload = {key: candidate.to_json_dict() for key, candidate in candidates.items()}
    return zlib.compress(_dumps(payload))


def decode_candidates(blob: bytes) -> dict[str, Candidate]:
    """Inverse of `encode_candidates`. Raises CodecError on any corruption."""
    try:
        payload = json.loads(zlib.decompress(blob).decode("utf-8"))
        return {key: Candidate.model_validate(value) for key, value in payload.items()}
    except (zlib.error, UnicodeDecodeError, json.JSONDecodeError, AttributeError, ValidationError) as e:
        raise CodecError(f"Invalid candidates blob: {e}") from e


def encode_metadata(metas: dict[str, BaseModel]) -> bytes:
    return _dumps({key: meta.model_dump(mode="json", by_alias=True, exclude_none=True) for key, meta in metas.items()})


def decode_metadata(blob: bytes, model: type[T]) -> dict[str, T]:
    try:
        payload = json.loads(blob.decode("utf-8"))
        return {key: model.model_validate(value) for key, value in payload.items()}
    except (UnicodeDecodeError, json.JSONDecodeError, AttributeError, ValidationError) as e:
        raise CodecError(f"Invalid {model.__name__} blob: {e}") from e
