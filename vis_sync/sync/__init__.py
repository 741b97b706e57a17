"""Entity descriptors and the generic synchronizer."""

from .entities import (
    ENTITY_SPECS,
    LIVE_SCORE_ENTITY,
    LIVE_SCORE_FIELDS,
    MATCH_ENTITY,
    MATCH_SPEC,
    TOURNAMENT_ENTITY,
    TOURNAMENT_SPEC,
    EntitySpec,
)
from .parser import PayloadParser, RegexElementParser, SoupElementParser, clean_payload
from .synchronizer import BatchResult, EntitySynchronizer, ParseReport

__all__ = [
    "ENTITY_SPECS",
    "LIVE_SCORE_ENTITY",
    "LIVE_SCORE_FIELDS",
    "MATCH_ENTITY",
    "MATCH_SPEC",
    "TOURNAMENT_ENTITY",
    "TOURNAMENT_SPEC",
    "BatchResult",
    "EntitySpec",
    "EntitySynchronizer",
    "ParseReport",
    "PayloadParser",
    "RegexElementParser",
    "SoupElementParser",
    "clean_payload",
]
