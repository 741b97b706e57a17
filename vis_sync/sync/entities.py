"""Entity descriptors that instantiate the generic synchronizer."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from ..performance.governor import classify_tournament_tier
from ..schemas.records import MatchRecord, MatchRow, TournamentRecord, TournamentRow
from ..utils.timeutils import Clock
from .normalize import (
    SyncStatus,
    is_numeric_key,
    normalize_date,
    normalize_status,
    normalize_time,
    parse_int,
    sanitize_text,
)

TOURNAMENT_ENTITY = "tournaments"
MATCH_ENTITY = "matches_schedule"
LIVE_SCORE_ENTITY = "matches_live"

# Columns compared to decide whether a live match needs rewriting.
LIVE_SCORE_FIELDS: tuple[str, ...] = (
    "status",
    "match_points_a",
    "match_points_b",
    "points_team_a_set1",
    "points_team_b_set1",
    "points_team_a_set2",
    "points_team_b_set2",
    "points_team_a_set3",
    "points_team_b_set3",
)

DEFAULT_TOURNAMENT_NAME = "Unnamed Tournament"
DEFAULT_LOCATION = "Unknown Location"

TOURNAMENT_FIELDS: tuple[str, ...] = (
    "No",
    "Code",
    "Name",
    "StartDate",
    "EndDate",
    "Status",
    "Location",
    "Category",
    "Gender",
    "Surface",
)

MATCH_FIELDS: tuple[str, ...] = (
    "No",
    "NoInTournament",
    "TeamAName",
    "TeamBName",
    "LocalDate",
    "LocalTime",
    "Court",
    "Status",
    "Round",
    "MatchPointsA",
    "MatchPointsB",
    "PointsTeamASet1",
    "PointsTeamBSet1",
    "PointsTeamASet2",
    "PointsTeamBSet2",
    "PointsTeamASet3",
    "PointsTeamBSet3",
    "DurationSet1",
    "DurationSet2",
    "DurationSet3",
    "NoReferee1",
    "NoReferee2",
    "Referee1Name",
    "Referee2Name",
    "Referee1FederationCode",
    "Referee2FederationCode",
)

Validator = Callable[[Mapping[str, str | None]], str | None]
Normalizer = Callable[[Any, Clock], BaseModel]


@dataclass(frozen=True, slots=True)
class EntitySpec:
    """Describes how one upstream entity is parsed, validated and stored.

    ``validate`` returns the reason an element must be skipped, or ``None``.
    """

    entity_type: str
    element_tag: str
    fields: tuple[str, ...]
    record_model: type[BaseModel]
    row_model: type[BaseModel]
    validate: Validator
    normalize: Normalizer
    batch_size: int


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _validate_tournament(values: Mapping[str, str | None]) -> str | None:
    if _blank(values.get("No")) or _blank(values.get("Code")):
        return "missing required No or Code"
    if not is_numeric_key(values.get("No")):
        return "non-numeric tournament No"
    return None


def _validate_match(values: Mapping[str, str | None]) -> str | None:
    if _blank(values.get("No")):
        return "missing required No"
    if _blank(values.get("TeamAName")) and _blank(values.get("TeamBName")):
        return "missing both team names"
    if not is_numeric_key(values.get("No")):
        return "non-numeric match No"
    return None


def normalize_tournament(record: TournamentRecord, clock: Clock) -> TournamentRow:
    key = record.no.strip()
    name = sanitize_text(record.name) or DEFAULT_TOURNAMENT_NAME
    code = sanitize_text(record.code) or key
    start_date = normalize_date(
        record.start_date, clock=clock, field_name="StartDate", record_key=key
    )
    end_date = normalize_date(record.end_date, clock=clock, field_name="EndDate", record_key=key)
    return TournamentRow(
        no=key,
        code=code,
        name=name,
        start_date=start_date,
        end_date=end_date,
        status=normalize_status(record.status),
        location=sanitize_text(record.location) or DEFAULT_LOCATION,
        category=sanitize_text(record.category),
        gender=sanitize_text(record.gender),
        surface=sanitize_text(record.surface),
        tournament_type=classify_tournament_tier(name, code).value,
    )


def normalize_match(record: MatchRecord, clock: Clock) -> MatchRow:
    key = record.no.strip()
    return MatchRow(
        no=key,
        tournament_no=(record.tournament_no or "").strip(),
        no_in_tournament=sanitize_text(record.no_in_tournament),
        team_a_name=sanitize_text(record.team_a_name),
        team_b_name=sanitize_text(record.team_b_name),
        local_date=normalize_date(
            record.local_date, clock=clock, field_name="LocalDate", record_key=key
        ),
        local_time=normalize_time(record.local_time),
        court=sanitize_text(record.court),
        status=normalize_status(record.status, default=SyncStatus.UPCOMING),
        round=sanitize_text(record.round),
        match_points_a=parse_int(record.match_points_a),
        match_points_b=parse_int(record.match_points_b),
        points_team_a_set1=parse_int(record.points_team_a_set1),
        points_team_b_set1=parse_int(record.points_team_b_set1),
        points_team_a_set2=parse_int(record.points_team_a_set2),
        points_team_b_set2=parse_int(record.points_team_b_set2),
        points_team_a_set3=parse_int(record.points_team_a_set3),
        points_team_b_set3=parse_int(record.points_team_b_set3),
        duration_set1=sanitize_text(record.duration_set1),
        duration_set2=sanitize_text(record.duration_set2),
        duration_set3=sanitize_text(record.duration_set3),
        no_referee1=sanitize_text(record.no_referee1),
        no_referee2=sanitize_text(record.no_referee2),
        referee1_name=sanitize_text(record.referee1_name),
        referee2_name=sanitize_text(record.referee2_name),
        referee1_federation_code=sanitize_text(record.referee1_federation_code),
        referee2_federation_code=sanitize_text(record.referee2_federation_code),
    )


TOURNAMENT_SPEC = EntitySpec(
    entity_type=TOURNAMENT_ENTITY,
    element_tag="Tournament",
    fields=TOURNAMENT_FIELDS,
    record_model=TournamentRecord,
    row_model=TournamentRow,
    validate=_validate_tournament,
    normalize=normalize_tournament,
    batch_size=50,
)

MATCH_SPEC = EntitySpec(
    entity_type=MATCH_ENTITY,
    element_tag="BeachMatch",
    fields=MATCH_FIELDS,
    record_model=MatchRecord,
    row_model=MatchRow,
    validate=_validate_match,
    normalize=normalize_match,
    batch_size=100,
)

ENTITY_SPECS: dict[str, EntitySpec] = {
    TOURNAMENT_SPEC.entity_type: TOURNAMENT_SPEC,
    MATCH_SPEC.entity_type: MATCH_SPEC,
}
