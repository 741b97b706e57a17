"""Typed records for upstream payloads and normalized storage rows."""

from __future__ import annotations

from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field


class _UpstreamRecord(BaseModel):
    """Raw values exactly as extracted from the XML (all optional text)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    no: str = Field(alias="No")
    status: str | None = Field(default=None, alias="Status")


class TournamentRecord(_UpstreamRecord):
    code: str = Field(alias="Code")
    name: str | None = Field(default=None, alias="Name")
    start_date: str | None = Field(default=None, alias="StartDate")
    end_date: str | None = Field(default=None, alias="EndDate")
    location: str | None = Field(default=None, alias="Location")
    category: str | None = Field(default=None, alias="Category")
    gender: str | None = Field(default=None, alias="Gender")
    surface: str | None = Field(default=None, alias="Surface")


class MatchRecord(_UpstreamRecord):
    tournament_no: str | None = Field(default=None, alias="TournamentNo")
    no_in_tournament: str | None = Field(default=None, alias="NoInTournament")
    team_a_name: str | None = Field(default=None, alias="TeamAName")
    team_b_name: str | None = Field(default=None, alias="TeamBName")
    local_date: str | None = Field(default=None, alias="LocalDate")
    local_time: str | None = Field(default=None, alias="LocalTime")
    court: str | None = Field(default=None, alias="Court")
    round: str | None = Field(default=None, alias="Round")
    match_points_a: str | None = Field(default=None, alias="MatchPointsA")
    match_points_b: str | None = Field(default=None, alias="MatchPointsB")
    points_team_a_set1: str | None = Field(default=None, alias="PointsTeamASet1")
    points_team_b_set1: str | None = Field(default=None, alias="PointsTeamBSet1")
    points_team_a_set2: str | None = Field(default=None, alias="PointsTeamASet2")
    points_team_b_set2: str | None = Field(default=None, alias="PointsTeamBSet2")
    points_team_a_set3: str | None = Field(default=None, alias="PointsTeamASet3")
    points_team_b_set3: str | None = Field(default=None, alias="PointsTeamBSet3")
    duration_set1: str | None = Field(default=None, alias="DurationSet1")
    duration_set2: str | None = Field(default=None, alias="DurationSet2")
    duration_set3: str | None = Field(default=None, alias="DurationSet3")
    no_referee1: str | None = Field(default=None, alias="NoReferee1")
    no_referee2: str | None = Field(default=None, alias="NoReferee2")
    referee1_name: str | None = Field(default=None, alias="Referee1Name")
    referee2_name: str | None = Field(default=None, alias="Referee2Name")
    referee1_federation_code: str | None = Field(default=None, alias="Referee1FederationCode")
    referee2_federation_code: str | None = Field(default=None, alias="Referee2FederationCode")


class TournamentRow(BaseModel):
    """Normalized tournament ready for upsert."""

    model_config = ConfigDict(frozen=True)

    no: str
    code: str
    name: str
    start_date: date
    end_date: date
    status: str
    location: str
    category: str | None = None
    gender: str | None = None
    surface: str | None = None
    tournament_type: str


class MatchRow(BaseModel):
    """Normalized match ready for upsert."""

    model_config = ConfigDict(frozen=True)

    no: str
    tournament_no: str
    no_in_tournament: str | None = None
    team_a_name: str | None = None
    team_b_name: str | None = None
    local_date: date
    local_time: time
    court: str | None = None
    status: str
    round: str | None = None
    match_points_a: int | None = None
    match_points_b: int | None = None
    points_team_a_set1: int | None = None
    points_team_b_set1: int | None = None
    points_team_a_set2: int | None = None
    points_team_b_set2: int | None = None
    points_team_a_set3: int | None = None
    points_team_b_set3: int | None = None
    duration_set1: str | None = None
    duration_set2: str | None = None
    duration_set3: str | None = None
    no_referee1: str | None = None
    no_referee2: str | None = None
    referee1_name: str | None = None
    referee2_name: str | None = None
    referee1_federation_code: str | None = None
    referee2_federation_code: str | None = None


class SyncCandidate(BaseModel):
    """A stored tournament whose matches are due for synchronization."""

    model_config = ConfigDict(frozen=True)

    no: str
    code: str | None = None
    name: str | None = None
    status: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    last_synced: datetime | None = None
