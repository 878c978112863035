"""ORM models for the consumption layer (dimensions and facts).

Dimension surrogate keys are assigned by the dimension builder, never by the
database, so ids stay stable across rebuilds.
"""

from datetime import date
from typing import Optional

from sqlalchemy import Boolean, Date, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel


# ============================================================================
# DIMENSIONS
# ============================================================================


class DimTeam(SQLModel, table=True):
    __tablename__ = "dim_team"

    team_id: int = Field(sa_type=Integer, primary_key=True, sa_column_kwargs={"autoincrement": False})
    team_name: str = Field(sa_type=String(100), nullable=False, unique=True)


class DimPlayer(SQLModel, table=True):
    __tablename__ = "dim_player"
    __table_args__ = (UniqueConstraint("team_id", "player_name"),)

    player_id: int = Field(sa_type=Integer, primary_key=True, sa_column_kwargs={"autoincrement": False})
    team_id: int = Field(sa_type=Integer, nullable=False, foreign_key="dim_team.team_id")
    player_name: str = Field(sa_type=String(100), nullable=False)


class DimVenue(SQLModel, table=True):
    __tablename__ = "dim_venue"
    __table_args__ = (UniqueConstraint("venue_name", "city"),)

    venue_id: int = Field(sa_type=Integer, primary_key=True, sa_column_kwargs={"autoincrement": False})
    venue_name: str = Field(sa_type=String(255), nullable=False)
    city: str = Field(sa_type=String(100), nullable=False, default="NA")


class DimMatchType(SQLModel, table=True):
    __tablename__ = "dim_match_type"

    match_type_id: int = Field(sa_type=Integer, primary_key=True, sa_column_kwargs={"autoincrement": False})
    match_type: str = Field(sa_type=String(20), nullable=False, unique=True)


class DimDate(SQLModel, table=True):
    """Calendar attributes for every event date seen in the clean layer."""

    __tablename__ = "dim_date"

    date_id: int = Field(sa_type=Integer, primary_key=True, sa_column_kwargs={"autoincrement": False})
    full_date: date = Field(sa_type=Date, nullable=False, unique=True)
    day: int
    month: int
    year: int
    quarter: int
    day_of_week: int  # ISO: Monday=1 .. Sunday=7
    day_of_month: int
    day_of_year: int
    day_name: str = Field(sa_type=String(10))
    is_weekend: bool = Field(sa_type=Boolean)


# ============================================================================
# FACTS
# ============================================================================


class FactMatch(SQLModel, table=True):
    """Per-match aggregates, one row per match id, immutable once inserted."""

    __tablename__ = "fact_match"

    match_id: str = Field(sa_type=String(64), primary_key=True)
    date_id: int = Field(foreign_key="dim_date.date_id")
    team_a_id: int = Field(foreign_key="dim_team.team_id")
    team_b_id: int = Field(foreign_key="dim_team.team_id")
    match_type_id: int = Field(foreign_key="dim_match_type.match_type_id")
    venue_id: int = Field(foreign_key="dim_venue.venue_id")
    toss_winner_team_id: Optional[int] = Field(default=None, foreign_key="dim_team.team_id")
    winner_team_id: Optional[int] = Field(default=None, foreign_key="dim_team.team_id")

    event_name: Optional[str] = Field(sa_type=String(255), default=None)
    event_stage: Optional[str] = Field(sa_type=String(100), default=None)
    overs_limit: Optional[int] = None
    match_result: Optional[str] = Field(sa_type=String(50), default=None)
    toss_decision: Optional[str] = Field(sa_type=String(20), default=None)

    team_a_overs_played: int = 0
    team_a_balls: int = 0
    team_a_extra_balls: int = 0
    team_a_extra_runs: int = 0
    team_a_total_runs: int = 0
    team_a_wickets: int = 0

    team_b_overs_played: int = 0
    team_b_balls: int = 0
    team_b_extra_balls: int = 0
    team_b_extra_runs: int = 0
    team_b_total_runs: int = 0
    team_b_wickets: int = 0


class FactDelivery(SQLModel, table=True):
    """One row per clean delivery row with names resolved to surrogate ids."""

    __tablename__ = "fact_delivery"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(sa_type=String(64), nullable=False, index=True, foreign_key="fact_match.match_id")
    team_id: int = Field(foreign_key="dim_team.team_id")
    bowler_id: int = Field(foreign_key="dim_player.player_id")
    batter_id: int = Field(foreign_key="dim_player.player_id")
    non_striker_id: int = Field(foreign_key="dim_player.player_id")

    innings_number: int
    over_number: Optional[int] = None
    ball_number: int

    runs: int = 0
    extra_runs: int = 0
    extra_type: str = Field(sa_type=String(20), default="None")
    total: int = 0

    player_out: str = Field(sa_type=String(100), default="None")
    player_out_kind: str = Field(sa_type=String(50), default="None")
    player_out_fielder: str = Field(sa_type=String(100), default="None")
