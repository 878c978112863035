"""ORM models for the clean layer.

Flat, typed projections of the raw documents. Every table has an autoincrement
``id`` so the dimension and fact stages can track new rows incrementally.
"""

from datetime import date
from typing import Optional

from sqlalchemy import Date, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel


class CleanMatchDetail(SQLModel, table=True):
    """One row per match."""

    __tablename__ = "clean_match_detail"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(sa_type=String(64), nullable=False, unique=True)
    raw_record_id: int = Field(sa_type=Integer, nullable=False, index=True)
    match_type_number: Optional[int] = None

    event_name: Optional[str] = Field(sa_type=String(255), default=None)
    event_stage: str = Field(sa_type=String(100), default="NA")
    event_date: Optional[date] = Field(sa_type=Date, default=None)
    event_year: Optional[int] = None
    event_month: Optional[int] = None
    event_day: Optional[int] = None

    match_type: Optional[str] = Field(sa_type=String(20), default=None)
    season: Optional[str] = Field(sa_type=String(20), default=None)
    team_type: Optional[str] = Field(sa_type=String(20), default=None)
    overs: Optional[int] = None
    venue: Optional[str] = Field(sa_type=String(255), default=None)
    city: Optional[str] = Field(sa_type=String(100), default=None)
    gender: Optional[str] = Field(sa_type=String(10), default=None)

    first_team: Optional[str] = Field(sa_type=String(100), default=None)
    second_team: Optional[str] = Field(sa_type=String(100), default=None)
    match_result: Optional[str] = Field(sa_type=String(50), default=None)
    winner: str = Field(sa_type=String(100), default="NA")
    toss_winner: Optional[str] = Field(sa_type=String(100), default=None)
    toss_decision: Optional[str] = Field(sa_type=String(20), default=None)


class CleanPlayer(SQLModel, table=True):
    """One row per (match, team, player)."""

    __tablename__ = "clean_player"
    __table_args__ = (UniqueConstraint("match_id", "team_name", "player_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(sa_type=String(64), nullable=False, index=True)
    team_name: str = Field(sa_type=String(100), nullable=False)
    player_name: str = Field(sa_type=String(100), nullable=False)


class CleanDelivery(SQLModel, table=True):
    """One row per delivery × extras entry × fielder (outer-flattened)."""

    __tablename__ = "clean_delivery"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(sa_type=String(64), nullable=False, index=True)
    team_name: Optional[str] = Field(sa_type=String(100), default=None)
    innings_number: int = Field(sa_type=Integer, nullable=False)
    over_number: Optional[int] = None
    ball_number: int = Field(sa_type=Integer, nullable=False)

    bowler: Optional[str] = Field(sa_type=String(100), default=None)
    batter: Optional[str] = Field(sa_type=String(100), default=None)
    non_striker: Optional[str] = Field(sa_type=String(100), default=None)

    runs: Optional[int] = None
    extras: Optional[int] = None
    total: Optional[int] = None

    extra_type: Optional[str] = Field(sa_type=String(20), default=None)
    extra_runs: Optional[int] = None

    player_out: Optional[str] = Field(sa_type=String(100), default=None)
    player_out_kind: Optional[str] = Field(sa_type=String(50), default=None)
    player_out_fielder: Optional[str] = Field(sa_type=String(100), default=None)
