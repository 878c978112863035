"""Read-side queries behind the team dashboard.

The dashboard picks a team from ``list_teams`` and shows every match that team
played with its date, opponent and winner, plus played/won counts.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from cricket_warehouse.models.consumption import DimDate, DimTeam, FactMatch
from cricket_warehouse.transform.flatten import NOT_AVAILABLE


@dataclass
class TeamMatchRow:
    match_id: str
    match_date: Optional[date]
    opponent_team_name: str
    winner_team_name: str


@dataclass
class TeamMatchReport:
    """All matches one team played, oldest first."""

    team_name: str
    rows: list[TeamMatchRow] = field(default_factory=list)

    @property
    def total_matches(self) -> int:
        return len(self.rows)

    @property
    def matches_won(self) -> int:
        return sum(1 for row in self.rows if row.winner_team_name == self.team_name)


def list_teams(session: Session) -> list[str]:
    """Team names for the dashboard filter, alphabetically."""
    return list(session.exec(select(DimTeam.team_name).order_by(DimTeam.team_name)).all())


def team_match_report(session: Session, team_name: str) -> TeamMatchReport:
    """Matches played by ``team_name`` with opponent and winner names.

    An unknown team yields an empty report. A match without a declared winner
    reports ``NA`` as the winner.
    """
    report = TeamMatchReport(team_name=team_name)

    team_id = session.exec(select(DimTeam.team_id).where(DimTeam.team_name == team_name)).first()
    if team_id is None:
        return report

    team_a = aliased(DimTeam)
    team_b = aliased(DimTeam)
    winner = aliased(DimTeam)

    statement = (
        select(
            FactMatch.match_id,
            DimDate.full_date,
            FactMatch.team_a_id,
            team_a.team_name,
            team_b.team_name,
            winner.team_name,
        )
        .join(DimDate, DimDate.date_id == FactMatch.date_id)
        .join(team_a, team_a.team_id == FactMatch.team_a_id)
        .join(team_b, team_b.team_id == FactMatch.team_b_id)
        .outerjoin(winner, winner.team_id == FactMatch.winner_team_id)
        .where(or_(FactMatch.team_a_id == team_id, FactMatch.team_b_id == team_id))
        .order_by(DimDate.full_date, FactMatch.match_id)
    )

    for match_id, match_date, team_a_id, team_a_name, team_b_name, winner_name in session.exec(
        statement
    ).all():
        report.rows.append(
            TeamMatchRow(
                match_id=match_id,
                match_date=match_date,
                opponent_team_name=team_b_name if team_a_id == team_id else team_a_name,
                winner_team_name=winner_name or NOT_AVAILABLE,
            )
        )

    return report
