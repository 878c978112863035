"""Dashboard queries over the consumption layer."""

from cricket_warehouse.query.dashboard import (
    TeamMatchReport,
    TeamMatchRow,
    list_teams,
    team_match_report,
)

__all__ = ["TeamMatchReport", "TeamMatchRow", "list_teams", "team_match_report"]
