"""Flattening of nested match documents into clean-layer rows.

Raw documents are generic JSON trees. Nothing about their shape is assumed:
every read goes through ``get_path`` which yields ``None`` for a missing step, and
every optional collection is unnested with ``cross_outer`` so that an absent
collection produces one null-filled row instead of dropping the parent row.

Three row sets come out of one document:

- match detail: one row per match
- player roster: ``info.players`` (team → [player]) as (team, player) pairs
- delivery events: innings → overs → deliveries → extras × wickets × fielders

All functions are pure; they return plain dicts and append ``ShapeMismatchError``
notes to an optional ``issues`` list instead of raising.
"""

from datetime import date, datetime
from pathlib import PurePath
from typing import Any, Callable, Iterable, Optional, Sequence

from cricket_warehouse.errors import ShapeMismatchError

Row = dict[str, Any]

RESULT_DECLARED = "Result Declared"
TIE = "Tie"
NO_RESULT = "No Result"
NOT_AVAILABLE = "NA"

# Keys carrying nested source objects between flatten levels
_DELIVERY = "_delivery"
_WICKET = "_wicket"


# ============================================================================
# VARIANT ACCESS
# ============================================================================


def get_path(document: Any, path: str | Sequence[Any], default: Any = None) -> Any:
    """Read a nested value, returning ``default`` at the first missing step.

    Args:
        document: JSON tree (dicts, lists, scalars)
        path: Dotted string (``"info.outcome.winner"``, ``"info.dates.0"``) or a
            sequence of keys/indices

    Returns:
        The value at ``path`` or ``default``
    """
    steps = path.split(".") if isinstance(path, str) else path
    current = document

    for step in steps:
        if isinstance(current, dict):
            if step not in current:
                return default
            current = current[step]
        elif isinstance(current, list):
            try:
                current = current[int(step)]
            except (ValueError, IndexError):
                return default
        else:
            return default

        if current is None:
            return default

    return current


def cross_outer(
    rows: Iterable[Row],
    children: Callable[[Row], Optional[Sequence[Row]]],
    null_fields: Sequence[str],
) -> list[Row]:
    """Outer-preserving cross product of rows with their optional children.

    Each parent row is merged with every child row. A parent whose child
    collection is missing or empty yields exactly one row with ``null_fields``
    set to ``None``.
    """
    flattened = []
    for row in rows:
        kids = children(row) or []
        if not kids:
            flattened.append({**row, **dict.fromkeys(null_fields)})
            continue
        for kid in kids:
            flattened.append({**row, **kid})
    return flattened


def to_int(value: Any) -> Optional[int]:
    """Coerce an integer-like JSON value, ``None`` when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_date(value: Any) -> Optional[date]:
    """Parse date string (YYYY-MM-DD) to date object."""
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


# ============================================================================
# MATCH DETAIL
# ============================================================================


def resolve_match_id(source_file: str, row_number: int = 1) -> str:
    """Match identifier for a raw record.

    A ``.json`` file holds one match and is named after it (Cricsheet match id),
    so its stem is the id. Documents inside a ``.jsonl`` file add their position.
    """
    path = PurePath(source_file)
    if path.suffix.lower() == ".jsonl":
        return f"{path.stem}-{row_number}"
    return path.stem


def classify_outcome(outcome: Any) -> Optional[str]:
    """Classify a match outcome.

    A named winner always means ``Result Declared``; otherwise ``tie`` and
    ``no result`` map to their labels and any other result string passes through.
    """
    if get_path(outcome, "winner") is not None:
        return RESULT_DECLARED

    result = get_path(outcome, "result")
    if result == "tie":
        return TIE
    if result == "no result":
        return NO_RESULT
    return result


def _event_stage(event: Any) -> str:
    match_number = get_path(event, "match_number")
    if match_number is not None:
        return str(match_number)
    stage = get_path(event, "stage")
    if stage is not None:
        return str(stage)
    return NOT_AVAILABLE


def flatten_match_detail(
    match_id: str,
    info: Any,
    issues: Optional[list[ShapeMismatchError]] = None,
) -> Row:
    """Project the scalar fields of ``info`` into one match-detail row."""
    issues = issues if issues is not None else []

    event_date = _parse_date(get_path(info, "dates.0"))
    if event_date is None:
        issues.append(ShapeMismatchError(match_id, "info.dates", "missing or not YYYY-MM-DD"))

    teams = get_path(info, "teams")
    if not isinstance(teams, list) or len(teams) < 2:
        issues.append(ShapeMismatchError(match_id, "info.teams", "fewer than two teams"))
        teams = teams if isinstance(teams, list) else []

    toss_decision = get_path(info, "toss.decision")
    season = get_path(info, "season")

    return {
        "match_id": match_id,
        "match_type_number": to_int(get_path(info, "match_type_number")),
        "event_name": get_path(info, "event.name"),
        "event_stage": _event_stage(get_path(info, "event")),
        "event_date": event_date,
        "event_year": event_date.year if event_date else None,
        "event_month": event_date.month if event_date else None,
        "event_day": event_date.day if event_date else None,
        "match_type": get_path(info, "match_type"),
        "season": str(season) if season is not None else None,
        "team_type": get_path(info, "team_type"),
        "overs": to_int(get_path(info, "overs")),
        "venue": get_path(info, "venue"),
        "city": get_path(info, "city"),
        "gender": get_path(info, "gender"),
        "first_team": teams[0] if len(teams) > 0 else None,
        "second_team": teams[1] if len(teams) > 1 else None,
        "match_result": classify_outcome(get_path(info, "outcome")),
        "winner": get_path(info, "outcome.winner", NOT_AVAILABLE),
        "toss_winner": get_path(info, "toss.winner"),
        "toss_decision": toss_decision.capitalize() if isinstance(toss_decision, str) else None,
    }


# ============================================================================
# PLAYER ROSTER
# ============================================================================


def flatten_players(
    match_id: str,
    info: Any,
    issues: Optional[list[ShapeMismatchError]] = None,
) -> list[Row]:
    """Unnest ``info.players`` into (match, team, player) rows.

    Rows with a null or non-string team or player are excluded.
    """
    issues = issues if issues is not None else []
    players = get_path(info, "players")

    if not isinstance(players, dict):
        issues.append(ShapeMismatchError(match_id, "info.players"))
        return []

    rows = []
    seen = set()
    for team_name, names in players.items():
        if not team_name or not isinstance(names, list):
            continue
        for player_name in names:
            if not isinstance(player_name, str) or not player_name:
                continue
            if (team_name, player_name) in seen:
                continue
            seen.add((team_name, player_name))
            rows.append({"match_id": match_id, "team_name": team_name, "player_name": player_name})

    return rows


# ============================================================================
# DELIVERY EVENTS
# ============================================================================

EXTRA_FIELDS = ("extra_type", "extra_runs")
WICKET_FIELDS = ("player_out", "player_out_kind", _WICKET)
FIELDER_FIELDS = ("player_out_fielder",)


def _extras_of(row: Row) -> list[Row]:
    extras = get_path(row[_DELIVERY], "extras")
    if not isinstance(extras, dict):
        return []
    return [
        {"extra_type": extra_type, "extra_runs": to_int(runs)}
        for extra_type, runs in extras.items()
    ]


def _wickets_of(row: Row) -> list[Row]:
    wickets = get_path(row[_DELIVERY], "wickets")
    if not isinstance(wickets, list):
        return []
    return [
        {
            "player_out": get_path(wicket, "player_out"),
            "player_out_kind": get_path(wicket, "kind"),
            _WICKET: wicket,
        }
        for wicket in wickets
        if isinstance(wicket, dict)
    ]


def _fielders_of(row: Row) -> list[Row]:
    fielders = get_path(row[_WICKET], "fielders") if row.get(_WICKET) else None
    if not isinstance(fielders, list):
        return []
    # Newer documents use {"name": ...}, older ones bare strings
    return [
        {"player_out_fielder": fielder if isinstance(fielder, str) else get_path(fielder, "name")}
        for fielder in fielders
        if isinstance(fielder, (str, dict))
    ]


def _delivery_base_rows(
    match_id: str, innings: Any, issues: list[ShapeMismatchError]
) -> list[Row]:
    """Innings → overs → deliveries, one row per delivery."""
    rows = []

    if not isinstance(innings, list):
        issues.append(ShapeMismatchError(match_id, "innings", "not an array"))
        return rows

    for innings_number, inning in enumerate(innings, start=1):
        overs = get_path(inning, "overs")
        if not isinstance(overs, list):
            issues.append(ShapeMismatchError(match_id, f"innings.{innings_number - 1}.overs"))
            continue

        team_name = get_path(inning, "team")
        for over in overs:
            over_index = to_int(get_path(over, "over"))
            if over_index is None:
                issues.append(ShapeMismatchError(match_id, f"innings.{innings_number - 1}.overs.over"))

            deliveries = get_path(over, "deliveries")
            if not isinstance(deliveries, list):
                issues.append(ShapeMismatchError(match_id, f"innings.{innings_number - 1}.overs.deliveries"))
                continue

            for ball_number, delivery in enumerate(deliveries, start=1):
                if not isinstance(delivery, dict):
                    issues.append(ShapeMismatchError(match_id, "delivery", "not an object"))
                    continue
                rows.append(
                    {
                        "match_id": match_id,
                        "team_name": team_name,
                        "innings_number": innings_number,
                        "over_number": over_index + 1 if over_index is not None else None,
                        "ball_number": ball_number,
                        "bowler": get_path(delivery, "bowler"),
                        "batter": get_path(delivery, "batter"),
                        "non_striker": get_path(delivery, "non_striker"),
                        "runs": _run_value(match_id, delivery, "batter", issues),
                        "extras": _run_value(match_id, delivery, "extras", issues),
                        "total": _run_value(match_id, delivery, "total", issues),
                        _DELIVERY: delivery,
                    }
                )

    return rows


def _run_value(match_id: str, delivery: Row, key: str, issues: list[ShapeMismatchError]) -> Optional[int]:
    raw = get_path(delivery, ["runs", key])
    value = to_int(raw)
    if raw is not None and value is None:
        issues.append(ShapeMismatchError(match_id, f"runs.{key}", f"not an integer: {raw!r}"))
    return value


def flatten_deliveries(
    match_id: str,
    innings: Any,
    issues: Optional[list[ShapeMismatchError]] = None,
) -> list[Row]:
    """Six-level outer flatten of the innings tree.

    A delivery with no extras and no wicket yields one row with null
    extra/wicket/fielder fields. Two extras entries and a wicket with three
    fielders yield 2 × 3 = 6 rows.
    """
    issues = issues if issues is not None else []

    rows = _delivery_base_rows(match_id, innings, issues)
    rows = cross_outer(rows, _extras_of, EXTRA_FIELDS)
    rows = cross_outer(rows, _wickets_of, WICKET_FIELDS)
    rows = cross_outer(rows, _fielders_of, FIELDER_FIELDS)

    for row in rows:
        row.pop(_DELIVERY, None)
        row.pop(_WICKET, None)

    return rows
