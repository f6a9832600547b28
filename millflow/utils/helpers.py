"""Shared request-parsing helpers for the blueprints."""

from datetime import date, datetime


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Returns None for empty input. Supports: YYYY-MM-DD, full ISO datetimes
    (date part kept), DD.MM.YYYY and date objects.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_id_list(value, field="ids"):
    """Coerce a JSON list of ids to ints, raising ValueError on junk."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field} must be a list")
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must contain integer ids") from exc
