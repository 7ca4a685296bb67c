from datetime import datetime, timezone

from .registry import Tool


def current_datetime(_args=None) -> str:
    """Current UTC time as ISO 8601 with milliseconds, e.g. 2025-01-31T09:30:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def datetime_tool() -> Tool:
    return Tool(
        name="get_datetime",
        description="Get the current date and time in ISO 8601 format",
        parameters={"type": "object", "properties": {}},
        execute=current_datetime,
    )
