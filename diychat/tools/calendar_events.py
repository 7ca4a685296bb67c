from typing import Any, Dict, List

from .registry import Tool

_EVENT_UPDATABLE = ("title", "description", "start_time", "end_time")


def calendar_tools(store) -> List[Tool]:
    """
    Calendar CRUD tools over ``store``.

    ``calendar_list`` filters on ``start_time`` only when both bounds are
    given; ISO 8601 strings compare correctly as text.
    """

    def calendar_list(args: Dict[str, Any]) -> List[Dict[str, Any]]:
        return store.list_calendar_events(args.get("start"), args.get("end"))

    def calendar_create(args: Dict[str, Any]) -> Dict[str, Any]:
        if not args.get("title") or not args.get("start_time"):
            return {"error": "title and start_time are required"}
        return store.create_calendar_event({k: args.get(k) for k in _EVENT_UPDATABLE})

    def calendar_update(args: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: args[k] for k in _EVENT_UPDATABLE if args.get(k) is not None}
        event = store.update_calendar_event(args.get("id", ""), changes)
        if event is None:
            return {"error": f"Event not found: {args.get('id')}"}
        return event

    def calendar_delete(args: Dict[str, Any]) -> Dict[str, Any]:
        event_id = args.get("id", "")
        if not store.delete_calendar_event(event_id):
            return {"error": f"Event not found: {event_id}"}
        return {"success": True, "id": event_id}

    return [
        Tool(
            name="calendar_list",
            description="List calendar events, optionally filtered by date range",
            parameters={
                "type": "object",
                "properties": {
                    "start": {"type": "string", "description": "Start date/time filter (ISO 8601)"},
                    "end": {"type": "string", "description": "End date/time filter (ISO 8601)"},
                },
            },
            execute=calendar_list,
        ),
        Tool(
            name="calendar_create",
            description="Create a new calendar event",
            parameters={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Event title"},
                    "description": {"type": "string", "description": "Event description"},
                    "start_time": {"type": "string", "description": "Start time in ISO 8601 format"},
                    "end_time": {"type": "string", "description": "End time in ISO 8601 format"},
                },
                "required": ["title", "start_time"],
            },
            execute=calendar_create,
        ),
        Tool(
            name="calendar_update",
            description="Update an existing calendar event",
            parameters={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the event to update"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "start_time": {"type": "string"},
                    "end_time": {"type": "string"},
                },
                "required": ["id"],
            },
            execute=calendar_update,
        ),
        Tool(
            name="calendar_delete",
            description="Delete a calendar event",
            parameters={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the event to delete"},
                },
                "required": ["id"],
            },
            execute=calendar_delete,
        ),
    ]
