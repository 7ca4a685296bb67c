from typing import Any, Dict, List

from .registry import Tool

_TODO_UPDATABLE = ("title", "description", "done")


def todo_tools(store) -> List[Tool]:
    """Todo CRUD tools over ``store``; results are JSON strings."""

    def todo_list(_args: Dict[str, Any]) -> List[Dict[str, Any]]:
        return store.list_todos()

    def todo_create(args: Dict[str, Any]) -> Dict[str, Any]:
        if not args.get("title"):
            return {"error": "title is required"}
        return store.create_todo({"title": args["title"], "description": args.get("description")})

    def todo_update(args: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: args[k] for k in _TODO_UPDATABLE if args.get(k) is not None}
        todo = store.update_todo(args.get("id", ""), changes)
        if todo is None:
            return {"error": f"Todo not found: {args.get('id')}"}
        return todo

    def todo_delete(args: Dict[str, Any]) -> Dict[str, Any]:
        todo_id = args.get("id", "")
        if not store.delete_todo(todo_id):
            return {"error": f"Todo not found: {todo_id}"}
        return {"success": True, "id": todo_id}

    return [
        Tool(
            name="todo_list",
            description="List all todo items",
            parameters={"type": "object", "properties": {}},
            execute=todo_list,
        ),
        Tool(
            name="todo_create",
            description="Create a new todo item",
            parameters={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Title of the todo"},
                    "description": {"type": "string", "description": "Optional description"},
                },
                "required": ["title"],
            },
            execute=todo_create,
        ),
        Tool(
            name="todo_update",
            description="Update an existing todo item",
            parameters={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the todo to update"},
                    "title": {"type": "string", "description": "New title"},
                    "description": {"type": "string", "description": "New description"},
                    "done": {"type": "boolean", "description": "Mark as done or not done"},
                },
                "required": ["id"],
            },
            execute=todo_update,
        ),
        Tool(
            name="todo_delete",
            description="Delete a todo item",
            parameters={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the todo to delete"},
                },
                "required": ["id"],
            },
            execute=todo_delete,
        ),
    ]
