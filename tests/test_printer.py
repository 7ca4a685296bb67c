import io
from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console

from diychat.__main__ import build_parser, main
from diychat.printer import RichStreamPrinter


async def events(*items):
    for item in items:
        yield item


def quiet_console():
    return Console(file=io.StringIO(), force_terminal=False, width=100)


class TestRichStreamPrinter:
    @pytest.mark.asyncio
    async def test_collects_text_and_final_event(self):
        printer = RichStreamPrinter(output=quiet_console())
        final = await printer.print_stream(events(
            {"type": "chunk", "content": "Hel"},
            {"type": "tool_start", "tool": "get_datetime", "id": "c1"},
            {"type": "tool_done", "tool": "get_datetime", "id": "c1", "result": "2025-01-31T09:30:00.000Z"},
            {"type": "chunk", "content": "lo"},
            {"type": "done", "conversationId": "abc"},
        ))
        assert final == {"type": "done", "conversationId": "abc"}
        assert printer.get_full_text() == "Hello"

    @pytest.mark.asyncio
    async def test_error_event(self):
        console = quiet_console()
        printer = RichStreamPrinter(output=console)
        final = await printer.print_stream(events({"type": "error", "message": "No backend configured"}))
        assert final["type"] == "error"
        assert "No backend configured" in console.file.getvalue()


class TestMain:
    @patch("diychat.__main__.uvicorn.run")
    @patch("diychat.server.create_app")
    def test_serve_runs_uvicorn(self, mock_create_app, mock_run, monkeypatch):
        monkeypatch.setenv("HOST", "0.0.0.0")
        assert main(["serve", "--port", "8123"]) == 0
        mock_run.assert_called_once()
        _, kwargs = mock_run.call_args
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 8123

    @patch("diychat.__main__.run_chat", new_callable=AsyncMock)
    def test_chat_exit_code(self, mock_run_chat):
        mock_run_chat.return_value = 1
        assert main(["chat", "hello"]) == 1
        args, _ = mock_run_chat.call_args
        assert args[0].message == "hello"


class TestParser:
    def test_chat_arguments(self):
        args = build_parser().parse_args(["chat", "hello", "--model", "gpt-4o", "--file", "a.txt", "--file", "b.png"])
        assert args.command == "chat"
        assert args.message == "hello"
        assert args.file == ["a.txt", "b.png"]

    def test_serve_arguments(self):
        args = build_parser().parse_args(["serve", "--port", "8000"])
        assert args.port == 8000
        assert args.host is None
