"""
Rich live display for a chat turn's event stream.
"""
from typing import Dict, Any, AsyncIterator, List, Optional
from rich.console import Console, Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.live import Live
from rich.text import Text

console = Console()

# Longest tool result shown inline; the rest is elided
TOOL_RESULT_PREVIEW = 120


class RichStreamPrinter:
    """
    Renders ``chunk`` / ``tool_start`` / ``tool_done`` / ``done`` / ``error``
    events in a live-updating panel.

    Attributes:
        title: Title for the display panel
        code_theme: Theme for code blocks
        inline_code_theme: Theme for inline code
        refresh_rate: Refresh rate for Live display
        border_style: Border style while streaming
    """

    def __init__(
        self,
        title: str = "Assistant",
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        refresh_rate: int = 30,
        border_style: str = "blue",
        output: Optional[Console] = None,
    ):
        self.title = title
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.refresh_rate = refresh_rate
        self.border_style = border_style
        self.console = output or console
        self._full_text = ""
        self._tool_lines: List[Text] = []
        self._final_event: Optional[Dict[str, Any]] = None

    async def print_stream(self, event_stream: AsyncIterator[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Consume a turn's events and display them.

        Returns:
            The terminal ``done`` or ``error`` event ({} if the stream ended without one).
        """
        self._full_text = ""
        self._tool_lines = []
        self._final_event = None

        with Live(Panel("", border_style=self.border_style), refresh_per_second=self.refresh_rate,
                  console=self.console) as live:
            async for event in event_stream:
                self._process_event(event)
                live.update(self._render())

        return self._final_event or {}

    def _process_event(self, event: Dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "chunk":
            self._full_text += event.get("content", "")
        elif kind == "tool_start":
            self._tool_lines.append(Text(f"⚙ {event.get('tool')} running...", style="yellow"))
        elif kind == "tool_done":
            result = str(event.get("result", ""))
            if len(result) > TOOL_RESULT_PREVIEW:
                result = result[:TOOL_RESULT_PREVIEW] + "..."
            # Replace the matching "running" line
            line = Text(f"✓ {event.get('tool')}: {result}", style="dim")
            for i, existing in enumerate(self._tool_lines):
                if existing.plain == f"⚙ {event.get('tool')} running...":
                    self._tool_lines[i] = line
                    break
            else:
                self._tool_lines.append(line)
        elif kind in ("done", "error"):
            self._final_event = event

    def _render(self) -> Panel:
        is_final = self._final_event is not None
        failed = is_final and self._final_event.get("type") == "error"

        parts: List[Any] = list(self._tool_lines)
        if self._full_text.strip():
            parts.append(Markdown(self._full_text, code_theme=self.code_theme,
                                  inline_code_theme=self.inline_code_theme))
        elif not failed:
            parts.append(Text("(waiting for response...)", style="dim italic"))
        if failed:
            parts.append(Text(f"Error: {self._final_event.get('message', '')}", style="bold red"))

        if failed:
            border = "red"
        elif is_final:
            border = "green"
        else:
            border = self.border_style

        return Panel(Group(*parts), title=f"[bold]{self.title}[/bold]", border_style=border, padding=(1, 2))

    def get_full_text(self) -> str:
        """Get the full assembled text."""
        return self._full_text
