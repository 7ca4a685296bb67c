import copy
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from diychat.crypto import KeyCipher
from diychat.providers.base import BaseLLMProvider
from diychat.store import Store
from diychat.tools import BUILTIN_TOOL_NAMES


@pytest.fixture
def store():
    """In-memory store with the Default project seeded."""
    s = Store(":memory:", tool_names=BUILTIN_TOOL_NAMES)
    yield s
    s.close()


@pytest.fixture
def cipher():
    return KeyCipher("test-secret")


@pytest.fixture
def sse():
    """Build a text/event-stream body from JSON payloads (str payloads are sent raw)."""
    def _build(*payloads: Any, event_names: Optional[List[str]] = None) -> bytes:
        lines = []
        for i, payload in enumerate(payloads):
            if event_names:
                lines.append(f"event: {event_names[i]}")
            data = payload if isinstance(payload, str) else json.dumps(payload)
            lines.append(f"data: {data}")
            lines.append("")
        return ("\n".join(lines) + "\n").encode("utf-8")
    return _build


@pytest.fixture
def mock_http():
    """
    Returns (client, requests): an httpx.AsyncClient answering every request
    with ``handler(request)``, and the list of requests it received.
    """
    def _make(handler: Callable[[httpx.Request], httpx.Response]):
        requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_record)), requests
    return _make


class StubProvider(BaseLLMProvider):
    """
    Provider that replays scripted event lists, one list per ``stream`` call.

    When the script runs out the last entry is repeated. Every call's
    arguments are recorded (messages deep-copied).
    """

    provider_name = "stub"

    def __init__(self, script: List[List[Dict[str, Any]]]):
        super().__init__(api_key="stub", base_url="http://stub")
        self.script = script
        self.calls: List[Dict[str, Any]] = []
        self.closed = False
        self.streams_closed = 0

    async def stream(self, model, messages, *, system_prompt="", tools=None):
        self.calls.append({
            "model": model,
            "messages": copy.deepcopy(messages),
            "system_prompt": system_prompt,
            "tools": tools,
        })
        events = self.script[min(len(self.calls) - 1, len(self.script) - 1)]
        try:
            for event in events:
                yield event
        finally:
            self.streams_closed += 1

    async def aclose(self):
        self.closed = True


def text_reply(*chunks: str) -> List[Dict[str, Any]]:
    text = "".join(chunks)
    events = [{"type": "token", "text": c} for c in chunks]
    events.append({"type": "done", "finish_reason": "stop", "tool_calls": [], "text": text})
    return events


def tool_reply(*calls: Dict[str, str], text: str = "") -> List[Dict[str, Any]]:
    events = [{"type": "token", "text": text}] if text else []
    events.append({"type": "done", "finish_reason": "tool_calls", "tool_calls": list(calls), "text": text})
    return events


@pytest.fixture
def stub_provider():
    """
    Returns (factory, holder): pass ``factory`` as ``provider_factory``;
    ``holder["provider"]`` is the StubProvider built for the last turn and
    ``holder["backends"]`` every backend a provider was built for.
    """
    def _make(script: List[List[Dict[str, Any]]]):
        holder: Dict[str, Any] = {"provider": None, "backends": []}

        def factory(backend, cipher):
            holder["provider"] = StubProvider(script)
            holder["backends"].append(backend)
            return holder["provider"]

        return factory, holder
    return _make


@pytest.fixture
def replies():
    """Helpers building scripted provider replies."""
    return {"text": text_reply, "tools": tool_reply}
