"""
tests/conftest.py — Shared fakes for the relay tests.

FakeModelClient stands in for Ollama so no test needs a running model.
It records every message list it is sent, which lets tests assert on the
exact prompt (truncation, summary placement, history order).
"""
import pytest

from relay.config import Settings
from relay.errors import UpstreamModelError
from relay.llm.client import ModelClient, ModelStream
from relay.main import create_app
from relay.session.store import InMemorySessionStore


class FakeStream(ModelStream):

    def __init__(self, parts: list, fail_after: int | None = None) -> None:
        self._parts = parts
        self._fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        for i, part in enumerate(self._parts):
            if self._fail_after is not None and i == self._fail_after:
                raise UpstreamModelError("connection reset by upstream")
            yield part
        if self._fail_after is not None and self._fail_after >= len(self._parts):
            raise UpstreamModelError("connection reset by upstream")

    async def aclose(self) -> None:
        self.closed = True


class FakeModelClient(ModelClient):

    def __init__(
        self,
        reply: str = "Hello there!",
        summary: str = "- summary",
        stream_parts: list | None = None,
        fail_complete: bool = False,
        fail_summary: bool = False,
        fail_open: bool = False,
        stream_fail_after: int | None = None,
    ) -> None:
        self.reply = reply
        self.summary = summary
        self.stream_parts = stream_parts if stream_parts is not None else []
        self.fail_complete = fail_complete
        self.fail_summary = fail_summary
        self.fail_open = fail_open
        self.stream_fail_after = stream_fail_after
        self.complete_calls: list[list[dict]] = []
        self.stream_calls: list[list[dict]] = []

    @staticmethod
    def _is_summary_request(messages: list[dict]) -> bool:
        return messages[0]["content"].startswith("Summarize the dialogue")

    async def complete(self, messages, model=None):
        self.complete_calls.append(messages)
        if self._is_summary_request(messages):
            if self.fail_summary:
                raise UpstreamModelError("summary model down")
            return {"response": self.summary}
        if self.fail_complete:
            raise UpstreamModelError("model down")
        return {"message": {"role": "assistant", "content": self.reply}, "done": True}

    async def open_stream(self, messages, model=None):
        self.stream_calls.append(messages)
        if self.fail_open:
            raise UpstreamModelError("Model stream unavailable: HTTP 503")
        return FakeStream(self.stream_parts, fail_after=self.stream_fail_after)

    def chat_calls(self) -> list[list[dict]]:
        return [m for m in self.complete_calls if not self._is_summary_request(m)]

    def summary_calls(self) -> list[list[dict]]:
        return [m for m in self.complete_calls if self._is_summary_request(m)]


@pytest.fixture
def settings() -> Settings:
    return Settings(session_store_dir=None, compact_on_stream=False)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def fake_client() -> FakeModelClient:
    return FakeModelClient(
        stream_parts=[
            {"message": {"content": "Hel"}, "done": False},
            {"message": {"content": "lo, "}, "done": False},
            {"message": {"content": "world"}, "done": False},
            {"message": {"content": ""}, "done": True},
        ]
    )


@pytest.fixture
def make_app(settings, store):
    """Build an app around a given fake client (defaults to the fixture settings/store)."""
    def _make(client: ModelClient, **overrides):
        app_settings = settings.model_copy(update=overrides) if overrides else settings
        return create_app(settings=app_settings, model_client=client, store=store)
    return _make
