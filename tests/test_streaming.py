"""
tests/test_streaming.py — Stream splitting and tolerant parsing.

The splitter must hand every fragment to both the client and the
accumulator exactly once, keep accumulating when nobody reads the client
side, and still end both sides cleanly when the upstream fails.
"""
import asyncio

from relay.llm.client import DELTA_FIELDS, REPLY_FIELDS, STREAM_DONE, extract_text, parse_stream_line
from relay.llm.streaming import StreamSplitter

from conftest import FakeStream

HELLO_PARTS = [
    {"message": {"content": "Hel"}},
    {"message": {"content": "lo, "}},
    {"message": {"content": "world"}},
    {"message": {"content": ""}, "done": True},
]


async def drain(chunks) -> str:
    return "".join([piece async for piece in chunks])


class TestStreamSplitter:

    def test_both_sides_get_full_text(self):
        async def scenario():
            splitter = StreamSplitter(FakeStream(HELLO_PARTS))
            pump = asyncio.create_task(splitter.pump())
            client_text, stored_text = await asyncio.gather(
                drain(splitter.client_chunks()), splitter.accumulate()
            )
            await pump
            return client_text, stored_text, splitter

        client_text, stored_text, splitter = asyncio.run(scenario())
        assert client_text == "Hello, world"
        assert stored_text == "Hello, world"
        assert splitter.fragments == 3
        assert splitter.error is None

    def test_accumulates_without_a_client_reader(self):
        async def scenario():
            splitter = StreamSplitter(FakeStream(HELLO_PARTS))
            asyncio.create_task(splitter.pump())
            return await asyncio.wait_for(splitter.accumulate(), timeout=1.0)

        assert asyncio.run(scenario()) == "Hello, world"

    def test_client_sees_fragments_in_order(self):
        async def scenario():
            splitter = StreamSplitter(FakeStream(HELLO_PARTS))
            asyncio.create_task(splitter.pump())
            return [piece async for piece in splitter.client_chunks()]

        assert asyncio.run(scenario()) == ["Hel", "lo, ", "world"]

    def test_parts_without_text_are_dropped(self):
        parts = [{"message": {"content": "a"}}, {"unexpected": 1}, {"response": "b"}, {"delta": None}]

        async def scenario():
            splitter = StreamSplitter(FakeStream(parts))
            asyncio.create_task(splitter.pump())
            return await splitter.accumulate()

        assert asyncio.run(scenario()) == "ab"

    def test_upstream_error_ends_both_sides_with_partial_text(self):
        async def scenario():
            splitter = StreamSplitter(FakeStream(HELLO_PARTS, fail_after=2))
            asyncio.create_task(splitter.pump())
            client_text, stored_text = await asyncio.gather(
                drain(splitter.client_chunks()), splitter.accumulate()
            )
            return client_text, stored_text, splitter

        client_text, stored_text, splitter = asyncio.run(scenario())
        assert client_text == "Hello, "
        assert stored_text == "Hello, "
        assert splitter.error is not None

    def test_upstream_is_closed_after_pump(self):
        upstream = FakeStream(HELLO_PARTS, fail_after=1)
        asyncio.run(StreamSplitter(upstream).pump())
        assert upstream.closed


class TestExtractText:

    def test_ollama_shape(self):
        assert extract_text({"message": {"role": "assistant", "content": "hi"}}) == "hi"

    def test_first_present_wins(self):
        payload = {"response": "from response", "text": "from text"}
        assert extract_text(payload, REPLY_FIELDS) == "from response"

    def test_falls_through_missing_fields(self):
        assert extract_text({"output_text": "x"}) == "x"
        assert extract_text({"result": "y"}) == "y"

    def test_empty_candidate_is_skipped(self):
        assert extract_text({"response": "", "text": "t"}) == "t"

    def test_delta_fields(self):
        assert extract_text({"delta": "d"}, DELTA_FIELDS) == "d"

    def test_nothing_matches(self):
        assert extract_text({"foo": "bar"}) == ""
        assert extract_text("not a dict") == ""

    def test_non_string_is_stringified(self):
        assert extract_text({"result": 42}) == "42"


class TestParseStreamLine:

    def test_ndjson(self):
        assert parse_stream_line('{"response": "x"}') == {"response": "x"}

    def test_sse_data_prefix(self):
        assert parse_stream_line('data: {"response": "x"}') == {"response": "x"}

    def test_done_sentinel(self):
        assert parse_stream_line("data: [DONE]") is STREAM_DONE

    def test_blank_and_garbage_are_dropped(self):
        assert parse_stream_line("") is None
        assert parse_stream_line("   ") is None
        assert parse_stream_line("{truncated") is None
        assert parse_stream_line("[1, 2]") is None
