import asyncio

import httpx
import pytest

from chat_core.domain.events import StreamEvent
from chat_core.domain.exceptions import AdmissionError, ApiError, NetworkError, TransportError
from chat_core.transport.client import CONNECTION_CLOSED, ChatStreamClient, ChatTurn, StreamEventReader
from chat_core.transport.sse import encode_frame


SSE_HEADERS = {"content-type": "text/event-stream"}
BASE_URL = "http://chat.test/api"


def _client(handler, token=None):
    return ChatStreamClient(base_url=BASE_URL, token=token, transport=httpx.MockTransport(handler))


def _stream_handler(body_factory, captured=None):
    def handler(request):
        if captured is not None:
            captured.append(request)
        return httpx.Response(200, headers=SSE_HEADERS, content=body_factory())

    return handler


async def _read_all(client, turn):
    reader = await client.open_stream(turn)
    events = [e async for e in reader]
    return reader, events


def test_stream_yields_events_in_order():
    async def body():
        yield encode_frame(StreamEvent.chunk("Hel"))
        yield encode_frame(StreamEvent.chunk("lo"))
        yield encode_frame(StreamEvent.complete("Hello", "gpt-4o-mini"))

    captured = []
    client = _client(_stream_handler(body, captured), token="tok-1")
    turn = ChatTurn(message="hi", model="gpt-4o-mini", session_id="s-1", context=[{"role": "user", "content": "x"}])
    reader, events = asyncio.run(_read_all(client, turn))

    assert [e.type for e in events] == ["chunk", "chunk", "complete"]
    assert events[-1].full_response == "Hello"
    assert reader.closed
    request = captured[0]
    assert request.url.path == "/api/chat"
    assert request.headers["authorization"] == "Bearer tok-1"
    assert b'"sessionId"' in request.content


def test_malformed_frame_is_skipped():
    async def body():
        yield encode_frame(StreamEvent.chunk("Hel"))
        yield b"data: {not json\n\n"
        yield encode_frame(StreamEvent.chunk("lo"))
        yield encode_frame(StreamEvent.complete("Hello", "gpt-4o-mini"))

    reader, events = asyncio.run(_read_all(_client(_stream_handler(body)), ChatTurn(message="hi")))
    assert [e.type for e in events] == ["chunk", "chunk", "complete"]
    assert reader.frames_skipped == 1


def test_connection_closed_without_terminal_event_yields_error():
    async def body():
        yield encode_frame(StreamEvent.chunk("partial"))

    _, events = asyncio.run(_read_all(_client(_stream_handler(body)), ChatTurn(message="hi")))
    assert [e.type for e in events] == ["chunk", "error"]
    assert events[-1].error == CONNECTION_CLOSED


def test_read_failure_yields_error_with_reason():
    async def body():
        yield encode_frame(StreamEvent.chunk("partial"))
        raise httpx.ReadError("connection reset")

    reader, events = asyncio.run(_read_all(_client(_stream_handler(body)), ChatTurn(message="hi")))
    assert [e.type for e in events] == ["chunk", "error"]
    assert "connection reset" in events[-1].error
    assert reader.close_reason is not None


def test_nothing_delivered_after_terminal_event():
    async def body():
        yield (
            encode_frame(StreamEvent.complete("done", "gpt-4o-mini"))
            + encode_frame(StreamEvent.chunk("late"))
            + encode_frame(StreamEvent.failure("late error"))
        )

    _, events = asyncio.run(_read_all(_client(_stream_handler(body)), ChatTurn(message="hi")))
    assert [e.type for e in events] == ["complete"]


def test_cancel_wakes_pending_read_and_stops_delivery():
    async def scenario():
        gate = asyncio.Event()

        async def body():
            yield encode_frame(StreamEvent.chunk("partial"))
            await gate.wait()
            yield encode_frame(StreamEvent.complete("never", "gpt-4o-mini"))

        reader = await _client(_stream_handler(body)).open_stream(ChatTurn(message="hi"))
        first = await reader.__anext__()

        async def cancel_later():
            await asyncio.sleep(0.05)
            await reader.cancel()

        canceller = asyncio.create_task(cancel_later())
        rest = [e async for e in reader]
        await canceller
        return first, rest, reader

    first, rest, reader = asyncio.run(scenario())
    assert first.content == "partial"
    assert rest == []
    assert reader.cancelled
    assert reader.closed


def test_cancel_discards_buffered_events():
    async def scenario():
        async def body():
            yield encode_frame(StreamEvent.chunk("a")) + encode_frame(StreamEvent.chunk("b"))

        reader = await _client(_stream_handler(body)).open_stream(ChatTurn(message="hi"))
        first = await reader.__anext__()
        await reader.cancel()
        rest = [e async for e in reader]
        return first, rest

    first, rest = asyncio.run(scenario())
    assert first.content == "a"
    assert rest == []


def test_reader_over_plain_byte_iterator_runs_on_close():
    closed = []

    async def chunks():
        yield encode_frame(StreamEvent.failure("upstream failed"))

    async def on_close():
        closed.append(True)

    async def run():
        async with StreamEventReader(chunks(), on_close=on_close) as reader:
            return [e async for e in reader]

    events = asyncio.run(run())
    assert [e.error for e in events] == ["upstream failed"]
    assert closed == [True]


def test_rate_limited_response_raises_admission_error():
    def handler(request):
        return httpx.Response(429, json={"error": "RATE_LIMITED", "message": "Too many chat requests"})

    with pytest.raises(AdmissionError) as exc:
        asyncio.run(_client(handler).open_stream(ChatTurn(message="hi")))
    assert exc.value.code == "RATE_LIMITED"
    assert exc.value.http_status == 429


def test_bad_request_raises_admission_error_with_server_code():
    def handler(request):
        return httpx.Response(400, json={"error": "INVALID_MODEL", "message": "Invalid model specified: x"})

    with pytest.raises(AdmissionError) as exc:
        asyncio.run(_client(handler).open_stream(ChatTurn(message="hi", model="x")))
    assert exc.value.code == "INVALID_MODEL"


def test_non_event_stream_response_raises_transport_error():
    def handler(request):
        return httpx.Response(200, json={"response": "not a stream"})

    with pytest.raises(TransportError):
        asyncio.run(_client(handler).open_stream(ChatTurn(message="hi")))


def test_connection_failure_raises_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        asyncio.run(_client(handler).open_stream(ChatTurn(message="hi")))


def test_complete_and_models_requests():
    def handler(request):
        if request.url.path.endswith("/chat/models"):
            return httpx.Response(200, json={"models": ["gpt-4o-mini"], "default": "gpt-4o-mini"})
        if request.url.path.endswith("/chat/complete"):
            return httpx.Response(200, json={"response": "ok", "model": "gpt-4o-mini"})
        return httpx.Response(500, json={"error": "INTERNAL", "message": "unexpected"})

    client = _client(handler)
    models = asyncio.run(client.list_models())
    result = asyncio.run(client.complete(ChatTurn(message="hi")))
    assert models["default"] == "gpt-4o-mini"
    assert result["response"] == "ok"

    with pytest.raises(ApiError) as exc:
        asyncio.run(client.run_chain("hi", [{"model": "gpt-4o-mini"}]))
    assert exc.value.http_status == 500
