import json

from chat_core.domain.events import StreamEvent
from chat_core.transport.sse import FrameDecoder, encode_frame


def test_encode_frame_shape():
    frame = encode_frame(StreamEvent.chunk("你好"))
    assert frame.startswith(b"data: ")
    assert frame.endswith(b"\n\n")
    body = json.loads(frame[len(b"data: "):-2].decode("utf-8"))
    assert body["type"] == "chunk"
    assert body["content"] == "你好"
    assert body["timestamp"].endswith("Z")


def test_complete_payload_uses_camel_case():
    payload = StreamEvent.complete("Hello", "gpt-4o-mini").to_payload()
    assert payload["fullResponse"] == "Hello"
    assert payload["model"] == "gpt-4o-mini"
    assert "content" not in payload


def test_decoder_reassembles_frames_split_across_reads():
    raw = (
        encode_frame(StreamEvent.chunk("你"))
        + encode_frame(StreamEvent.chunk("好"))
        + encode_frame(StreamEvent.complete("你好", "gpt-4o-mini"))
    )
    decoder = FrameDecoder()
    events = []
    # 7 字节切分会把多字节字符和帧边界都切开
    for i in range(0, len(raw), 7):
        events.extend(decoder.feed(raw[i:i + 7]))
    events.extend(decoder.flush())

    assert [e.type for e in events] == ["chunk", "chunk", "complete"]
    assert "".join(e.content for e in events[:2]) == "你好"
    assert events[-1].full_response == "你好"
    assert decoder.frames_skipped == 0


def test_decoder_skips_malformed_frames():
    raw = (
        encode_frame(StreamEvent.chunk("Hel"))
        + b"data: {broken\n\n"
        + b'data: {"type": "mystery"}\n\n'
        + encode_frame(StreamEvent.chunk("lo"))
    )
    decoder = FrameDecoder()
    events = decoder.feed(raw)
    assert [e.content for e in events] == ["Hel", "lo"]
    assert decoder.frames_skipped == 2
    assert decoder.frames_seen == 4


def test_decoder_ignores_comments_and_done_marker():
    decoder = FrameDecoder()
    events = decoder.feed(b": keep-alive\n\ndata: [DONE]\n\n" + encode_frame(StreamEvent.failure("boom")))
    assert len(events) == 1
    assert events[0].type == "error"
    assert events[0].error == "boom"


def test_flush_parses_trailing_record_without_separator():
    decoder = FrameDecoder()
    assert decoder.feed(b'data: {"type": "chunk", "content": "x"}') == []
    events = decoder.flush()
    assert len(events) == 1
    assert events[0].content == "x"


def test_reset_drops_partial_frame_but_keeps_counters():
    decoder = FrameDecoder()
    decoder.feed(b"data: {broken\n\n")
    decoder.feed(b'data: {"type": "chu')
    decoder.reset()
    assert decoder.flush() == []
    assert decoder.frames_skipped == 1
