import logging

from chat_core.streaming.decoder import StreamDecoder, decode_stream


STREAM = (
    'data: {"event": "message", "answer": "你好", "conversation_id": "conv-1"}\n'
    "\n"
    'data: {"event": "agent_message", "answer": " world"}\n'
    "event: ping\n"
    'data: {"event": "ping"}\n'
    'data: {"event": "message_end", "conversation_id": "conv-1"}\n'
    "data: [DONE]\n"
).encode("utf-8")


def _decode_all(chunks):
    return list(decode_stream(chunks))


def test_decode_basic_events():
    events = _decode_all([STREAM])
    assert [e.kind for e in events] == ["message", "message", "end"]
    assert events[0].answer == "你好"
    assert events[0].conversation_id == "conv-1"
    assert events[1].answer == " world"
    assert events[2].conversation_id == "conv-1"


def test_decode_is_invariant_to_split_points():
    expected = _decode_all([STREAM])
    for size in (1, 2, 3, 5, 7, 16, 64):
        chunks = [STREAM[i : i + size] for i in range(0, len(STREAM), size)]
        assert _decode_all(chunks) == expected
    # 每一个单点切分位置，包括切在多字节字符中间
    for cut in range(1, len(STREAM)):
        assert _decode_all([STREAM[:cut], STREAM[cut:]]) == expected


def test_decode_skips_malformed_frame_with_warning(caplog):
    raw = (
        'data: {"event": "message", "answer": "a"}\n'
        "data: {not json\n"
        'data: {"event": "message", "answer": "b"}\n'
    )
    decoder = StreamDecoder()
    with caplog.at_level(logging.WARNING, logger="chat_core"):
        events = decoder.feed(raw) + decoder.finish()
    assert [e.answer for e in events] == ["a", "b"]
    assert decoder.dropped == 1
    assert any("malformed" in r.getMessage() for r in caplog.records)


def test_decode_residual_buffer_parsed_on_finish():
    decoder = StreamDecoder()
    events = decoder.feed('data: {"event": "message", "answer": "tail"}')
    assert events == []
    events = decoder.finish()
    assert len(events) == 1
    assert events[0].answer == "tail"


def test_decode_incomplete_residual_is_dropped():
    decoder = StreamDecoder()
    decoder.feed('data: {"event": "message", "answer": "ok"}\ndata: {"event": "mess')
    assert decoder.finish() == []
    assert decoder.dropped == 1


def test_decode_handles_crlf_and_error_event():
    raw = b'data: {"event": "message", "answer": "x"}\r\n\r\ndata: {"event": "error", "message": "boom"}\r\n'
    events = _decode_all([raw])
    assert [e.kind for e in events] == ["message", "error"]
    assert events[1].message == "boom"


def test_decode_keeps_empty_answer_message_events():
    events = _decode_all(['data: {"event": "message", "answer": "", "conversation_id": "c9"}\n'])
    assert len(events) == 1
    assert events[0].answer == ""
    assert events[0].conversation_id == "c9"


def test_decode_ignores_non_object_json():
    events = _decode_all(["data: [1, 2]\n", 'data: "text"\n'])
    assert events == []
