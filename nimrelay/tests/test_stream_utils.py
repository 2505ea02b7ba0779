import json

from nimrelay.adapters.openai_compat.stream_utils import (
    SSELineDecoder,
    StreamReshaper,
    _extract_sse_data_payload,
    _stream_done_sse_chunk,
    _stream_error_sse_chunk,
)
from nimrelay.config.feature_flags import RelayOptions


def _delta_line(**delta) -> str:
    return "data: " + json.dumps({"id": "c1", "choices": [{"index": 0, "delta": delta}]})


def _frame_delta(frame: bytes) -> dict:
    text = frame.decode("utf-8")
    assert text.startswith("data: ")
    assert text.endswith("\n\n")
    return json.loads(text[len("data: "):])["choices"][0]["delta"]


def test_decoder_keeps_partial_line_until_terminated():
    decoder = SSELineDecoder()
    assert decoder.feed(b'data: {"a":') == []
    assert decoder.pending is True
    assert decoder.feed(b' 1}\n\ndata: [DO') == ['data: {"a": 1}', ""]
    assert decoder.feed(b"NE]\n") == ["data: [DONE]"]
    assert decoder.pending is False


def test_decoder_strips_carriage_return():
    decoder = SSELineDecoder()
    assert decoder.feed(b"data: x\r\n\r\n") == ["data: x", ""]


def test_decoder_never_splits_multibyte_character():
    decoder = SSELineDecoder()
    encoded = "data: 你好\n".encode("utf-8")
    # 在“你”的 3 字节中间切开
    first, second = encoded[:7], encoded[7:]
    assert decoder.feed(first) == []
    assert decoder.feed(second) == ["data: 你好"]


def test_decoder_flush_returns_unterminated_tail_once():
    decoder = SSELineDecoder()
    decoder.feed(b"data: [DONE]")
    assert decoder.flush() == ["data: [DONE]"]
    assert decoder.flush() == []


def test_extract_sse_data_payload():
    assert _extract_sse_data_payload("data: [DONE]") == "[DONE]"
    assert _extract_sse_data_payload('data:{"x":1}') == '{"x":1}'
    assert _extract_sse_data_payload("event: message") is None
    assert _extract_sse_data_payload("") is None


def test_reshaper_reasoning_then_content_sequence():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    outputs = [
        reshaper.feed(_delta_line(reasoning_content="a")),
        reshaper.feed(_delta_line(reasoning_content="b")),
        reshaper.feed(_delta_line(content="c")),
        reshaper.feed("data: [DONE]"),
    ]

    assert [_frame_delta(frame)["content"] for frame in outputs[:3]] == ["<think>\na", "b", "</think>\n\nc"]
    assert outputs[3] == b"data: [DONE]\n\n"
    assert reshaper.reasoning_open is False


def test_reshaper_strips_reasoning_field_when_folded():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    delta = _frame_delta(reshaper.feed(_delta_line(reasoning_content="think", role="assistant")))
    assert "reasoning_content" not in delta
    assert delta["role"] == "assistant"


def test_reshaper_same_delta_reasoning_and_content_emits_both():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    delta = _frame_delta(reshaper.feed(_delta_line(reasoning_content="R", content="C")))
    assert delta["content"] == "<think>\nR</think>\n\nC"
    assert reshaper.reasoning_open is False


def test_reshaper_same_delta_with_section_already_open():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    reshaper.feed(_delta_line(reasoning_content="R1"))
    delta = _frame_delta(reshaper.feed(_delta_line(reasoning_content="R2", content="C")))
    assert delta["content"] == "R2</think>\n\nC"


def test_reshaper_content_without_reasoning_is_untouched():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    delta = _frame_delta(reshaper.feed(_delta_line(content="plain")))
    assert delta["content"] == "plain"
    assert "<think>" not in delta["content"]


def test_reshaper_empty_delta_leaves_content_absent_when_showing_reasoning():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    delta = _frame_delta(reshaper.feed(_delta_line(reasoning_content="")))
    assert "content" not in delta
    assert "reasoning_content" not in delta


def test_reshaper_hidden_reasoning_sets_empty_content():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=False))
    hidden = _frame_delta(reshaper.feed(_delta_line(reasoning_content="secret")))
    shown = _frame_delta(reshaper.feed(_delta_line(content="answer", reasoning_content="more")))

    assert hidden == {"content": ""}
    assert shown == {"content": "answer"}
    assert reshaper.reasoning_open is False


def test_reshaper_accepts_reasoning_key_alias():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    delta = _frame_delta(reshaper.feed(_delta_line(reasoning="alias")))
    assert delta["content"] == "<think>\nalias"
    assert "reasoning" not in delta


def test_reshaper_forwards_malformed_payload_verbatim():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    assert reshaper.feed("data: {not json") == b"data: {not json\n\n"
    assert reshaper.feed("data: [1, 2]") == b"data: [1, 2]\n\n"


def test_reshaper_drops_non_data_lines():
    reshaper = StreamReshaper(RelayOptions())
    assert reshaper.feed("") is None
    assert reshaper.feed(": keep-alive") is None
    assert reshaper.feed("event: message") is None


def test_reshaper_passes_event_without_delta_unchanged():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    line = "data: " + json.dumps({"id": "c1", "choices": [], "usage": {"total_tokens": 3}})
    frame = reshaper.feed(line)
    assert json.loads(frame.decode("utf-8")[len("data: "):]) == {"id": "c1", "choices": [], "usage": {"total_tokens": 3}}


def test_reshaper_instances_do_not_share_state():
    first = StreamReshaper(RelayOptions(show_reasoning=True))
    second = StreamReshaper(RelayOptions(show_reasoning=True))
    first.feed(_delta_line(reasoning_content="a"))
    delta = _frame_delta(second.feed(_delta_line(reasoning_content="b")))
    assert first.reasoning_open is True
    assert delta["content"] == "<think>\nb"


def test_stream_error_sse_chunk_uses_error_envelope():
    payload = _stream_error_sse_chunk("upstream_unreachable: dns", code=500).decode("utf-8")
    body = json.loads(payload[len("data: "):])
    assert body["error"] == {"message": "upstream_unreachable: dns", "type": "invalid_request_error", "code": 500}
    assert _stream_done_sse_chunk() == b"data: [DONE]\n\n"


def test_reshaper_forwards_deeply_nested_payload_verbatim():
    reshaper = StreamReshaper(RelayOptions(show_reasoning=True))
    line = "data: " + "[" * 200000 + "]" * 200000

    assert reshaper.feed(line) == (line + "\n\n").encode("utf-8")
    assert reshaper.reasoning_open is False
