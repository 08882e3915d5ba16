import json

from protocol.framer import MessageFramer, parse_line


STREAM = (
    b'{"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": {}}\n'
    b"agent v1.2 starting up\n"
    b"\n"
    b'{"jsonrpc": "2.0", "id": 1, "result": {"sessionId": "s-\xc3\xa9"}}\r\n'
    b'{"broken": \n'
    b"   \n"
    b'{"jsonrpc": "2.0", "method": "session/update", "params": {"update": {}}}\n'
    b"[1, 2, 3]\n"
)


def test_feed_whole_stream_yields_only_objects():
    framer = MessageFramer()
    messages = framer.feed(STREAM)

    assert [m.get("method") or m.get("id") for m in messages] == ["initialize", 1, "session/update"]
    assert messages[1]["result"]["sessionId"] == "s-é"
    assert framer.dropped == 3


def test_every_split_point_matches_whole_feed():
    expected = MessageFramer().feed(STREAM)

    for cut in range(len(STREAM) + 1):
        framer = MessageFramer()
        got = framer.feed(STREAM[:cut]) + framer.feed(STREAM[cut:])
        assert got == expected, f"split at byte {cut}"


def test_byte_at_a_time():
    expected = MessageFramer().feed(STREAM)
    framer = MessageFramer()

    got = []
    for i in range(len(STREAM)):
        got.extend(framer.feed(STREAM[i:i + 1]))

    assert got == expected


def test_partial_record_is_retained_until_newline():
    framer = MessageFramer()

    assert framer.feed(b'{"id": 7, "res') == []
    assert framer.pending == b'{"id": 7, "res'
    assert framer.feed(b'ult": true}\n{"id"') == [{"id": 7, "result": True}]
    assert framer.pending == b'{"id"'


def test_flush_parses_unterminated_tail():
    framer = MessageFramer()
    framer.feed(b'{"id": 3, "result": null}')

    assert framer.flush() == [{"id": 3, "result": None}]
    assert framer.pending == b""


def test_blank_lines_are_not_counted_as_dropped():
    framer = MessageFramer()
    assert framer.feed_lines(b"\n  \n\t\n") == []
    assert framer.dropped == 0


def test_newline_inside_string_value_loses_the_message():
    message = json.dumps({"id": 4, "result": {"text": "a"}}).replace('"a"', '"a\nb"')
    framer = MessageFramer()

    assert framer.feed(message.encode() + b"\n") == []
    assert framer.dropped == 2


def test_parse_line():
    assert parse_line('  {"a": 1}  ') == {"a": 1}
    assert parse_line("not json") is None
    assert parse_line('"just a string"') is None
    assert parse_line("{oops}") is None


def test_expected_echo_is_skipped_once():
    reply = b'{"jsonrpc": "2.0", "id": 1, "result": {"protocolVersion": "1.0"}}\n'
    framer = MessageFramer()
    framer.expect_echo(reply)

    # Terminal echo arrives with a carriage return before the newline
    assert framer.feed(reply.replace(b"\n", b"\r\n")) == []
    assert framer.echoed == 1
    assert framer.feed(reply) == [{"jsonrpc": "2.0", "id": 1, "result": {"protocolVersion": "1.0"}}]
    assert framer.dropped == 0


def test_reset_forgets_expected_echoes():
    line = b'{"id": 2, "result": null}\n'
    framer = MessageFramer()
    framer.expect_echo(line)
    framer.reset()

    assert framer.feed(line) == [{"id": 2, "result": None}]


def test_flush_lines_returns_unterminated_text():
    framer = MessageFramer()
    assert framer.feed_lines(b"first half of a war") == []
    assert framer.feed_lines(b"ning\nsecond ") == ["first half of a warning"]
    assert framer.flush_lines() == ["second"]
    assert framer.flush_lines() == []
