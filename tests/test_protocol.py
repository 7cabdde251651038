"""End-to-end tests for the line-delimited JSON protocol engine."""

import io
import json
import queue
import threading
from collections.abc import Iterator

import pytest

from nubridge import catalog
from nubridge.host import BridgeHost
from nubridge.protocol import ProtocolEngine
from nubridge.settings import BridgeSettings
from nubridge.values import WireValue
from nubridge.values import encode_wire

LIBRARY: str = "tests.fixtures.sample_library"
RESPONSE_TIMEOUT_SECONDS: float = 10.0


class LineQueueReader:
    """Blocking text reader fed one line at a time by the test."""

    _lines: queue.Queue

    def __init__(self) -> None:
        self._lines = queue.Queue()

    def push(self, message: object) -> None:
        self._lines.put(json.dumps(message) + "\n")

    def push_raw(self, line: str) -> None:
        self._lines.put(line + "\n")

    def close(self) -> None:
        self._lines.put("")

    def readline(self) -> str:
        return self._lines.get(timeout=RESPONSE_TIMEOUT_SECONDS)


def _reject_constant(token: str) -> object:
    raise ValueError(f"Not valid JSON: {token}")


class LineQueueWriter:
    """Text writer that decodes every complete line it receives."""

    _messages: queue.Queue
    _buffer: str

    def __init__(self) -> None:
        self._messages = queue.Queue()
        self._buffer = ""

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, _, self._buffer = self._buffer.partition("\n")
            self._messages.put(json.loads(line, parse_constant=_reject_constant))
        return len(text)

    def flush(self) -> None:
        return None

    def next_message(self) -> object:
        return self._messages.get(timeout=RESPONSE_TIMEOUT_SECONDS)

    def is_idle(self) -> bool:
        return self._messages.empty()


class LiveSession:
    """Engine serving on a background thread, driven message by message."""

    host: BridgeHost
    reader: LineQueueReader
    writer: LineQueueWriter
    thread: threading.Thread
    handshake: object
    _next_id: int

    def __init__(self) -> None:
        self.host = BridgeHost(BridgeSettings(preload_modules=[LIBRARY]))
        self.reader = LineQueueReader()
        self.writer = LineQueueWriter()
        engine: ProtocolEngine = ProtocolEngine(self.host, self.reader, self.writer)
        self.thread = threading.Thread(target=engine.run, daemon=True)
        self.thread.start()
        self.handshake = self.writer.next_message()
        self._next_id = 1

    def call(self, body: object) -> object:
        """Send one Call and return the response body.

        :param body: Call body.
        :returns: Body of the matching CallResponse.
        """
        call_id: int = self._next_id
        self._next_id += 1
        self.reader.push({"Call": [call_id, body]})
        response: object = self.writer.next_message()
        assert response["CallResponse"][0] == call_id
        return response["CallResponse"][1]

    def run(
        self,
        name: str,
        positional: list[WireValue] | None = None,
        named: object = None,
        input: WireValue | None = None,
    ) -> object:
        """Send a Run call.

        :param name: Command name.
        :param positional: Positional arguments.
        :param named: Named arguments in wire form.
        :param input: Pipeline input value.
        :returns: Encoded result.
        """
        encoded_input: object = "Empty" if input is None else {"Value": [encode_wire(input), None]}
        payload: dict[str, object] = {
            "name": name,
            "call": {
                "positional": [encode_wire(item) for item in positional or []],
                "named": named if named is not None else [],
            },
            "input": encoded_input,
        }
        return self.call({"Run": payload})

    def finish(self) -> None:
        self.reader.push("Goodbye")
        self.thread.join(RESPONSE_TIMEOUT_SECONDS)
        self.host.close()


def _custom(encoded: object) -> WireValue:
    reference: dict[str, str] = encoded["Custom"]["val"]
    return WireValue.of_custom(reference["object_id"], reference["type_name"])


@pytest.fixture()
def live() -> Iterator[LiveSession]:
    session: LiveSession = LiveSession()
    yield session
    session.finish()


def test_handshake_is_sent_first(live: LiveSession) -> None:
    assert live.handshake == {"Handshake": {"protocol": "nu-plugin", "version": "0.105.2", "features": []}}


def test_signature_and_metadata(live: LiveSession) -> None:
    signature: object = live.call("Signature")
    names: list[str] = [entry["sig"]["name"] for entry in signature["Signature"]]
    assert names == catalog.command_names()
    assert live.call("Metadata") == {"Metadata": {"version": "0.1.0"}}


def test_counter_scenario(live: LiveSession) -> None:
    """Create a counter, increment it twice and read the result."""
    created: object = live.run(catalog.CMD_NEW, [WireValue.of_string("Counter")])
    counter: WireValue = _custom(created)
    assert counter.payload.type_name == f"{LIBRARY}.Counter"

    live.run(catalog.CMD_CALL, [WireValue.of_string("Increment")], input=counter)
    second: object = live.run(catalog.CMD_CALL, [WireValue.of_string("Increment")], input=counter)
    assert second["Int"]["val"] == 2


def test_static_overload_scenario(live: LiveSession) -> None:
    result: object = live.run(
        catalog.CMD_CALL,
        [WireValue.of_string("Max"), WireValue.of_int(10), WireValue.of_int(20)],
        input=WireValue.of_string("MathLib"),
    )
    assert result["Int"]["val"] == 20


def test_unknown_type_scenario(live: LiveSession) -> None:
    result: object = live.run(catalog.CMD_NEW, [WireValue.of_string("Unknown.Type")])
    assert "not found" in result["Error"]["msg"]


def test_named_arguments_as_pairs_and_switches(live: LiveSession) -> None:
    created: object = live.run(
        catalog.CMD_NEW,
        [WireValue.of_string("Counter")],
        named=[["args", encode_wire(WireValue.of_list([WireValue.of_int(5)]))]],
    )
    counter: WireValue = _custom(created)
    value: object = live.run(catalog.CMD_GET, [WireValue.of_string("value")], input=counter)
    assert value["Int"]["val"] == 5

    members: object = live.run(
        catalog.CMD_MEMBERS,
        [WireValue.of_string("MathLib")],
        named={"static": None},
    )
    rows: list[dict[str, object]] = members["List"]["vals"]
    assert all(row["Record"]["val"]["is_static"]["Bool"]["val"] is True for row in rows) is True


def test_invalid_json_line_does_not_end_session(live: LiveSession) -> None:
    live.reader.push_raw("this is not json")
    error: object = live.writer.next_message()
    assert error["CallResponse"][0] == 0
    assert error["CallResponse"][1]["Error"]["msg"].startswith("JSON parsing error:")

    assert live.call("Metadata") == {"Metadata": {"version": "0.1.0"}}


def test_unknown_message_is_rejected(live: LiveSession) -> None:
    live.reader.push({"Bogus": 1})
    error: object = live.writer.next_message()
    assert error == {"CallResponse": [0, {"Error": {"msg": "Unknown message format"}}]}


def test_malformed_call_gets_an_error_response(live: LiveSession) -> None:
    live.reader.push({"Call": "not a pair"})
    error: object = live.writer.next_message()
    assert error["CallResponse"][0] == 0
    assert error["CallResponse"][1]["Error"]["msg"] == "Call must be a [id, body] array"

    bad_run: object = live.call({"Run": {"call": {}}})
    assert bad_run["Error"]["msg"] == "name must be a string"


def test_greetings_and_signals_are_silent(live: LiveSession) -> None:
    live.reader.push({"Hello": {"protocol": "nu-plugin", "version": "0.105.2", "features": []}})
    live.reader.push({"Signal": "Interrupt"})
    assert live.call("Metadata") == {"Metadata": {"version": "0.1.0"}}
    assert live.host.interrupted is True

    live.reader.push({"Signal": "Reset"})
    live.reader.push({"Signal": "Whatever"})
    assert live.call("Metadata") == {"Metadata": {"version": "0.1.0"}}
    assert live.host.interrupted is False
    assert live.writer.is_idle() is True


def test_goodbye_ends_the_session() -> None:
    session: LiveSession = LiveSession()
    try:
        session.reader.push("Goodbye")
        session.thread.join(RESPONSE_TIMEOUT_SECONDS)
        assert session.thread.is_alive() is False
        assert session.writer.is_idle() is True
    finally:
        session.host.close()


def test_end_of_input_ends_the_session() -> None:
    reader: io.StringIO = io.StringIO('{"Call": [4, "Metadata"]}\n\n')
    writer: io.StringIO = io.StringIO()
    with BridgeHost(BridgeSettings()) as host:
        ProtocolEngine(host, reader, writer).run()

    lines: list[object] = [json.loads(line) for line in writer.getvalue().splitlines()]
    assert len(lines) == 2
    assert lines[1] == {"CallResponse": [4, {"Metadata": {"version": "0.1.0"}}]}


def test_pipeline_data_wrapping() -> None:
    run: dict[str, object] = {
        "name": catalog.CMD_OBJ,
        "call": {"positional": [], "named": []},
        "input": {"Value": encode_wire(WireValue.of_int(3))},
    }
    reader: io.StringIO = io.StringIO(json.dumps({"Call": [1, {"Run": run}]}) + "\n")
    writer: io.StringIO = io.StringIO()
    with BridgeHost(BridgeSettings(wrap_pipeline_data=True)) as host:
        ProtocolEngine(host, reader, writer, wrap_pipeline_data=True).run()

    response: object = json.loads(writer.getvalue().splitlines()[1])
    assert response == {
        "CallResponse": [1, {"PipelineData": ["Value", [encode_wire(WireValue.of_int(3)), None]]}]
    }


def test_deeply_nested_line_does_not_end_session(live: LiveSession) -> None:
    live.reader.push_raw("[" * 100000)
    error: object = live.writer.next_message()
    assert error["CallResponse"][0] == 0
    assert error["CallResponse"][1]["Error"]["msg"].startswith("JSON parsing error:")

    assert live.call("Metadata") == {"Metadata": {"version": "0.1.0"}}


def test_non_finite_float_results_stay_valid_json(live: LiveSession) -> None:
    """The writer rejects ``Infinity`` and ``NaN`` tokens, so the response must use text."""
    result: object = live.run(catalog.CMD_GET, [WireValue.of_string("inf")], input=WireValue.of_string("math"))
    assert result["String"]["val"] == "inf"


class FlakyDecodingReader(io.StringIO):
    """Reader whose first line cannot be decoded."""

    _failed: bool

    def __init__(self, text: str) -> None:
        super().__init__(text)
        self._failed = False

    def readline(self, size: int = -1) -> str:
        if self._failed is False:
            self._failed = True
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
        return super().readline(size)


def test_undecodable_line_is_answered_at_id_zero() -> None:
    reader: FlakyDecodingReader = FlakyDecodingReader('{"Call": [7, "Metadata"]}\n')
    writer: io.StringIO = io.StringIO()
    with BridgeHost(BridgeSettings()) as host:
        ProtocolEngine(host, reader, writer).run()

    lines: list[object] = [json.loads(line) for line in writer.getvalue().splitlines()]
    assert lines[1]["CallResponse"][0] == 0
    assert "invalid start byte" in lines[1]["CallResponse"][1]["Error"]["msg"]
    assert lines[2] == {"CallResponse": [7, {"Metadata": {"version": "0.1.0"}}]}
