from unittest.mock import MagicMock

import pytest
import requests

from ntfy_sync.config import ServerConfig
from ntfy_sync.errors import TransportError
from ntfy_sync.transport import HTTPMessageTransport, parse_message_line


def make_response(status_code=200, text=""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.text = text
    if status_code >= 400:
        error = requests.HTTPError(f"{status_code} Error")
        error.response = response
        response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    session.auth = None
    return session


class TestParseMessageLine:
    def test_message_event(self) -> None:
        message = parse_message_line(
            '{"id":"abc","time":1700000000,"event":"message","topic":"alerts",'
            '"message":"hi","title":"T","priority":4,"tags":["dog"],"click":"https://x"}'
        )
        assert message.id == "abc"
        assert message.time == 1700000000
        assert message.topic == "alerts"
        assert message.message == "hi"
        assert message.title == "T"
        assert message.priority == 4
        assert message.tags == ("dog",)
        assert message.click == "https://x"

    def test_other_events_are_skipped(self) -> None:
        assert parse_message_line('{"id":"x","time":1,"event":"open","topic":"alerts"}') is None
        assert parse_message_line('{"id":"x","time":1,"event":"keepalive","topic":"alerts"}') is None

    def test_invalid_json(self) -> None:
        with pytest.raises(TransportError):
            parse_message_line("{not json")

    @pytest.mark.parametrize("line", [
        '{"id":"m1","event":"message","time":5,"priority":"high"}',
        '{"id":"m1","event":"message","time":"5"}',
        '{"id":"m1","event":"message","time":true}',
        '{"id":"m1","event":"message","time":5,"tags":"dog"}',
        '{"id":"m1","event":"message","time":5,"tags":["dog",3]}',
        '{"id":7,"event":"message","time":5}',
        '{"id":"m1","event":"message","time":5,"message":{"text":"hi"}}',
    ])
    def test_wrongly_typed_fields(self, line) -> None:
        with pytest.raises(TransportError):
            parse_message_line(line)

    def test_missing_optional_fields(self) -> None:
        message = parse_message_line('{"event":"message","topic":"alerts","tags":null}')
        assert message.id is None
        assert message.time is None
        assert message.priority is None
        assert message.tags == ()
        assert message.message == ""

    def test_fetch_with_bad_line_fails_whole_fetch(self, session) -> None:
        session.request.return_value = make_response(text=(
            '{"id":"a","time":1,"event":"message","topic":"alerts"}\n'
            '{"id":"b","time":"2","event":"message","topic":"alerts"}\n'
        ))
        transport = HTTPMessageTransport(ServerConfig(), session=session)
        with pytest.raises(TransportError):
            transport.fetch("https://ntfy.sh", "alerts")


class TestHTTPMessageTransport:
    def test_fetch(self, session) -> None:
        session.request.return_value = make_response(text=(
            '{"id":"a","time":1,"event":"message","topic":"alerts","message":"one"}\n'
            '\n'
            '{"id":"b","time":2,"event":"message","topic":"alerts","message":"two"}\n'
        ))
        transport = HTTPMessageTransport(ServerConfig(timeout=3), session=session)

        messages = transport.fetch("https://ntfy.sh", "alerts", since=1)

        assert [m.id for m in messages] == ["a", "b"]
        session.request.assert_called_once_with(
            "GET", "https://ntfy.sh/alerts/json",
            timeout=3, params={"poll": "1", "since": "1"},
        )

    def test_fetch_everything_without_since(self, session) -> None:
        session.request.return_value = make_response(text="")
        transport = HTTPMessageTransport(ServerConfig(), session=session)
        assert transport.fetch("https://ntfy.sh", "alerts") == []
        assert session.request.call_args.kwargs["params"]["since"] == "all"

    def test_publish(self, session) -> None:
        session.request.return_value = make_response()
        transport = HTTPMessageTransport(ServerConfig(timeout=5), session=session)

        transport.publish("https://ntfy.sh", "alerts", "hi", title="T", priority=2, tags=["a", "b"])

        session.request.assert_called_once_with(
            "POST", "https://ntfy.sh", timeout=5,
            json={"topic": "alerts", "message": "hi", "title": "T", "priority": 2, "tags": ["a", "b"]},
        )

    def test_http_error_becomes_transport_error(self, session) -> None:
        session.request.return_value = make_response(status_code=429)
        transport = HTTPMessageTransport(ServerConfig(), session=session)
        with pytest.raises(TransportError) as excinfo:
            transport.publish("https://ntfy.sh", "alerts", "hi")
        assert excinfo.value.status_code == 429

    def test_connection_error_becomes_transport_error(self, session) -> None:
        session.request.side_effect = requests.ConnectionError("no route to host")
        transport = HTTPMessageTransport(ServerConfig(), session=session)
        with pytest.raises(TransportError) as excinfo:
            transport.fetch("https://ntfy.sh", "alerts")
        assert excinfo.value.status_code is None

    def test_token_auth(self, session) -> None:
        HTTPMessageTransport(ServerConfig(token="tk_123", user_agent="test/1"), session=session)
        assert session.headers["Authorization"] == "Bearer tk_123"
        assert session.headers["User-Agent"] == "test/1"

    def test_basic_auth(self, session) -> None:
        HTTPMessageTransport(ServerConfig(username="phil", password="secret"), session=session)
        assert session.auth == ("phil", "secret")
        assert "Authorization" not in session.headers

    def test_deregister_is_a_noop(self, session) -> None:
        transport = HTTPMessageTransport(ServerConfig(), session=session)
        transport.deregister("https://ntfy.sh", "alerts")
        session.request.assert_not_called()
