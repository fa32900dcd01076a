import pytest
import requests

from negotiation.delivery import (
    ChatApiClient,
    DeliveryError,
    DeliveryStatus,
    DeliveryTracker,
    MessageOutbox,
    PendingMessage,
)
from negotiation.utils.exceptions import InvalidState, NotFound


class FakeResponse:
    def __init__(self, status_code, body=None, reason="OK"):
        self.status_code = status_code
        self._body = body
        self.reason = reason

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses):
        self.headers = {}
        self.calls = []
        self._responses = list(responses)

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def created(server_id, token, warning=None):
    return FakeResponse(201, {
        "success": True,
        "id": server_id,
        "client_token": token,
        "sent_at": "2026-01-01T00:00:00Z",
        "warning": warning,
    })


def outbox_for(session):
    return MessageOutbox(ChatApiClient("https://api.test/", "tok", session=session))


class TestPendingMessage:
    def test_temporary_id_until_confirmed(self):
        msg = PendingMessage("chat-1", "hi")
        assert msg.id.startswith("temp-")
        assert msg.status == "pending"
        assert msg.payload() == {"content": "hi", "attachments": [], "client_token": msg.token}


class TestOutbox:
    def test_confirm_adopts_server_identity(self):
        session = FakeSession()
        outbox = outbox_for(session)
        session._responses.append(created(41, "ignored"))

        msg = outbox.send("chat-1", "hello")

        assert msg.status == DeliveryStatus.CONFIRMED.value
        assert msg.id == 41
        assert msg.sent_at == "2026-01-01T00:00:00Z"

        method, url, kwargs = session.calls[0]
        assert (method, url) == ("POST", "https://api.test/api/v1/chats/chat-1/messages")
        assert kwargs["json"]["client_token"] == msg.token
        assert session.headers["Authorization"] == "Bearer tok"

    def test_network_failure_then_retry(self):
        session = FakeSession(requests.ConnectionError("offline"))
        outbox = outbox_for(session)

        msg = outbox.send("chat-1", "hello")
        assert msg.status == "failed"
        assert "offline" in msg.error
        assert msg.id == msg.token

        session._responses.append(created(7, msg.token))
        retried = outbox.retry(msg.token)

        assert retried is msg
        assert msg.status == "confirmed"
        assert msg.attempts == 2
        # the retry resends the original payload and token
        assert session.calls[0][2]["json"] == session.calls[1][2]["json"]

    def test_error_envelope_fails_message(self):
        session = FakeSession(FakeResponse(422, {
            "error": {"code": "VALIDATION_ERROR", "message": "Message content is required", "details": {}},
        }, reason="UNPROCESSABLE ENTITY"))
        outbox = outbox_for(session)

        msg = outbox.send("chat-1", "")
        assert msg.status == "failed"
        assert "VALIDATION_ERROR" in msg.error

    def test_cannot_retry_confirmed(self):
        session = FakeSession()
        outbox = outbox_for(session)
        session._responses.append(created(1, None))
        msg = outbox.send("chat-1", "hello")

        with pytest.raises(InvalidState):
            outbox.retry(msg.token)

    def test_warning_is_kept(self):
        session = FakeSession()
        outbox = outbox_for(session)
        warning = {"active": True, "risk": "high"}
        session._responses.append(created(3, None, warning=warning))

        assert outbox.send("chat-1", "call me").warning == warning


class TestTracker:
    def test_unknown_token(self):
        with pytest.raises(NotFound):
            DeliveryTracker().get("temp-nope")

    def test_in_state(self):
        tracker = DeliveryTracker()
        a = tracker.track(PendingMessage("c", "a"))
        b = tracker.track(PendingMessage("c", "b"))
        tracker.fail(a.token, "boom")

        assert tracker.in_state("failed") == [a]
        assert tracker.in_state("pending") == [b]
        assert [m.token for m in tracker] == [a.token, b.token]
        assert len(tracker) == 2


class TestClient:
    def test_error_without_json_body(self):
        session = FakeSession(FakeResponse(502, reason="Bad Gateway"))
        client = ChatApiClient("https://api.test", "tok", session=session)

        with pytest.raises(DeliveryError) as exc:
            client.mark_read("chat-1")
        assert exc.value.status == 502
        assert exc.value.code == "HTTP_ERROR"
        assert exc.value.message == "Bad Gateway"

    def test_list_messages_params(self):
        session = FakeSession(FakeResponse(200, {"success": True, "items": []}))
        client = ChatApiClient("https://api.test", "tok", session=session)

        client.list_messages("chat-1", cursor="abc", limit=20)
        assert session.calls[0][2]["params"] == {"direction": "older", "cursor": "abc", "limit": 20}
