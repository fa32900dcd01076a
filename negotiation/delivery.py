"""Optimistic message delivery for API consumers.

A message is shown as soon as it is queued (``pending``), then reconciled
with the server's answer: ``confirmed`` adopts the server id and sent-at,
``failed`` keeps the payload so a retry sends exactly the same thing.

    client = ChatApiClient("https://api.example.com", token)
    outbox = MessageOutbox(client)
    msg = outbox.send(chat_id, "hello")
    if msg.status == "failed":
        outbox.retry(msg.token)
"""
import enum
import logging
import uuid

import requests

from negotiation.services.state_machine import StateMachine
from negotiation.utils.exceptions import NotFound

logger = logging.getLogger(__name__)


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


DELIVERY_TRANSITIONS = {
    DeliveryStatus.PENDING: {DeliveryStatus.CONFIRMED, DeliveryStatus.FAILED},
    DeliveryStatus.FAILED: {DeliveryStatus.PENDING},
    DeliveryStatus.CONFIRMED: set(),
}

delivery_machine = StateMachine("delivery", DeliveryStatus, DELIVERY_TRANSITIONS)


class DeliveryError(Exception):
    """The API answered with an error envelope."""

    def __init__(self, status, code, message, details=None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"{status} {code}: {message}")


class PendingMessage:
    def __init__(self, chat_id, content=None, attachments=None, token=None):
        self.token = token or f"temp-{uuid.uuid4().hex}"
        self.chat_id = chat_id
        self.content = content
        self.attachments = list(attachments or [])
        self.status = DeliveryStatus.PENDING.value
        self.attempts = 0
        self.server_id = None
        self.sent_at = None
        self.warning = None
        self.error = None

    @property
    def id(self):
        """Server id once confirmed, the local token until then."""
        return self.server_id if self.server_id is not None else self.token

    def payload(self):
        return {
            "content": self.content,
            "attachments": self.attachments,
            "client_token": self.token,
        }

    def __repr__(self):
        return f"<PendingMessage {self.id} {self.status}>"


class DeliveryTracker:
    """Per-conversation bookkeeping of optimistic messages, in send order."""

    def __init__(self):
        self._messages = {}

    def track(self, message):
        self._messages[message.token] = message
        return message

    def get(self, token):
        try:
            return self._messages[token]
        except KeyError:
            raise NotFound(f"No tracked message {token}")

    def confirm(self, token, server_message):
        msg = self.get(token)
        echoed = server_message.get("client_token")
        if echoed is not None and echoed != token:
            logger.warning("Server echoed token %s for %s", echoed, token)

        delivery_machine.apply(msg, DeliveryStatus.CONFIRMED)
        msg.server_id = server_message["id"]
        msg.sent_at = server_message.get("sent_at")
        msg.warning = server_message.get("warning")
        msg.error = None
        return msg

    def fail(self, token, error):
        msg = self.get(token)
        delivery_machine.apply(msg, DeliveryStatus.FAILED)
        msg.error = str(error)
        return msg

    def begin_retry(self, token):
        msg = self.get(token)
        delivery_machine.apply(msg, DeliveryStatus.PENDING)
        msg.error = None
        return msg

    def in_state(self, status):
        return [m for m in self._messages.values() if m.status == status]

    def __iter__(self):
        return iter(list(self._messages.values()))

    def __len__(self):
        return len(self._messages)


class ChatApiClient:
    """Thin ``requests`` wrapper over the chat endpoints."""

    def __init__(self, base_url, token, session=None, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _request(self, method, path, **kwargs):
        res = self.session.request(method, f"{self.base_url}/api/v1{path}", timeout=self.timeout, **kwargs)

        if res.status_code >= 400:
            try:
                err = res.json().get("error", {})
            except ValueError:
                err = {}
            raise DeliveryError(
                res.status_code,
                err.get("code", "HTTP_ERROR"),
                err.get("message", res.reason),
                err.get("details"),
            )
        return res.json()

    def post_message(self, chat_id, payload):
        return self._request("POST", f"/chats/{chat_id}/messages", json=payload)

    def list_messages(self, chat_id, cursor=None, limit=None, direction="older"):
        params = {"direction": direction}
        if cursor:
            params["cursor"] = cursor
        if limit:
            params["limit"] = limit
        return self._request("GET", f"/chats/{chat_id}/messages", params=params)

    def mark_read(self, chat_id):
        return self._request("POST", f"/chats/{chat_id}/mark-read")


class MessageOutbox:
    def __init__(self, client, tracker=None):
        self.client = client
        self.tracker = tracker or DeliveryTracker()

    def send(self, chat_id, content=None, attachments=None):
        msg = self.tracker.track(PendingMessage(chat_id, content, attachments))
        return self._deliver(msg)

    def retry(self, token):
        """Resend a failed message with its original payload and token."""
        return self._deliver(self.tracker.begin_retry(token))

    def _deliver(self, msg):
        msg.attempts += 1
        try:
            data = self.client.post_message(msg.chat_id, msg.payload())
        except (requests.RequestException, DeliveryError) as e:
            logger.warning("Delivery of %s failed (attempt %d): %s", msg.token, msg.attempts, e)
            return self.tracker.fail(msg.token, e)
        return self.tracker.confirm(msg.token, data)
