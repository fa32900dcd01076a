from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from negotiation.models.chat import Chat
from negotiation.services import chat_service, message_service, negotiation_service
from negotiation.utils.dates import utcnow
from negotiation.utils.exceptions import Forbidden, NotFound, ValidationError


class TestOrderChats:
    def test_get_or_create_is_idempotent(self, users, make_order):
        order = make_order()
        first = chat_service.get_or_create_chat(order.id, "usr-client", "usr-writer")
        second = chat_service.get_or_create_chat(order.id, "usr-client", "usr-writer")

        assert first.id == second.id
        assert first.id.startswith("chat-")
        assert Chat.query.count() == 1

    def test_distinct_writers_get_distinct_chats(self, users, make_order):
        order = make_order()
        a = chat_service.get_or_create_chat(order.id, "usr-client", "usr-writer")
        b = chat_service.get_or_create_chat(order.id, "usr-client", "usr-writer2")
        assert a.id != b.id

    def test_lost_race_returns_winner(self, users, make_order, monkeypatch):
        order = make_order()
        winner = chat_service.get_or_create_chat(order.id, "usr-client", "usr-writer")

        real_find = chat_service._find_chat
        calls = []

        def stale_find(key):
            calls.append(key)
            # first lookup misses, as if the other insert had not committed yet
            return None if len(calls) == 1 else real_find(key)

        monkeypatch.setattr(chat_service, "_find_chat", stale_find)

        chat = chat_service.get_or_create_chat(order.id, "usr-client", "usr-writer")
        assert chat.id == winner.id
        assert len(calls) == 2
        assert Chat.query.count() == 1

    def test_validation(self, users, make_order):
        order = make_order()
        with pytest.raises(NotFound):
            chat_service.get_or_create_chat("ORD-missing", "usr-client", "usr-writer")
        with pytest.raises(ValidationError):
            chat_service.get_or_create_chat(order.id, "usr-client2", "usr-writer")
        with pytest.raises(ValidationError):
            chat_service.get_or_create_chat(order.id, "usr-client", "usr-client2")

    def test_open_conversation_by_role(self, users, make_order):
        order = make_order()

        as_writer = negotiation_service.open_conversation(users["writer"], order.id)
        assert (as_writer.client_id, as_writer.writer_id) == ("usr-client", "usr-writer")

        as_client = negotiation_service.open_conversation(users["client"], order.id, writer_id="usr-writer")
        assert as_client.id == as_writer.id

        with pytest.raises(ValidationError):
            negotiation_service.open_conversation(users["client"], order.id)
        with pytest.raises(ValidationError):
            negotiation_service.open_conversation(users["writer"], None)

    @pytest.mark.parametrize("fields", [
        {"status": "draft"},
        {"writer_id": "usr-writer"},
        {"status": "cancelled"},
    ])
    def test_writer_cannot_open_chat_on_hidden_order(self, users, make_order, fields):
        order = make_order(**fields)
        with pytest.raises(Forbidden):
            negotiation_service.open_conversation(users["writer2"], order.id)
        assert Chat.query.count() == 0

    def test_bidder_keeps_access_after_assignment(self, db, users, make_order, place):
        order = make_order()
        place(order, users["writer2"])
        order.writer_id = "usr-writer"
        db.session.commit()

        chat = negotiation_service.open_conversation(users["writer2"], order.id)
        assert (chat.client_id, chat.writer_id) == ("usr-client", "usr-writer2")

    def test_non_participant_is_forbidden(self, users, make_order):
        chat = chat_service.get_or_create_chat(make_order().id, "usr-client", "usr-writer")

        with pytest.raises(Forbidden):
            chat_service.get_chat_for(chat.id, users["writer2"])
        with pytest.raises(Forbidden):
            message_service.send_message(chat.id, users["client2"], content="hello")

        # staff may read any conversation
        assert chat_service.get_chat_for(chat.id, users["admin"]).id == chat.id

    def test_staff_cannot_post_into_order_chat(self, users, make_order):
        chat = chat_service.get_or_create_chat(make_order().id, "usr-client", "usr-writer")
        with pytest.raises(Forbidden):
            message_service.send_message(chat.id, users["admin"], content="hello")


class TestSupportChats:
    def test_assigned_to_staff(self, users):
        chat = chat_service.get_or_create_support_chat(users["writer"])

        assert chat.kind == "support"
        assert chat.writer_id == "usr-writer"
        assert chat.client_id is None
        assert chat.staff_id == "usr-admin"
        assert chat_service.get_or_create_support_chat(users["writer"]).id == chat.id

    def test_staff_cannot_open_one(self, users):
        with pytest.raises(ValidationError):
            chat_service.get_or_create_support_chat(users["admin"])

    def test_first_staff_reply_claims(self, db, users):
        chat = chat_service.get_or_create_support_chat(users["client"])
        chat.staff_id = None
        db.session.commit()

        message_service.send_message(chat.id, users["admin"], content="How can we help?")
        assert chat.staff_id == "usr-admin"

    def test_inbox_is_staff_only(self, users):
        chat_service.get_or_create_support_chat(users["client"])
        chat_service.get_or_create_support_chat(users["writer"])

        items, pagination = chat_service.list_support_chats(users["admin"], 1, 20)
        assert pagination["total"] == 2
        assert {i["kind"] for i in items} == {"support"}

        with pytest.raises(Forbidden):
            chat_service.list_support_chats(users["client"], 1, 20)


class TestWarnings:
    def test_only_staff_clear(self, users, make_order):
        chat = chat_service.get_or_create_chat(make_order().id, "usr-client", "usr-writer")
        message_service.send_message(chat.id, users["writer"], content="email me at jane@example.com")
        assert chat.warning_active

        with pytest.raises(Forbidden):
            chat_service.clear_warning(chat.id, users["client"])

        chat_service.clear_warning(chat.id, users["admin"])
        assert chat.warning_dict() is None

    def test_listing_expires_stale_warning(self, db, users, make_order):
        chat = chat_service.get_or_create_chat(make_order().id, "usr-client", "usr-writer")
        message_service.send_message(chat.id, users["writer"], content="email me at jane@example.com")
        chat.warning_expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        items, _ = chat_service.list_chats("usr-client", 1, 20)
        assert items[0]["warning"] is None
        assert chat.warning_active is False

    def test_warning_expiry_runs_outside_read_retry(self, users, make_order, monkeypatch):
        chat = chat_service.get_or_create_chat(make_order().id, "usr-client", "usr-writer")
        calls = []

        def locked(c):
            calls.append(c.id)
            raise OperationalError("UPDATE chats", {}, Exception("database is locked"))

        monkeypatch.setattr(chat_service, "expire_warning", locked)

        with pytest.raises(OperationalError):
            chat_service.list_chats("usr-client", 1, 20)
        assert calls == [chat.id]


class TestChatEndpoints:
    def test_create_and_list(self, client, auth, users, make_order):
        order = make_order()

        res = client.post("/api/v1/chats", headers=auth(users["writer"]), json={"order_id": order.id})
        assert res.status_code == 200
        chat = res.get_json()["chat"]
        assert chat["other_user"]["id"] == "usr-client"
        assert chat["unread_count"] == 0

        again = client.post("/api/v1/chats", headers=auth(users["writer"]), json={"order_id": order.id})
        assert again.get_json()["chat"]["id"] == chat["id"]

        listed = client.get("/api/v1/chats", headers=auth(users["client"])).get_json()
        assert [c["id"] for c in listed["items"]] == [chat["id"]]

    def test_foreign_chat_is_403(self, client, auth, users, make_order):
        chat = chat_service.get_or_create_chat(make_order().id, "usr-client", "usr-writer")
        res = client.get(f"/api/v1/chats/{chat.id}", headers=auth(users["writer2"]))
        assert res.status_code == 403
        assert res.get_json()["error"]["code"] == "FORBIDDEN"

    def test_missing_token(self, client):
        res = client.get("/api/v1/chats")
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_support_chat(self, client, auth, users):
        res = client.post("/api/v1/support-chat", headers=auth(users["writer"]))
        assert res.status_code == 200
        assert res.get_json()["chat"]["staff_id"] == "usr-admin"

        inbox = client.get("/api/v1/support-chat", headers=auth(users["admin"])).get_json()
        assert inbox["pagination"]["total"] == 1
