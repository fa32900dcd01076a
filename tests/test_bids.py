from datetime import timedelta

import pytest

from negotiation.models.bid import Bid
from negotiation.models.chat import Chat
from negotiation.models.message import Message
from negotiation.models.notification import Notification
from negotiation.models.order import Order
from negotiation.services import bid_service, chat_service, negotiation_service, order_service
from negotiation.utils.dates import isoformat
from negotiation.utils.exceptions import Conflict, Forbidden, InvalidState, ValidationError

from conftest import future


class TestPlaceBid:
    def test_amount_may_equal_budget(self, make_order, place):
        order = make_order(budget="100.00")
        bid = place(order, amount="100.00")
        assert bid.status == "open"
        assert bid.id.startswith("BID-")

    def test_amount_above_budget(self, make_order, place):
        order = make_order(budget="100.00")
        with pytest.raises(ValidationError) as exc:
            place(order, amount="100.01")
        assert exc.value.message == "Bid exceeds client budget"
        assert Bid.query.count() == 0

    @pytest.mark.parametrize("amount", ["0", "-10", "abc", "NaN"])
    def test_amount_must_be_positive_number(self, make_order, place, amount):
        order = make_order()
        with pytest.raises(ValidationError):
            place(order, amount=amount)

    def test_deadline_bounds(self, make_order, place):
        order = make_order(days=3)
        with pytest.raises(ValidationError):
            place(order, deadline=future(4))
        with pytest.raises(ValidationError):
            place(order, deadline=future(-1))

        bid = place(order, deadline=order.deadline - timedelta(hours=1))
        assert bid.deadline < order.deadline

    def test_one_active_bid_per_writer(self, users, make_order, place):
        order = make_order()
        place(order)
        with pytest.raises(ValidationError) as exc:
            place(order, amount="80.00")
        assert exc.value.code == "DUPLICATE_BID"

        # other writers are unaffected
        place(order, users["writer2"])

    def test_only_writers_bid(self, users, make_order, place):
        order = make_order()
        with pytest.raises(Forbidden):
            place(order, users["client2"])

    @pytest.mark.parametrize("fields", [
        {"status": "draft"},
        {"writer_id": "usr-writer2"},
        {"status": "cancelled"},
    ])
    def test_order_must_be_open(self, make_order, place, fields):
        order = make_order(**fields)
        with pytest.raises(InvalidState):
            place(order)

    def test_cancel_then_rebid_fails(self, users, make_order, place):
        order = make_order()
        bid = place(order)
        bid_service.cancel_bid(bid.id, users["writer"])
        assert bid.status == "cancelled"

        with pytest.raises(ValidationError) as exc:
            place(order)
        assert exc.value.code == "ORDER_DECLINED"


class TestSubmitBid:
    def test_opens_chat_and_posts_proposal(self, users, make_order):
        order = make_order()
        bid, chat, warning = negotiation_service.submit_bid(
            order.id, users["writer"], "95.00", message="I can deliver in 3 days."
        )

        assert bid.chat_id == chat.id
        assert (chat.order_id, chat.client_id, chat.writer_id) == (order.id, "usr-client", "usr-writer")
        assert warning is None

        messages = Message.query.filter_by(chat_id=chat.id).all()
        assert [m.content for m in messages] == ["I can deliver in 3 days."]
        assert messages[0].sender_id == "usr-writer"

        assert Notification.query.filter_by(user_id="usr-client", type="new_bid").count() == 1

    def test_reuses_existing_chat(self, users, make_order):
        order = make_order()
        existing = negotiation_service.open_conversation(users["client"], order.id, writer_id="usr-writer")

        _, chat, _ = negotiation_service.submit_bid(order.id, users["writer"], "95.00")
        assert chat.id == existing.id

        other = make_order()
        _, other_chat, _ = negotiation_service.submit_bid(other.id, users["writer"], "95.00")
        assert other_chat.id != chat.id

    def test_failed_bid_opens_nothing(self, users, make_order):
        order = make_order(budget="50.00")
        with pytest.raises(ValidationError):
            negotiation_service.submit_bid(order.id, users["writer"], "60.00", message="hi")
        assert Message.query.count() == 0

    def test_chat_failure_leaves_no_bid(self, users, make_order, monkeypatch):
        order = make_order()
        real_get_or_create = chat_service.get_or_create_chat

        def unavailable(*args, **kwargs):
            raise Conflict("Conversation could not be created, please retry")

        monkeypatch.setattr(chat_service, "get_or_create_chat", unavailable)
        with pytest.raises(Conflict):
            negotiation_service.submit_bid(order.id, users["writer"], "95.00", message="hi")
        assert Bid.query.count() == 0
        assert Message.query.count() == 0

        # the retry is not refused as a duplicate
        monkeypatch.setattr(chat_service, "get_or_create_chat", real_get_or_create)
        bid, chat, _ = negotiation_service.submit_bid(order.id, users["writer"], "95.00")
        assert bid.status == "open"
        assert bid.chat_id == chat.id

    def test_lost_chat_race_keeps_bid(self, users, make_order, monkeypatch):
        order = make_order()
        existing = negotiation_service.open_conversation(users["client"], order.id, writer_id="usr-writer")

        real_find = chat_service._find_chat
        calls = []

        def stale_find(key):
            calls.append(key)
            # both lookups miss, so the insert hits the unique index
            return None if len(calls) <= 2 else real_find(key)

        monkeypatch.setattr(chat_service, "_find_chat", stale_find)

        bid, chat, _ = negotiation_service.submit_bid(order.id, users["writer"], "95.00")
        assert chat.id == existing.id
        assert bid.chat_id == existing.id
        assert Bid.query.filter_by(id=bid.id).one().chat_id == existing.id
        assert Chat.query.count() == 1

    def test_proposal_is_sanitized(self, users, make_order):
        order = make_order()
        bid, chat, warning = negotiation_service.submit_bid(
            order.id, users["writer"], "95.00", message="email me at jane@example.com"
        )
        assert "jane@example.com" not in bid.message
        assert "[REDACTED]" in bid.message

        posted = Message.query.filter_by(chat_id=chat.id).one()
        assert "jane@example.com" not in posted.content
        assert warning is not None


class TestEditAndConfirm:
    def test_edit_revalidates(self, users, make_order, place):
        order = make_order(budget="100.00")
        bid = place(order)
        with pytest.raises(ValidationError):
            bid_service.edit_bid(bid.id, users["writer"], {"amount": "150.00"})

        bid_service.edit_bid(bid.id, users["writer"], {"amount": "70.00", "message": "Discount"})
        assert float(bid.amount) == 70.0
        assert bid.message == "Discount"

    def test_only_own_bid(self, users, make_order, place):
        bid = place(make_order())
        with pytest.raises(Forbidden):
            bid_service.edit_bid(bid.id, users["writer2"], {"amount": "10.00"})

    def test_unconfirmed_scenario(self, users, make_order, place):
        order = make_order(budget="100.00")
        bid = place(order, amount="90.00")

        order_service.edit_order(order.id, users["client"], {"budget": "80.00"})
        assert bid.status == "unconfirmed"

        with pytest.raises(InvalidState) as exc:
            bid_service.accept_bid(bid.id, users["client"])
        assert exc.value.code == "BID_UNCONFIRMED"

        # 90 no longer fits the lowered budget
        with pytest.raises(ValidationError):
            bid_service.confirm_bid(bid.id, users["writer"])

        bid_service.edit_bid(bid.id, users["writer"], {"amount": "80.00"})
        assert bid.status == "open"

        bid_service.accept_bid(bid.id, users["client"])
        assert bid.status == "accepted"

    def test_confirm_unchanged_bid(self, users, make_order, place):
        order = make_order(budget="100.00")
        bid = place(order, amount="90.00")
        order_service.edit_order(order.id, users["client"], {"pages": 5})

        bid_service.confirm_bid(bid.id, users["writer"])
        assert bid.status == "open"

        with pytest.raises(InvalidState):
            bid_service.confirm_bid(bid.id, users["writer"])

    def test_closed_bid_cannot_be_edited(self, users, make_order, place):
        bid = place(make_order())
        bid_service.reject_bid(bid.id, users["client"])
        with pytest.raises(InvalidState):
            bid_service.edit_bid(bid.id, users["writer"], {"message": "please"})

    def test_deadline_revision_scenario(self, users, make_order, place):
        order = make_order(days=10)
        bid = place(order, deadline=future(8))

        order_service.edit_order(order.id, users["client"], {"deadline": future(6)})
        assert bid.status == "unconfirmed"

        # the bid now runs past the order deadline
        with pytest.raises(ValidationError):
            bid_service.confirm_bid(bid.id, users["writer"])
        with pytest.raises(ValidationError):
            bid_service.edit_bid(bid.id, users["writer"], {"amount": "85.00"})
        assert bid.status == "unconfirmed"

        bid_service.edit_bid(bid.id, users["writer"], {"deadline": future(5)})
        assert bid.status == "open"

    def test_edited_message_is_sanitized(self, users, make_order, place):
        bid = place(make_order())
        bid_service.edit_bid(bid.id, users["writer"], {"message": "call +254712345678"})
        assert "+254712345678" not in bid.message
        assert "[REDACTED]" in bid.message


class TestAcceptBid:
    def test_accept_assigns_writer_and_rejects_siblings(self, users, make_order, place):
        order = make_order()
        winner = place(order, users["writer"])
        loser = place(order, users["writer2"])
        also_loser = place(order, users["writer3"])
        order_service.edit_order(order.id, users["client"], {"deadline": future(9)})
        bid_service.confirm_bid(winner.id, users["writer"])

        bid, rejected = bid_service.accept_bid(winner.id, users["client"])

        assert bid.status == "accepted"
        assert order.writer_id == "usr-writer"
        assert order.status == "in_progress"
        assert {b.id for b in rejected} == {loser.id, also_loser.id}
        assert loser.status == "rejected"
        assert also_loser.status == "rejected"

        accepted_note = Notification.query.filter_by(user_id="usr-writer", type="bid_update").one()
        assert accepted_note.title == "Your Bid Was Accepted"
        assert Notification.query.filter_by(user_id="usr-writer2", type="bid_update").count() == 1

    def test_second_accept_fails(self, users, make_order, place):
        order = make_order()
        first = place(order, users["writer"])
        second = place(order, users["writer2"])
        bid_service.accept_bid(first.id, users["client"])

        with pytest.raises(InvalidState):
            bid_service.accept_bid(second.id, users["client"])
        assert Bid.query.filter_by(order_id=order.id, status="accepted").count() == 1

    def test_lost_claim_raises(self, db, users, make_order, place):
        order = make_order()
        bid = place(order)

        # another request assigns the order between our read and our claim
        Order.query.filter_by(id=order.id).update({"writer_id": "usr-writer2"})
        db.session.commit()

        with pytest.raises(InvalidState) as exc:
            bid_service.accept_bid(bid.id, users["client"])
        assert exc.value.code == "ALREADY_ASSIGNED"
        assert bid.status == "open"
        assert order.writer_id == "usr-writer2"

    def test_only_owner_accepts(self, users, make_order, place):
        bid = place(make_order())
        with pytest.raises(Forbidden):
            bid_service.accept_bid(bid.id, users["client2"])

    def test_accepted_bid_survives_cancel(self, users, make_order, place):
        order = make_order()
        bid = place(order)
        bid_service.accept_bid(bid.id, users["client"])

        order_service.cancel_order(order.id, users["client"], "Budget cut")
        assert bid.status == "accepted"

    def test_reject_does_not_cascade(self, users, make_order, place):
        order = make_order()
        a = place(order, users["writer"])
        b = place(order, users["writer2"])
        bid_service.reject_bid(a.id, users["client"])

        assert a.status == "rejected"
        assert b.status == "open"
        assert order.writer_id is None

    def test_closed_siblings_are_left_alone(self, users, make_order, place):
        order = make_order()
        b1 = place(order, users["writer"])
        b2 = place(order, users["writer2"])
        b3 = place(order, users["writer3"])
        bid_service.reject_bid(b3.id, users["client"])

        _, rejected = bid_service.accept_bid(b1.id, users["client"])

        assert [b.id for b in rejected] == [b2.id]
        assert b2.status == "rejected"
        assert b3.status == "rejected"
        # only the earlier rejection, no second notice
        assert Notification.query.filter_by(user_id="usr-writer3", type="bid_update").count() == 1

    def test_locks_order_before_bid(self, users, make_order, place, monkeypatch):
        bid = place(make_order())
        locks = []
        real_order_lookup = bid_service.get_order_or_404
        real_bid_lookup = bid_service.get_bid_or_404

        def order_lookup(order_id, for_update=False):
            if for_update:
                locks.append("order")
            return real_order_lookup(order_id, for_update=for_update)

        def bid_lookup(bid_id, for_update=False):
            if for_update:
                locks.append("bid")
            return real_bid_lookup(bid_id, for_update=for_update)

        monkeypatch.setattr(bid_service, "get_order_or_404", order_lookup)
        monkeypatch.setattr(bid_service, "get_bid_or_404", bid_lookup)

        bid_service.accept_bid(bid.id, users["client"])
        assert locks == ["order", "bid"]


class TestBidEndpoints:
    def test_place_and_accept(self, client, auth, users, make_order):
        order = make_order(budget="120.00")

        res = client.post(f"/api/v1/orders/{order.id}/bids", headers=auth(users["writer"]), json={
            "amount": 110,
            "message": "Experienced in this topic",
            "deadline": isoformat(future(2)),
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "open"
        assert body["chat_id"]

        res = client.put(f"/api/v1/bids/{body['id']}/status", headers=auth(users["client"]),
                         json={"action": "accept"})
        assert res.status_code == 200
        assert res.get_json()["bid"]["status"] == "accepted"

    def test_over_budget_is_422(self, client, auth, users, make_order):
        order = make_order(budget="100.00")
        res = client.post(f"/api/v1/orders/{order.id}/bids", headers=auth(users["writer"]),
                          json={"amount": "100.01"})
        assert res.status_code == 422
        assert res.get_json()["error"]["message"] == "Bid exceeds client budget"

    def test_bad_action(self, client, auth, users, make_order, place):
        bid = place(make_order())
        res = client.put(f"/api/v1/bids/{bid.id}/status", headers=auth(users["client"]), json={"action": "maybe"})
        assert res.status_code == 422

    def test_lists(self, client, auth, users, make_order, place):
        order = make_order()
        place(order, users["writer"])
        place(order, users["writer2"])

        mine = client.get("/api/v1/bids", headers=auth(users["writer"])).get_json()
        assert mine["pagination"]["total"] == 1

        for_client = client.get("/api/v1/client/bids", headers=auth(users["client"])).get_json()
        assert for_client["pagination"]["total"] == 2
        assert {b["writerId"] for b in for_client["items"]} == {"usr-writer", "usr-writer2"}

        per_order = client.get(f"/api/v1/client/orders/{order.id}/bids", headers=auth(users["client2"]))
        assert per_order.status_code == 403

    def test_withdraw(self, client, auth, users, make_order, place):
        bid = place(make_order())
        res = client.delete(f"/api/v1/bids/{bid.id}", headers=auth(users["writer"]))
        assert res.status_code == 200
        assert res.get_json()["bid"]["status"] == "cancelled"
