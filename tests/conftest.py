from datetime import timedelta
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from negotiation.extensions import db as _db
from negotiation.main import create_app
from negotiation.models.order import Order
from negotiation.models.user import User
from negotiation.services import bid_service
from negotiation.services.attachment_store import LocalAttachmentStore
from negotiation.utils.dates import utcnow


@pytest.fixture
def app(tmp_path):
    app = create_app("testing")
    app.extensions["attachment_store"] = LocalAttachmentStore(str(tmp_path / "attachments"))

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(db):
    seeded = {
        "client": User(id="usr-client", email="client@example.com", full_name="Casey Client", role="client"),
        "client2": User(id="usr-client2", email="client2@example.com", full_name="Dana Client", role="client"),
        "writer": User(id="usr-writer", email="writer@example.com", full_name="Wendy Writer", role="writer"),
        "writer2": User(id="usr-writer2", email="writer2@example.com", full_name="Will Writer", role="writer"),
        "writer3": User(id="usr-writer3", email="writer3@example.com", full_name="Xena Writer", role="writer"),
        "admin": User(id="usr-admin", email="admin@example.com", full_name="Ada Admin", role="admin"),
    }
    db.session.add_all(seeded.values())
    db.session.commit()
    return seeded


@pytest.fixture
def auth(users):
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(identity=user.id)}"}
    return _headers


@pytest.fixture
def make_order(db, users):
    def _make(budget="100.00", client=None, status="in_progress", days=10, **fields):
        order = Order(
            title=fields.pop("title", "Essay on renewable energy"),
            subject=fields.pop("subject", "english"),
            type=fields.pop("type", "essay"),
            pages=fields.pop("pages", 2),
            budget=Decimal(budget),
            deadline=utcnow() + timedelta(days=days),
            client_id=(client or users["client"]).id,
            status=status,
            **fields,
        )
        db.session.add(order)
        db.session.commit()
        return order
    return _make


@pytest.fixture
def place(users):
    def _place(order, writer=None, amount="90.00", **kwargs):
        return bid_service.place_bid(order.id, writer or users["writer"], amount, **kwargs)
    return _place


def future(days=5):
    return utcnow() + timedelta(days=days)
