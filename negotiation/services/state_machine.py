"""Order and bid lifecycles, in one place.

Order lifecycle:
    draft -> in_progress -> in_review <-> in_revision -> completed
    draft | in_progress | in_review | in_revision -> cancelled

``in_progress`` covers both "open for bids" and "writer working"; the two
are told apart by ``Order.writer_id``.

Bid lifecycle:
    open <-> unconfirmed -> accepted | rejected | cancelled

Every mutating service consults these tables instead of comparing status
strings on its own. Invalid transitions raise ``InvalidState``.
"""
import enum

from negotiation.utils.exceptions import InvalidState


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    IN_REVISION = "in_revision"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BidStatus(str, enum.Enum):
    OPEN = "open"
    UNCONFIRMED = "unconfirmed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


ORDER_TRANSITIONS = {
    OrderStatus.DRAFT: {OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED},
    OrderStatus.IN_PROGRESS: {OrderStatus.IN_REVIEW, OrderStatus.CANCELLED},
    OrderStatus.IN_REVIEW: {
        OrderStatus.IN_REVISION,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.IN_REVISION: {OrderStatus.IN_REVIEW, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

BID_TRANSITIONS = {
    BidStatus.OPEN: {
        BidStatus.UNCONFIRMED,
        BidStatus.ACCEPTED,
        BidStatus.REJECTED,
        BidStatus.CANCELLED,
    },
    BidStatus.UNCONFIRMED: {
        BidStatus.OPEN,
        BidStatus.ACCEPTED,
        BidStatus.REJECTED,
        BidStatus.CANCELLED,
    },
    BidStatus.ACCEPTED: set(),
    BidStatus.REJECTED: set(),
    BidStatus.CANCELLED: set(),
}


class StateMachine:
    """Validates and applies status transitions for one entity kind.

    Entities carry their state in a plain string ``status`` column.
    """

    def __init__(self, name, states, transitions):
        self.name = name
        self.states = states
        self.transitions = transitions

    def coerce(self, value):
        try:
            return self.states(value)
        except ValueError:
            raise InvalidState(f"Unknown {self.name} status: {value}")

    def valid_transitions(self, state):
        return set(self.transitions.get(self.coerce(state), set()))

    def is_terminal(self, state):
        return not self.transitions.get(self.coerce(state))

    def validate_transition(self, current, target):
        """Check a transition. Returns a list of errors (empty = OK)."""
        current = self.coerce(current)
        target = self.coerce(target)
        allowed = self.transitions.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed))
            return [
                f"Invalid {self.name} transition: {current.value} -> {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    def apply(self, entity, target):
        """Move ``entity.status`` to ``target`` or raise ``InvalidState``."""
        errors = self.validate_transition(entity.status, target)
        if errors:
            raise InvalidState(
                errors[0],
                {"status": entity.status, "target": self.coerce(target).value},
            )
        entity.status = self.coerce(target).value
        return entity


order_machine = StateMachine("order", OrderStatus, ORDER_TRANSITIONS)
bid_machine = StateMachine("bid", BidStatus, BID_TRANSITIONS)
