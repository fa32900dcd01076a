"""Domain events raised by the ledgers and the message feed.

``order_revised`` and ``order_cancelled`` are sent before the sender commits,
so whatever their receivers stage on ``db.session`` lands in the same
transaction; a receiver may return the rows it touched. The remaining
signals are sent after commit and must not write.
"""
from blinker import Namespace

_signals = Namespace()

# sender=Order, changed=set of field names
order_revised = _signals.signal("order-revised")
# sender=Order, actor_id
order_cancelled = _signals.signal("order-cancelled")
# sender=Bid, rejected=list of sibling bids
bid_accepted = _signals.signal("bid-accepted")
# sender=Chat
chat_created = _signals.signal("chat-created")
# sender=Chat, message=Message
message_sent = _signals.signal("message-sent")
# sender=Chat, message_id
message_edited = _signals.signal("message-edited")
message_deleted = _signals.signal("message-deleted")
# sender=Chat, reader_id
marked_read = _signals.signal("marked-read")
