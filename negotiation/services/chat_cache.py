"""Read-through cache for chat-list badge counts.

Entries are per user and per process. They are dropped on the events that
change them (message sent/edited/deleted, mark-read, chat created, bid
accepted); the TTL bounds staleness caused by writes in other processes.
"""
import logging
import threading
import time

from flask import current_app

from negotiation import events

logger = logging.getLogger(__name__)


class ChatSummaryCache:
    def __init__(self, ttl=30, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, user_id, loader):
        now = self._clock()
        with self._lock:
            hit = self._entries.get(user_id)
            if hit and hit[1] > now:
                return hit[0]

        value = loader(user_id)
        with self._lock:
            self._entries[user_id] = (value, now + self.ttl)
        return value

    def invalidate(self, *user_ids):
        with self._lock:
            for uid in user_ids:
                self._entries.pop(uid, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, user_id):
        with self._lock:
            hit = self._entries.get(user_id)
            return bool(hit and hit[1] > self._clock())


def init_app(app):
    app.extensions["chat_cache"] = ChatSummaryCache(ttl=app.config.get("CHAT_CACHE_TTL", 30))


def get_cache():
    return current_app.extensions["chat_cache"]


def _drop_participants(chat, **_):
    get_cache().invalidate(*chat.participant_ids)


def _drop_reader(chat, reader_id=None, **_):
    get_cache().invalidate(reader_id)


def _drop_bid_chat(bid, **_):
    if bid.chat is not None:
        get_cache().invalidate(*bid.chat.participant_ids)


events.chat_created.connect(_drop_participants)
events.message_sent.connect(_drop_participants)
events.message_edited.connect(_drop_participants)
events.message_deleted.connect(_drop_participants)
events.marked_read.connect(_drop_reader)
events.bid_accepted.connect(_drop_bid_chat)
