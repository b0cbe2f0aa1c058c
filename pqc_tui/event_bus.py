from __future__ import annotations

"""
In-process topic based publish/subscribe.

One `EventBus` is built at startup and handed to every component. Delivery
goes through a FIFO mailbox: `notify` enqueues and the outermost call drains
the queue synchronously, so a subscriber that notifies another topic never
recurses into the bus and every delivery has finished when the outermost
`notify` returns. Subscribers of a topic are snapshotted before delivery;
adding or removing subscribers from inside a callback affects the next
delivery only.
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple


class Topic:
    UPDATE_CURRENT_USER_TEXT = "update_current_user_text"
    UPDATE_USERS_PANEL = "update_users_panel"
    UPDATE_ROOMS_PANEL = "update_rooms_panel"
    UPDATE_MESSAGE_AREA = "update_message_area"
    UPDATE_INPUT_BAR = "update_input_bar"
    SEND_MESSAGE = "send_message"
    EXIT = "exit"
    ADD_MESSAGE = "add_message"


ALL_TOPICS = frozenset(
    v for k, v in vars(Topic).items() if not k.startswith("_") and isinstance(v, str)
)

Callback = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, Dict[str, Callback]] = {t: {} for t in ALL_TOPICS}
        self._mailbox: Deque[Tuple[str, Any]] = deque()
        self._draining = False
        self.delivered = 0
        self.failures = 0

    @staticmethod
    def _check(topic: str) -> None:
        if topic not in ALL_TOPICS:
            raise ValueError(f"unknown topic: {topic!r}")

    def subscribe(self, topic: str, subscriber_id: str, callback: Callback) -> None:
        """Register `callback` for `topic`; an existing id is replaced in place."""
        self._check(topic)
        self._subs[topic][subscriber_id] = callback

    def unsubscribe(self, subscriber_id: str, topic: str) -> None:
        if topic not in self._subs:
            return
        self._subs[topic].pop(subscriber_id, None)

    def subscribers(self, topic: str) -> Tuple[str, ...]:
        self._check(topic)
        return tuple(self._subs[topic])

    def notify(self, topic: str, value: Optional[Any] = None) -> None:
        self._check(topic)
        self._mailbox.append((topic, value))
        if self._draining:
            return
        self._draining = True
        try:
            while self._mailbox:
                cur_topic, cur_value = self._mailbox.popleft()
                self._deliver(cur_topic, cur_value)
        finally:
            self._draining = False

    def _deliver(self, topic: str, value: Any) -> None:
        log = logging.getLogger('client.bus')
        for sid, callback in list(self._subs[topic].items()):
            try:
                callback(value)
                self.delivered += 1
            except Exception:
                self.failures += 1
                log.exception("Subscriber %s failed on %s", sid, topic)


__all__ = ["Topic", "ALL_TOPICS", "EventBus"]
