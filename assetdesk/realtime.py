"""Row change feed and the per-user notification bridge.

Committed inserts are published to a :class:`ChangeFeed`. Consumers open a
:class:`Channel`, bind filters such as ``INSERT on notifications where
user_id=eq.7`` and get a callback per matching event. A failing callback is
logged and never reaches the publisher.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Hashable

from flask import current_app

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_SOUND_URL = "/sounds/notification.mp3"
NOTIFICATION_QUERY_KEYS: tuple[str, ...] = ("notifications", "unreadNotificationsCount")
ALERT_DURATION_MS = 10_000
INVALIDATE_DELAY_SECONDS = 0.5


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    new: dict[str, Any]
    old: dict[str, Any] | None = None
    schema: str = "public"
    committed_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class ChangeFilter:
    table: str
    event: str = "*"
    schema: str = "public"
    column: str | None = None
    value: Any = None

    @classmethod
    def parse(cls, table: str, event: str = "*", expression: str | None = None, schema: str = "public") -> "ChangeFilter":
        """Build a filter from a ``column=eq.value`` expression."""
        if not expression:
            return cls(table=table, event=event, schema=schema)
        column, _, rest = expression.partition("=")
        operator, _, value = rest.partition(".")
        if not column or operator != "eq":
            raise ValueError(f"Unsupported change filter: {expression!r}")
        return cls(table=table, event=event, schema=schema, column=column, value=value)

    def matches(self, change: ChangeEvent) -> bool:
        if change.schema != self.schema or change.table != self.table:
            return False
        if self.event != "*" and change.event != self.event:
            return False
        if self.column is None:
            return True
        return str(change.new.get(self.column)) == str(self.value)


ChangeHandler = Callable[[ChangeEvent], None]


class Channel:
    def __init__(self, feed: "ChangeFeed", name: str) -> None:
        self.feed = feed
        self.name = name
        self.state = "closed"
        self._bindings: list[tuple[ChangeFilter, ChangeHandler]] = []

    def on(self, change_filter: ChangeFilter, handler: ChangeHandler) -> "Channel":
        self._bindings.append((change_filter, handler))
        return self

    def subscribe(self) -> "Channel":
        self.feed._attach(self)
        self.state = "joined"
        return self

    def deliver(self, change: ChangeEvent) -> None:
        for change_filter, handler in list(self._bindings):
            if not change_filter.matches(change):
                continue
            try:
                handler(change)
            except Exception:
                logger.exception("Change handler failed on channel %s", self.name)


class ChangeFeed:
    """In-process publish/subscribe for committed row changes."""

    def __init__(self) -> None:
        self._channels: list[Channel] = []
        self._lock = threading.Lock()

    def channel(self, name: str) -> Channel:
        return Channel(self, name)

    def _attach(self, channel: Channel) -> None:
        with self._lock:
            if channel not in self._channels:
                self._channels.append(channel)
        logger.debug("Channel %s subscribed", channel.name)

    def remove_channel(self, channel: Channel) -> bool:
        with self._lock:
            if channel not in self._channels:
                return False
            self._channels.remove(channel)
        channel.state = "closed"
        logger.debug("Channel %s closed", channel.name)
        return True

    @property
    def channels(self) -> list[Channel]:
        with self._lock:
            return list(self._channels)

    def publish(self, change: ChangeEvent) -> None:
        for channel in self.channels:
            channel.deliver(change)


def get_change_feed() -> ChangeFeed:
    return current_app.extensions["change_feed"]


@dataclass(frozen=True)
class Alert:
    title: str
    description: str
    duration_ms: int = ALERT_DURATION_MS
    action_label: str | None = None
    action_url: str | None = None
    sound_url: str = DEFAULT_NOTIFICATION_SOUND_URL
    notification_id: Any = None

    def to_dict(self) -> dict[str, Any]:
        action = None
        if self.action_url:
            action = {"label": self.action_label, "url": self.action_url}
        return {
            "id": self.notification_id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration_ms,
            "action": action,
            "sound": self.sound_url,
        }


def _timer_scheduler(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class NotificationBridge:
    """Turns notification inserts for one user into alerts and cache refreshes.

    At most one channel is open per bridge. Mounting without a user opens
    nothing; mounting another user closes the previous channel first.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        cache: Any,
        on_alert: Callable[[Alert], None],
        sound_resolver: Callable[[], str | None] | None = None,
        scheduler: Callable[[float, Callable[[], None]], Any] = _timer_scheduler,
        invalidate_delay: float = INVALIDATE_DELAY_SECONDS,
    ) -> None:
        self.feed = feed
        self.cache = cache
        self.on_alert = on_alert
        self.sound_resolver = sound_resolver
        self.scheduler = scheduler
        self.invalidate_delay = invalidate_delay
        self.user_id: Hashable | None = None
        self._channel: Channel | None = None

    @property
    def subscribed(self) -> bool:
        return self._channel is not None

    def mount(self, user_id: Hashable | None) -> bool:
        if self._channel is not None and user_id == self.user_id:
            return True
        self.unmount()
        if not user_id:
            return False
        self.user_id = user_id
        self._channel = (
            self.feed.channel("notifications_channel")
            .on(ChangeFilter.parse("notifications", "INSERT", f"user_id=eq.{user_id}"), self._handle_insert)
            .subscribe()
        )
        return True

    def unmount(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        self.user_id = None
        self.feed.remove_channel(channel)

    def _resolve_sound(self) -> str:
        if self.sound_resolver is None:
            return DEFAULT_NOTIFICATION_SOUND_URL
        try:
            return self.sound_resolver() or DEFAULT_NOTIFICATION_SOUND_URL
        except Exception:
            logger.warning("Falling back to the default notification sound", exc_info=True)
            return DEFAULT_NOTIFICATION_SOUND_URL

    def _handle_insert(self, change: ChangeEvent) -> None:
        row = change.new
        link = row.get("link")
        alert = Alert(
            title=row.get("title") or "",
            description=row.get("body") or "",
            action_label="Ver" if link else None,
            action_url=link or None,
            sound_url=self._resolve_sound(),
            notification_id=row.get("id"),
        )
        self.on_alert(alert)
        user_id = self.user_id
        self.scheduler(self.invalidate_delay, lambda: self._invalidate(user_id))

    def _invalidate(self, user_id: Hashable | None) -> None:
        for key in NOTIFICATION_QUERY_KEYS:
            self.cache.invalidate((key, user_id))


__all__ = [
    "ALERT_DURATION_MS",
    "Alert",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeFilter",
    "Channel",
    "DEFAULT_NOTIFICATION_SOUND_URL",
    "INVALIDATE_DELAY_SECONDS",
    "NOTIFICATION_QUERY_KEYS",
    "NotificationBridge",
    "get_change_feed",
]
