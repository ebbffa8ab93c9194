"""Prometheus metrics for the support case service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Gauge


SUPPORT_CASE_CREATED_TOTAL: Final = Counter(
    "support_case_created_total",
    "Number of support cases created.",
    labelnames=("opened_by",),
)

SUPPORT_MESSAGE_ADDED_TOTAL: Final = Counter(
    "support_message_added_total",
    "Number of messages appended to support case conversations.",
    labelnames=("author_role",),
)

SUPPORT_CASE_CLOSED_TOTAL: Final = Counter(
    "support_case_closed_total",
    "Number of support cases transitioned to closed.",
    labelnames=("closed_by",),
)

SUPPORT_MESSAGES_SEEN_TOTAL: Final = Counter(
    "support_messages_seen_total",
    "Number of messages whose seen flag was switched on.",
    labelnames=("track",),
)

SUPPORT_MESSAGE_DELETED_TOTAL: Final = Counter(
    "support_message_deleted_total",
    "Number of messages removed from support case conversations.",
)

SUPPORT_SIDE_EFFECT_FAILURES_TOTAL: Final = Counter(
    "support_side_effect_failures_total",
    "Number of failed broadcast or notification side effects.",
    labelnames=("effect",),
)

SUPPORT_REALTIME_CONNECTIONS: Final = Gauge(
    "support_realtime_connections",
    "Number of live real-time connections in this process.",
)

SUPPORT_REALTIME_EVENTS_TOTAL: Final = Counter(
    "support_realtime_events_total",
    "Number of real-time events delivered by this process.",
    labelnames=("event", "scope"),
)

SUPPORT_REALTIME_RELAY_RESUBSCRIBES_TOTAL: Final = Counter(
    "support_realtime_relay_resubscribes_total",
    "Number of times the redis relay lost its subscription and resubscribed.",
)


def normalise_label(value: str | None) -> str:
    if not value:
        return "unknown"
    return value.strip().lower().replace(" ", "_") or "unknown"
