"""Prometheus instruments shared by the auth workflows."""

from __future__ import annotations

from prometheus_client import Counter

AUTH_FLOW_EVENTS = Counter(
    "auth_flow_events_total",
    "Outcomes of sign-up, sign-in and credential update flows.",
    ["flow", "outcome"],
)


def record_outcome(flow: str, outcome: str) -> None:
    AUTH_FLOW_EVENTS.labels(flow=flow, outcome=outcome).inc()
