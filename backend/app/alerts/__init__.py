"""
alerts — Radiation threshold alert engine.

Sub-modules:
    channels/            — Per-channel delivery backends (email, SMS)
    threshold_resolver   — 4-tier threshold lookup
    evaluator            — Near/far violation check
    recorder             — Alert records and acknowledgment
    subscribers          — Fan-out set from preferences
    dispatcher           — Concurrent notification sends
    broadcaster          — Live event push to observers
    alert_service        — Pipeline orchestration
    models               — Data structures shared across the system
"""
