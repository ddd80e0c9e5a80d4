"""
channels — Per-channel delivery backends.

Each channel module exposes:
    async send(notification, recipient, *, provider=..., ...) → DeliveryAttempt

Channels never raise on delivery problems; a failed send comes back as a
DeliveryAttempt with status FAILED. Concurrency and timeouts live in
alerts.dispatcher.
"""
