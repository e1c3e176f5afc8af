from dataclasses import dataclass


@dataclass(frozen=True)
class NotificationIntent:
    """One email a state change owes somebody. Built by services, consumed by the dispatcher."""

    to: str
    subject: str
    text: str
    kind: str = ""
