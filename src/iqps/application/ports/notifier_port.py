"""NotifierPort: outbound, fire-and-forget admin notifications."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotifierPort(Protocol):
    """Implementations must never raise; failures are logged and dropped."""

    def notify_uploaded(self, count: int, unapproved_total: int) -> bool: ...

    def notify_imported(self, count: int, flagged: int) -> bool: ...


class NullNotifier:
    def notify_uploaded(self, count: int, unapproved_total: int) -> bool:
        return False

    def notify_imported(self, count: int, flagged: int) -> bool:
        return False
