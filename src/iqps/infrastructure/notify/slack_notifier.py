from __future__ import annotations

import logging
from typing import Optional

import requests

from iqps.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)


def uploaded_message(count: int, unapproved_total: int) -> str:
    what = "A new paper was" if count == 1 else f"{count} new papers were"
    return (
        f"🔔 {what} uploaded to IQPS!\n\n"
        f"_Total Unapproved papers: *{unapproved_total}*_"
    )


def imported_message(count: int, flagged: int) -> str:
    text = f"📚 {count} library paper{'' if count == 1 else 's'} imported into IQPS."
    if flagged:
        text += f"\n\n_{flagged} need review before they are visible._"
    return text


class SlackNotifier:
    """Post admin notifications to a Slack incoming webhook."""

    TIMEOUT_SECONDS = 10

    def __init__(self, webhook_url: str):
        self.webhook_url = (webhook_url or "").strip()

    @classmethod
    def from_url(cls, webhook_url: Optional[str]) -> Optional["SlackNotifier"]:
        if not (webhook_url or "").strip():
            return None
        return cls(webhook_url)

    def notify_uploaded(self, count: int, unapproved_total: int) -> bool:
        if count <= 0:
            return False
        return self._post(uploaded_message(count, unapproved_total))

    def notify_imported(self, count: int, flagged: int) -> bool:
        if count <= 0:
            return False
        return self._post(imported_message(count, flagged))

    def _post(self, text: str) -> bool:
        try:
            resp = requests.post(self.webhook_url, json={"text": text}, timeout=self.TIMEOUT_SECONDS)
            resp.raise_for_status()
        except requests.RequestException as exc:
            Logger.error(f"Slack notification failed: {exc}", file=LogFiles.NOTIFY)
            return False
        Logger.info("Slack notification sent", file=LogFiles.NOTIFY)
        return True
