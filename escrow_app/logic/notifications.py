# escrow_app/logic/notifications.py
"""
커밋 이후 알림 (fire-and-forget).

- 금융 트랜잭션 안에서 절대 호출하지 않는다 → notify_after_commit()는 commit 이후에만.
- 디스패처 예외는 여기서 로그만 남기고 삼킨다. (돈 상태를 되돌리지 않음)
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, Optional, Protocol

import requests

from escrow_app.config.feature_flags import FEATURE_FLAGS

logger = logging.getLogger(__name__)

DISCORD_TIMEOUT_SECONDS = 5


class NotificationDispatcher(Protocol):
    def dispatch(
        self,
        event_type: str,
        *,
        user_ids: Iterable[int],
        title: str,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingDispatcher:
    def dispatch(self, event_type, *, user_ids, title, message, meta=None) -> None:
        logger.info("[notify] %s users=%s title=%s meta=%s", event_type, list(user_ids), title, meta or {})


class DiscordWebhookDispatcher:
    """Discord 웹훅으로 운영 채널 알림. 타임아웃은 트랜잭션과 무관 (커밋 이후 호출)."""

    def __init__(self, webhook_url: str, *, timeout: float = DISCORD_TIMEOUT_SECONDS, session=None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def dispatch(self, event_type, *, user_ids, title, message, meta=None) -> None:
        payload = {
            "username": "escrow-bot",
            "embeds": [
                {
                    "title": title,
                    "description": message,
                    "fields": [
                        {"name": "event", "value": event_type, "inline": True},
                        {"name": "users", "value": ", ".join(str(u) for u in user_ids) or "-", "inline": True},
                    ],
                }
            ],
        }
        resp = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
        resp.raise_for_status()


def _default_dispatcher() -> NotificationDispatcher:
    url = os.getenv("DISCORD_WEBHOOK_URL")
    if url and FEATURE_FLAGS.get("ENABLE_DISCORD_NOTIFY"):
        return DiscordWebhookDispatcher(url)
    return LoggingDispatcher()


_dispatcher: NotificationDispatcher = _default_dispatcher()


def set_dispatcher(dispatcher: NotificationDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def notify_after_commit(
    event_type: str,
    *,
    user_ids: Iterable[int],
    title: str,
    message: str,
    meta: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    성공하면 True, 실패하면 로그 남기고 False. 예외는 밖으로 나가지 않는다.
    """
    try:
        _dispatcher.dispatch(
            event_type,
            user_ids=[u for u in user_ids if u is not None],
            title=title,
            message=message,
            meta=meta or {},
        )
        return True
    except Exception:
        logger.exception("[notify] dispatch failed: event=%s meta=%s", event_type, meta)
        return False
