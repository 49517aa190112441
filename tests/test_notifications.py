# tests/test_notifications.py
# 알림은 커밋 이후 - 디스패처가 터져도 돈 상태는 그대로
import pytest
import requests

from escrow_app import crud
from escrow_app.logic import notifications, orders
from escrow_app.logic.notifications import DiscordWebhookDispatcher, notify_after_commit
from escrow_app.models import OrderStatus

from conftest import BUYER


class ExplodingDispatcher:
    def dispatch(self, event_type, **kw):
        raise RuntimeError("webhook down")


class FakeResponse:
    def __init__(self, status_code=204):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")


class FakeSession:
    def __init__(self, status_code=204):
        self.status_code = status_code
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        return FakeResponse(self.status_code)


def test_failing_dispatcher_does_not_undo_order(db, market):
    market.fund(BUYER.user_id, 10_000)
    listing = market.listing(4_000)
    notifications.set_dispatcher(ExplodingDispatcher())

    r = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id)

    assert crud.get_order(db, r.order_id).status == OrderStatus.PAID
    assert market.escrow(r.order_id) == 4_000
    assert market.buyer() == 6_000


def test_notify_returns_false_on_failure():
    notifications.set_dispatcher(ExplodingDispatcher())
    assert notify_after_commit("x", user_ids=[1], title="t", message="m") is False


def test_notify_drops_missing_user_ids(dispatcher):
    assert notify_after_commit("x", user_ids=[1, None, 2], title="t", message="m") is True
    assert dispatcher.events[-1]["user_ids"] == [1, 2]


def test_discord_payload():
    s = FakeSession()
    d = DiscordWebhookDispatcher("https://discord.example/webhook", timeout=2, session=s)
    d.dispatch("order_paid", user_ids=[1, 2], title="결제 완료", message="주문 #1", meta={"order_id": 1})

    call = s.calls[0]
    assert call["url"] == "https://discord.example/webhook"
    assert call["timeout"] == 2
    embed = call["json"]["embeds"][0]
    assert embed["title"] == "결제 완료"
    assert {"name": "users", "value": "1, 2", "inline": True} in embed["fields"]


def test_discord_http_error_is_contained():
    notifications.set_dispatcher(DiscordWebhookDispatcher("https://discord.example/webhook", session=FakeSession(500)))
    assert notify_after_commit("order_paid", user_ids=[1], title="t", message="m") is False


def test_discord_dispatch_raises_directly():
    d = DiscordWebhookDispatcher("https://discord.example/webhook", session=FakeSession(500))
    with pytest.raises(requests.HTTPError):
        d.dispatch("order_paid", user_ids=[1], title="t", message="m")
