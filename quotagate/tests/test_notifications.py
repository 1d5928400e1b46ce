"""Tests for plan-selected notifications."""

import json

import httpx
import pytest

from quotagate.core.config import settings
from quotagate.features.notifications.service import (
    LogNotifier,
    PlanSelectedNotice,
    WebhookNotifier,
    format_price,
    get_notifier,
)
from quotagate.models.holder import Holder
from quotagate.models.plan import Plan


PRO = Plan(id="recruiter-pro", product="recruiter", tier="pro", interval="monthly", price_cents=99900)


@pytest.mark.parametrize("cents,display", [(0, "Free"), (99900, "R999.00"), (14950, "R149.50")])
def test_format_price(cents, display):
    assert format_price(cents) == display


def test_notice_from_plan():
    notice = PlanSelectedNotice.for_plan(Holder(type="org", id="acme"), PRO)
    assert notice.plan_name == "Recruiter - Pro"
    assert notice.price_display == "R999.00"
    assert notice.holder_type == "org"


def test_webhook_notifier_posts_notice():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("https://hooks.example.test/plan", client=client)
    notifier.plan_selected(PlanSelectedNotice.for_plan(Holder(type="user", id="u1"), PRO))

    assert seen[0]["event_type"] == "plan.selected"
    assert seen[0]["data"]["plan_id"] == "recruiter-pro"


def test_webhook_notifier_raises_on_error_status():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = WebhookNotifier("https://hooks.example.test/plan", client=client)
    with pytest.raises(httpx.HTTPStatusError):
        notifier.plan_selected(PlanSelectedNotice.for_plan(Holder(type="user", id="u1"), PRO))


def test_get_notifier_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", None)
    assert isinstance(get_notifier(), LogNotifier)

    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", "https://hooks.example.test/plan")
    notifier = get_notifier()
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.url == "https://hooks.example.test/plan"
