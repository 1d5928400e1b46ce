"""
Admin billing overrides: service behavior, audit trail and HTTP surface.

Covers:
- Extra allowance grants
- Plan changes (no usage migration)
- Immediate and scheduled cancellation
- Manual usage reset
- Admin auth gate
"""

import json
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from quotagate.core.database import billing_admin_audit, get_db_session, usage_records
from quotagate.core.errors import AdminAuditWriteError, ConflictError, NotFoundError, ValidationError
from quotagate.features.billing import admin_service
from quotagate.models.entitlement import DenialReason
from quotagate.models.holder import Holder


U1 = Holder(type="user", id="u1")
ACTOR = "key:test"


def _audit_rows(session_factory):
    with get_db_session(session_factory) as s:
        return s.execute(select(billing_admin_audit).order_by(billing_admin_audit.c.id)).all()


@pytest.fixture
def subscription(catalog, engine):
    return engine.ensure_subscription(U1)


class TestGrantExtraAllowance:
    def test_grant_is_additive_and_audited(self, subscription, session_factory):
        with get_db_session(session_factory) as s:
            admin_service.grant_extra_allowance(s, U1, "job_posts", 5, actor=ACTOR)
        with get_db_session(session_factory) as s:
            record = admin_service.grant_extra_allowance(s, U1, "job_posts", 3, actor=ACTOR)

        assert record.extra_allowance == 8
        assert record.period_end == subscription.current_period_end

        rows = _audit_rows(session_factory)
        assert [r.action for r in rows] == ["grant_extra_allowance", "grant_extra_allowance"]
        assert rows[0].target_holder == "user:u1"
        assert rows[0].target_resource == "job_posts"
        assert json.loads(rows[0].payload_json)["amount"] == 5

    def test_grant_raises_limit(self, subscription, engine, session_factory):
        with get_db_session(session_factory) as s:
            admin_service.grant_extra_allowance(s, U1, "job_posts", 5, actor=ACTOR)
        assert engine.check_allowed(U1, "job_posts").limit == 15

    def test_grant_without_subscription(self, catalog, session):
        with pytest.raises(NotFoundError) as exc_info:
            admin_service.grant_extra_allowance(session, U1, "job_posts", 5, actor=ACTOR)
        assert exc_info.value.code == "no_subscription"

    @pytest.mark.parametrize("amount", [0, -5])
    def test_grant_requires_positive_amount(self, subscription, session, amount):
        with pytest.raises(ValidationError):
            admin_service.grant_extra_allowance(session, U1, "job_posts", amount, actor=ACTOR)


class TestChangePlan:
    def test_new_caps_apply_to_existing_usage(self, subscription, engine, session_factory):
        engine.consume(U1, "ai_screenings", amount=8)

        with get_db_session(session_factory) as s:
            changed = admin_service.change_plan(s, subscription.id, "individual-starter", actor=ACTOR)
        assert changed.plan_id == "individual-starter"

        result = engine.check_allowed(U1, "ai_screenings")
        assert result.ok is False
        assert result.reason == DenialReason.QUOTA_EXCEEDED
        assert (result.limit, result.used, result.remaining) == (5, 8, -3)

    def test_unknown_plan(self, subscription, session):
        with pytest.raises(NotFoundError):
            admin_service.change_plan(session, subscription.id, "platinum", actor=ACTOR)

    def test_unknown_subscription(self, catalog, session):
        with pytest.raises(NotFoundError):
            admin_service.change_plan(session, "missing", "individual-starter", actor=ACTOR)


class TestCancelSubscription:
    def test_immediate_cancel(self, subscription, engine, session_factory):
        with get_db_session(session_factory) as s:
            canceled = admin_service.cancel_subscription(s, subscription.id, True, actor=ACTOR)

        assert canceled.status == "canceled"
        assert canceled.canceled_at is not None
        assert engine.check_allowed(U1, "cv_builder", provision=False).reason == DenialReason.NO_SUBSCRIPTION

    def test_scheduled_cancel_stays_active(self, subscription, engine, session_factory):
        with get_db_session(session_factory) as s:
            scheduled = admin_service.cancel_subscription(s, subscription.id, False, actor=ACTOR)

        assert scheduled.status == "active"
        assert scheduled.cancel_at_period_end is True
        assert scheduled.scheduled_cancellation_date == subscription.current_period_end
        assert engine.check_allowed(U1, "cv_builder", provision=False).ok is True

    def test_cancel_twice_conflicts(self, subscription, session_factory):
        with get_db_session(session_factory) as s:
            admin_service.cancel_subscription(s, subscription.id, True, actor=ACTOR)
        with get_db_session(session_factory) as s:
            with pytest.raises(ConflictError):
                admin_service.cancel_subscription(s, subscription.id, True, actor=ACTOR)


def test_reset_current_usage_keeps_allowance(subscription, engine, session_factory):
    engine.consume(U1, "job_posts", amount=6)
    with get_db_session(session_factory) as s:
        admin_service.grant_extra_allowance(s, U1, "job_posts", 2, actor=ACTOR)
    with get_db_session(session_factory) as s:
        assert admin_service.reset_current_usage(s, U1, "job_posts", actor=ACTOR) == 1

    result = engine.check_allowed(U1, "job_posts")
    assert (result.limit, result.used, result.remaining) == (12, 0, 12)


def test_audit_write_failure_raises():
    session = MagicMock()
    session.execute.side_effect = RuntimeError("disk full")
    with pytest.raises(AdminAuditWriteError) as exc_info:
        admin_service.record_admin_audit(session, ACTOR, "change_plan")
    assert exc_info.value.status_code == 500


class TestAdminBillingAPI:
    def test_missing_key_is_unauthorized(self, client, admin_key):
        resp = client.get("/v1/admin/billing/entitlements", params={"holder_type": "user", "holder_id": "u1"})
        assert resp.status_code == 401

    def test_wrong_key_is_unauthorized(self, client, admin_key):
        resp = client.get(
            "/v1/admin/billing/entitlements",
            params={"holder_type": "user", "holder_id": "u1"},
            headers={"X-Admin-Key": "nope"},
        )
        assert resp.status_code == 401

    def test_unconfigured_key_is_unavailable(self, client, monkeypatch):
        from quotagate.core.config import settings
        monkeypatch.setattr(settings, "ADMIN_KEY", None)
        resp = client.post("/v1/admin/billing/periods/reset", headers={"X-Admin-Key": "anything"})
        assert resp.status_code == 503

    def test_grant_endpoint(self, client, subscription, admin_headers):
        resp = client.post(
            "/v1/admin/billing/allowance/grant",
            json={"holder_type": "user", "holder_id": "u1", "feature_key": "job_posts", "amount": 4},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["extra_allowance"] == 4
        assert body["holder"] == "user:u1"

    def test_grant_endpoint_without_subscription(self, client, catalog, admin_headers):
        resp = client.post(
            "/v1/admin/billing/allowance/grant",
            json={"holder_type": "user", "holder_id": "nobody", "feature_key": "job_posts", "amount": 4},
            headers=admin_headers,
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "no_subscription"

    def test_plan_and_cancel_endpoints(self, client, subscription, admin_headers):
        resp = client.post(
            f"/v1/admin/billing/subscriptions/{subscription.id}/plan",
            json={"plan_id": "individual-starter"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["plan_id"] == "individual-starter"

        resp = client.post(
            f"/v1/admin/billing/subscriptions/{subscription.id}/cancel",
            json={"immediate": False},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["cancel_at_period_end"] is True

        resp = client.post(
            f"/v1/admin/billing/subscriptions/{subscription.id}/cancel",
            json={"immediate": True},
            headers=admin_headers,
        )
        assert resp.json()["status"] == "canceled"

        resp = client.post(
            f"/v1/admin/billing/subscriptions/{subscription.id}/cancel",
            json={"immediate": True},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    def test_usage_reset_endpoint(self, client, subscription, engine, admin_headers):
        engine.consume(U1, "job_posts", amount=2)
        resp = client.post(
            "/v1/admin/billing/usage/reset",
            json={"holder_type": "user", "holder_id": "u1", "feature_key": "job_posts"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["records_reset"] == 1

    def test_period_reset_endpoint(self, client, subscription, admin_headers, session_factory):
        resp = client.post("/v1/admin/billing/periods/reset", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "canceled": 0, "rolled": 0, "skipped": 0, "usage_reset": 0}
        assert _audit_rows(session_factory)[-1].action == "trigger_period_reset"

    def test_entitlements_endpoint_does_not_provision(self, client, catalog, admin_headers, notifier):
        resp = client.get(
            "/v1/admin/billing/entitlements",
            params={"holder_type": "user", "holder_id": "fresh"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"holder": "user:fresh", "entitlements": []}
        assert notifier.notices == []

    def test_entitlements_endpoint_creates_no_usage_rows(self, client, subscription, admin_headers, session_factory):
        resp = client.get(
            "/v1/admin/billing/entitlements",
            params={"holder_type": "user", "holder_id": "u1"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        job_posts = next(e for e in resp.json()["entitlements"] if e["feature_key"] == "job_posts")
        assert (job_posts["limit"], job_posts["used"], job_posts["remaining"]) == (10, 0, 10)
        with get_db_session(session_factory) as s:
            assert s.execute(select(func.count()).select_from(usage_records)).scalar() == 0
