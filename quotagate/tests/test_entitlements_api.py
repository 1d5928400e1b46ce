"""HTTP contract tests for the entitlements router."""


def _body(feature_key, amount=1, holder_id="u1"):
    return {"holder_type": "user", "holder_id": holder_id, "feature_key": feature_key, "amount": amount}


def test_check_allowed_quota(client, catalog):
    resp = client.post("/v1/entitlements/check", json=_body("job_posts", amount=3))
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "limit": 10, "used": 0, "remaining": 10}


def test_check_denial_is_a_result_not_an_error(client, catalog):
    resp = client.post("/v1/entitlements/check", json=_body("talent_search"))
    assert resp.status_code == 200
    assert resp.json() == {"ok": False, "reason": "FEATURE_DISABLED"}


def test_consume_then_block(client, catalog):
    resp = client.post("/v1/entitlements/consume", json=_body("job_posts", amount=10))
    assert resp.status_code == 200
    assert resp.json()["new_used"] == 10
    assert resp.json()["remaining"] == 0

    blocked = client.post("/v1/entitlements/consume", json=_body("job_posts"))
    assert blocked.status_code == 403
    error = blocked.json()["error"]
    assert error["code"] == "feature_blocked"
    assert error["reason"] == "QUOTA_EXCEEDED"
    assert error["result"]["limit"] == 10
    assert error["request_id"] == blocked.headers["x-request-id"]


def test_consume_metered(client, catalog):
    resp = client.post("/v1/entitlements/consume", json=_body("seo_generation", amount=40))
    assert resp.status_code == 200
    assert resp.json()["new_used"] == 0


def test_non_positive_amount_is_bad_request(client, catalog):
    resp = client.post("/v1/entitlements/consume", json=_body("job_posts", amount=0))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_blank_holder_rejected(client, catalog):
    resp = client.post("/v1/entitlements/check", json=_body("job_posts", holder_id="   "))
    assert resp.status_code == 422


def test_list_entitlements(client, catalog):
    client.post("/v1/entitlements/consume", json=_body("ai_screenings", amount=2))
    resp = client.get("/v1/entitlements", params={"holder_type": "user", "holder_id": "u1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["holder_id"] == "u1"
    screenings = next(e for e in body["entitlements"] if e["feature_key"] == "ai_screenings")
    assert screenings == {
        "feature_key": "ai_screenings",
        "feature_name": "AI candidate screenings",
        "kind": "QUOTA",
        "enabled": True,
        "limit": 20,
        "used": 2,
        "remaining": 18,
    }


def test_configuration_error_surfaces_as_reason(client):
    resp = client.post("/v1/entitlements/check", json=_body("job_posts"))
    assert resp.status_code == 200
    assert resp.json()["reason"] == "CONFIGURATION_ERROR"


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_sees_tables(client):
    assert client.get("/readyz").status_code == 200


def test_readyz_reports_unreachable_database(client, monkeypatch):
    from quotagate.api import health

    monkeypatch.setattr(health, "check_connection", lambda: False)
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json() == {"status": "error", "detail": "database unreachable"}


def test_check_connection_against_live_database(db):
    from quotagate.core.database import check_connection

    assert check_connection() is True
