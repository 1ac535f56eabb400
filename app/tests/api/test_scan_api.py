from sqlalchemy.exc import SQLAlchemyError

from app.models.enums import ChainStatus

SCAN = "/api/v1/scan"


def test_scan_records_and_asks_first_question(client, csrf_headers, make_tag, registry):
    make_tag("T1")
    registry.set_status("T1", ChainStatus.CLAIMED)

    r = client.post(
        SCAN,
        json={"tagCode": "T1", "fingerprintId": "F1", "locationName": "Jakarta"},
        headers={**csrf_headers, "X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest-phone"},
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["valid"] is True
    assert body["scanInfo"] == {
        "scanNumber": 1,
        "totalScans": 1,
        "isNewFingerprint": True,
        "previousScansFromFingerprint": 0,
    }
    assert body["question"]["type"] == "first_scan"
    assert len(body["question"]["options"]) == 2
    assert body["history"] is None
    assert body["tag"]["chainStatusLabel"] == "Claimed"
    assert body["blockchainValidation"]["status"] == "validated"
    assert body["scanStats"]["scanLocations"] == ["Jakarta"]
    assert r.headers["X-RateLimit-Remaining"] == "29"


def test_scan_stores_forwarded_ip_and_user_agent(client, csrf_headers, make_tag, db, service):
    tag = make_tag("T1")
    client.post(
        SCAN,
        json={"tagCode": "T1", "fingerprintId": "F1"},
        headers={**csrf_headers, "X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest-phone"},
    )
    client.post(
        SCAN,
        json={"tagCode": "T1", "fingerprintId": "F2"},
        headers={**csrf_headers, "X-Real-IP": "198.51.100.4"},
    )

    latest, first = service.ledger.list_scans(db, tag.id)
    assert (first.ip_address, first.user_agent) == ("203.0.113.9", "pytest-phone")
    assert latest.ip_address == "198.51.100.4"


def test_returning_device_sees_history(client, csrf_headers, make_tag):
    make_tag("T1")
    for fp in ("F1", "F2", "F1"):
        r = client.post(SCAN, json={"tagCode": "T1", "fingerprintId": fp}, headers=csrf_headers)

    body = r.json()
    assert body["question"] == {"type": "no_question", "message": "", "options": None}
    assert [h["scanNumber"] for h in body["history"]] == [3, 2, 1]


def test_missing_fields_are_400(client, csrf_headers, make_tag):
    make_tag("T1")
    assert client.post(SCAN, json={"tagCode": "T1"}, headers=csrf_headers).status_code == 400
    assert client.post(SCAN, json={"fingerprintId": "F1"}, headers=csrf_headers).status_code == 400
    assert client.post(SCAN, json={"tagCode": "  ", "fingerprintId": "F1"}, headers=csrf_headers).status_code == 400

    r = client.post(SCAN, json={"tagCode": "T1"}, headers=csrf_headers)
    assert r.json()["detail"] == "tagCode and fingerprintId are required."
    assert "X-RateLimit-Remaining" not in r.headers


def test_unknown_tag_is_404(client, csrf_headers):
    r = client.post(SCAN, json={"tagCode": "NOPE", "fingerprintId": "F1"}, headers=csrf_headers)
    assert r.status_code == 404
    assert "NOPE" in r.json()["detail"]


def test_csrf_rejections_do_not_touch_the_ledger(client, make_tag, db, service, settings):
    tag = make_tag("T1")

    no_token = client.post(SCAN, json={"tagCode": "T1", "fingerprintId": "F1"})
    forged = client.post(
        SCAN,
        json={"tagCode": "T1", "fingerprintId": "F1"},
        headers={settings.csrf_header_name: "not-a-token"},
    )

    assert no_token.status_code == 403
    assert forged.status_code == 403
    assert service.ledger.list_scans(db, tag.id) == []


def test_rate_limit_is_429_with_retry_after(client, csrf_headers, make_tag, scan_limiter, db, service):
    tag = make_tag("T1")
    scan_limiter.capacity = 2.0
    scan_limiter.reset()

    statuses = [
        client.post(SCAN, json={"tagCode": "T1", "fingerprintId": "F1"}, headers=csrf_headers).status_code
        for _ in range(3)
    ]
    r = client.post(SCAN, json={"tagCode": "T1", "fingerprintId": "F1"}, headers=csrf_headers)

    assert statuses == [200, 200, 429]
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) >= 1
    assert len(service.ledger.list_scans(db, tag.id)) == 2

    # a different device behind the same IP has its own bucket
    other = client.post(SCAN, json={"tagCode": "T1", "fingerprintId": "F2"}, headers=csrf_headers)
    assert other.status_code == 200


def test_storage_failure_is_500_with_request_id(client, csrf_headers, make_tag, db, monkeypatch):
    make_tag("T1")

    def boom():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db, "commit", boom)
    r = client.post(
        SCAN,
        json={"tagCode": "T1", "fingerprintId": "F1"},
        headers={**csrf_headers, "X-Request-Id": "req-500"},
    )

    assert r.status_code == 500
    assert r.json() == {"detail": "Failed to record scan for tag T1", "request_id": "req-500"}


def test_registry_outage_still_records_scan(client, csrf_headers, make_tag, registry):
    make_tag("T1", chain_status=int(ChainStatus.DISTRIBUTED))
    registry.error = ConnectionError("rpc down")

    r = client.post(SCAN, json={"tagCode": "T1", "fingerprintId": "F1"}, headers=csrf_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["scanInfo"]["scanNumber"] == 1
    assert body["blockchainValidation"]["status"] == "unvalidated"
    assert body["blockchainValidation"]["chainStatusLabel"] == "Unvalidated"


# ─────────────────────────────────────────────
# CLAIM
# ─────────────────────────────────────────────


def test_claim_after_scan(client, csrf_headers, make_tag, db, service):
    tag = make_tag("T1")
    client.post(SCAN, json={"tagCode": "T1", "fingerprintId": "F1"}, headers=csrf_headers)

    r = client.post(
        f"{SCAN}/claim",
        json={
            "tagCode": "T1",
            "fingerprintId": "F1",
            "isFirstHand": False,
            "sourceInfo": "Online store (marketplace)",
            "locationName": "Bali",
        },
        headers=csrf_headers,
    )

    assert r.status_code == 200, r.text
    assert r.json()["success"] is True
    (scan,) = service.ledger.list_scans(db, tag.id)
    assert scan.is_claimed is True
    assert scan.is_first_hand is False
    assert scan.source_info == "Online store (marketplace)"
    assert scan.location_name == "Bali"


def test_claim_before_scan_is_400(client, csrf_headers, make_tag):
    make_tag("T1")
    r = client.post(
        f"{SCAN}/claim",
        json={"tagCode": "T1", "fingerprintId": "F1", "isFirstHand": True},
        headers=csrf_headers,
    )
    assert r.status_code == 400
