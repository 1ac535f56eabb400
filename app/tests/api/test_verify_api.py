from app.models.enums import ChainStatus

VERIFY = "/api/v1/verify"


def test_verify_requires_code(client):
    r = client.get(VERIFY)
    assert r.status_code == 400
    assert r.json()["detail"] == "Tag code is required."
    assert client.get(VERIFY, params={"code": "   "}).status_code == 400


def test_verify_unknown_tag_is_404(client):
    assert client.get(VERIFY, params={"code": "NOPE"}).status_code == 404


def test_verify_full_payload(client, make_tag, registry, csrf_headers):
    make_tag("T1", hash_tx="0xfeed", metadata={"distribution_country": "ID", "intended_market": "domestic"})
    registry.set_status("T1", ChainStatus.CLAIMED)
    client.post("/api/v1/scan", json={"tagCode": "T1", "fingerprintId": "F1", "locationName": "Jakarta"}, headers=csrf_headers)

    r = client.get(VERIFY, params={"code": "T1", "lat": -6.2, "lon": 106.8, "location": "Jakarta"})

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["tag"]["distribution"]["intendedMarket"] == "domestic"
    assert body["blockchainMetadata"]["transactionHash"] == "0xfeed"
    assert body["scanStats"]["totalScans"] == 1
    assert body["scanHistory"][0]["locationName"] == "Jakarta"
    assert body["aiAnalysis"]["fromCache"] is True  # computed during the scan
    assert "cacheExpiresAt" in body["aiAnalysis"]


def test_verify_does_not_record(client, make_tag, db, service):
    tag = make_tag("T1")
    client.get(VERIFY, params={"code": "T1"})
    client.get(VERIFY, params={"code": "T1"})
    assert service.ledger.list_scans(db, tag.id) == []


def test_verify_ai_cache_idempotence(client, make_tag, registry, assessor):
    make_tag("T1", metadata={"distribution_country": "ID"})
    registry.set_status("T1", ChainStatus.CLAIMED)

    a = client.get(VERIFY, params={"code": "T1", "location": "Jakarta"}).json()["aiAnalysis"]
    b = client.get(VERIFY, params={"code": "T1", "location": "Jakarta"}).json()["aiAnalysis"]

    assert (a.pop("fromCache"), b.pop("fromCache")) == (False, True)
    assert a == b
    assert len(assessor.calls) == 1


def test_verify_ai_timeout_fallback(client, make_tag, registry, assessor, settings):
    make_tag("T1", metadata={"distribution_country": "ID"})
    registry.set_status("T1", ChainStatus.CLAIMED)
    assessor.delay = settings.ai_timeout_seconds * 5

    r = client.get(VERIFY, params={"code": "T1", "location": "Tokyo"})

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["aiAnalysis"]["fallback"] is True
    assert body["fraudAnalysis"]["overallRisk"] == "medium"
    assert body["fraudAnalysis"]["riskScore"] == 40


def test_verify_revoked(client, make_tag, registry):
    make_tag("T1", chain_status=int(ChainStatus.CLAIMED))
    registry.set_status("T1", ChainStatus.REVOKED)

    body = client.get(VERIFY, params={"code": "T1"}).json()

    assert body["valid"] is False
    assert body["tag"]["isRevoked"] is True
    assert body["blockchainMetadata"] is None
    assert body["fraudAnalysis"]["flags"][0]["type"] == "revoked"


def test_verify_by_hash(client, make_tag, registry):
    h = "0x" + "ab" * 32
    make_tag("T1", chain_hash=h)
    registry.set_status("T1", ChainStatus.DISTRIBUTED, hash_hex=h)
    registry.by_hash[h] = registry.records["T1"]

    r = client.get(f"{VERIFY}/hash/{h}")
    assert r.status_code == 200
    assert r.json()["tagCode"] == "T1"
    assert r.json()["chainStatusLabel"] == "Distributed"

    assert client.get(f"{VERIFY}/hash/0x1234").status_code == 400

    registry.error = ConnectionError("down")
    assert client.get(f"{VERIFY}/hash/{h}").status_code == 503
