import pytest


@pytest.mark.asyncio
async def test_health_ok(client):
    r = await client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert "checks" in j and "version" in j
    assert j["checks"]["settings"]["ok"] is True


@pytest.mark.asyncio
async def test_ready_checks_database(client):
    r = await client.get("/ready")
    assert r.status_code == 200
    j = r.json()
    assert j["ready"] is True
    assert j["checks"]["db"]["dialect"] == "sqlite"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    r = await client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["x-request-id"] == "abc-123"


@pytest.mark.asyncio
async def test_unknown_route_is_problem_json(client):
    r = await client.get("/api/nope")
    assert r.status_code == 404
    assert r.headers["content-type"].startswith("application/problem+json")
