"""
Storefront Backend — Featured Products and Health Tests
=========================================================

What we test:
    ✅ Public listing (empty list is [], ordered by position, inactive hidden)
    ✅ Create/update/delete require manage:products
    ✅ Each mutation writes one audit record with before/after snapshots
    ✅ Duplicate Printify product → 409; unknown ID → 404
    ✅ Health check reports database and circuit breaker state
"""

import uuid

import pytest
import pytest_asyncio


def product(printify_id: str = "pf-1", **overrides) -> dict:
    body = {"printifyProductId": printify_id, "title": "Classic Tee", "price": 2500}
    body.update(overrides)
    return body


@pytest_asyncio.fixture
async def admin_headers(make_user, login):
    await make_user("admin@example.com", role="admin")
    return await login("admin@example.com")


class TestFeaturedProducts:
    @pytest.mark.asyncio
    async def test_empty_list_is_array(self, client):
        response = await client.get("/api/featured-products")
        assert response.status_code == 200
        assert response.json()["data"] == []

    @pytest.mark.asyncio
    async def test_create_and_audit(self, client, admin_headers, audit_rows):
        response = await client.post("/api/featured-products", headers=admin_headers, json=product())
        data = response.json()["data"]
        assert response.status_code == 201
        assert data["printifyProductId"] == "pf-1"
        assert data["isActive"] is True

        rows = [r for r in await audit_rows() if r.entity_type == "FeaturedProduct"]
        assert len(rows) == 1
        assert rows[0].action == "CREATE"
        assert rows[0].entity_id == data["id"]
        assert rows[0].old_values is None
        assert rows[0].new_values["title"] == "Classic Tee"

    @pytest.mark.asyncio
    async def test_customer_cannot_create(self, client, make_user, login, audit_rows):
        await make_user()
        headers = await login("shopper@example.com")
        response = await client.post("/api/featured-products", headers=headers, json=product())
        assert response.status_code == 403

        rows = [r for r in await audit_rows() if r.entity_type == "FeaturedProduct"]
        assert len(rows) == 1
        assert rows[0].status == "warning"

    @pytest.mark.asyncio
    async def test_listing_order_and_visibility(self, client, admin_headers):
        await client.post("/api/featured-products", headers=admin_headers, json=product("pf-b", position=2))
        await client.post("/api/featured-products", headers=admin_headers, json=product("pf-a", position=1))
        await client.post(
            "/api/featured-products", headers=admin_headers, json=product("pf-x", position=0, isActive=False)
        )

        public = (await client.get("/api/featured-products")).json()["data"]
        assert [p["printifyProductId"] for p in public] == ["pf-a", "pf-b"]

        everything = (
            await client.get("/api/featured-products", params={"includeInactive": "true"})
        ).json()["data"]
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_update_records_before_and_after(self, client, admin_headers, audit_rows):
        created = (await client.post("/api/featured-products", headers=admin_headers, json=product())).json()["data"]

        response = await client.put(
            f"/api/featured-products/{created['id']}", headers=admin_headers, json={"price": 1999}
        )
        assert response.status_code == 200
        assert response.json()["data"]["price"] == 1999
        assert response.json()["data"]["title"] == "Classic Tee"

        updates = await audit_rows("UPDATE")
        assert len(updates) == 1
        assert updates[0].old_values["price"] == 2500
        assert updates[0].new_values["price"] == 1999

    @pytest.mark.asyncio
    async def test_delete(self, client, admin_headers, audit_rows):
        created = (await client.post("/api/featured-products", headers=admin_headers, json=product())).json()["data"]

        response = await client.delete(f"/api/featured-products/{created['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {}

        missing = await client.get(f"/api/featured-products/{created['id']}")
        assert missing.status_code == 404

        deletes = await audit_rows("DELETE")
        assert len(deletes) == 1
        assert deletes[0].old_values["printifyProductId"] == "pf-1"

    @pytest.mark.asyncio
    async def test_duplicate_conflicts(self, client, admin_headers):
        await client.post("/api/featured-products", headers=admin_headers, json=product())
        response = await client.post("/api/featured-products", headers=admin_headers, json=product())
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_id(self, client):
        response = await client.get(f"/api/featured-products/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["data"] == {}

    @pytest.mark.asyncio
    async def test_entity_history_via_audit_api(self, client, admin_headers):
        created = (await client.post("/api/featured-products", headers=admin_headers, json=product())).json()["data"]
        await client.put(f"/api/featured-products/{created['id']}", headers=admin_headers, json={"position": 3})

        response = await client.get(
            f"/api/audit/entity/FeaturedProduct/{created['id']}", headers=admin_headers
        )
        assert [r["action"] for r in response.json()["data"]] == ["UPDATE", "CREATE"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/api/health")
        data = response.json()["data"]
        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["upstreams"] == {"printify": "closed", "stripe": "closed"}

    @pytest.mark.asyncio
    async def test_degraded_when_circuit_open(self, client, services):
        services.printify.circuit_breaker.state = "open"
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_unhealthy_when_database_down(self, client, services):
        async def broken_ping():
            raise ConnectionError("database gone")

        services.database.ping = broken_ping
        response = await client.get("/api/health")
        body = response.json()
        assert response.status_code == 503
        assert body["success"] is False
        assert body["error"] == "Service unhealthy"
        assert body["data"]["status"] == "unhealthy"
        assert body["data"]["database"] == "disconnected"
