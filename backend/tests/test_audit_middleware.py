"""
Storefront Backend — Audit Middleware Tests
=============================================

What we test:
    ✅ A successful POST writes exactly one CREATE record, body redacted
    ✅ Reads are not audited by default
    ✅ 4xx outcomes are recorded as warning/medium
    ✅ Unhandled errors are recorded as failure/high
    ✅ An explicit service record suppresses the generic one
    ✅ Excluded paths are never audited
    ✅ Large bodies are summarized instead of stored
"""

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from storefront.context import RequestContext
from storefront.dependencies import get_responder, get_request_context, get_services
from storefront.exceptions import NotFoundError
from storefront.middleware.audit import summarize_body
from storefront.services.audit_service import AuditAction


@pytest.fixture
def product_routes(app):
    """Throwaway product endpoints exercising the generic audit path."""

    @app.post("/api/products")
    async def create_product(payload: dict, responder=Depends(get_responder)):
        return responder.created({"id": "p-1", "name": payload.get("name")})

    @app.get("/api/products")
    async def list_products(responder=Depends(get_responder)):
        return responder.success([])

    @app.delete("/api/products/{product_id}")
    async def delete_product(product_id: str):
        raise NotFoundError("Product", product_id)

    @app.put("/api/products/{product_id}")
    async def explode(product_id: str):
        raise RuntimeError("storage offline")

    @app.patch("/api/products/{product_id}")
    async def patch_with_explicit_audit(
        product_id: str,
        request_ctx: RequestContext = Depends(get_request_context),
        services=Depends(get_services),
        responder=Depends(get_responder),
    ):
        await services.audit.log_entity_action(
            AuditAction.UPDATE, "Product", product_id,
            old_values={"name": "old"}, new_values={"name": "new"}, ctx=request_ctx,
        )
        return responder.success({"id": product_id})

    return app


class TestSummarizeBody:
    def test_empty(self):
        assert summarize_body(b"", "application/json", 100) is None

    def test_json(self):
        assert summarize_body(b'{"a": 1}', "application/json", 100) == {"a": 1}

    def test_truncated(self):
        assert summarize_body(b"x" * 500, "application/json", 100) == {"_truncated": True, "_size": 500}

    def test_non_json_omitted(self):
        assert summarize_body(b"a=1", "application/x-www-form-urlencoded", 100) is None

    def test_invalid_json_omitted(self):
        assert summarize_body(b"{nope", "application/json", 100) is None


class TestAuditMiddleware:
    @pytest.mark.asyncio
    async def test_create_records_one_redacted_entry(self, product_routes, client, audit_rows):
        response = await client.post("/api/products", json={"name": "Tee", "password": "hunter22"})
        assert response.status_code == 201

        rows = await audit_rows()
        assert len(rows) == 1
        row = rows[0]
        assert row.action == "CREATE"
        assert row.entity_type == "Product"
        assert row.status == "success"
        assert row.severity == "low"
        assert row.new_values == {"name": "Tee", "password": "[REDACTED]"}
        assert row.request_id == response.headers["x-request-id"]
        assert row.meta["statusCode"] == 201

    @pytest.mark.asyncio
    async def test_reads_not_audited(self, product_routes, client, audit_rows):
        response = await client.get("/api/products")
        assert response.status_code == 200
        assert response.json()["data"] == []
        assert await audit_rows() == []

    @pytest.mark.asyncio
    async def test_client_error_is_warning(self, product_routes, client, audit_rows):
        response = await client.delete("/api/products/p-9")
        assert response.status_code == 404

        rows = await audit_rows(AuditAction.DELETE.value)
        assert len(rows) == 1
        assert rows[0].entity_id == "p-9"
        assert rows[0].status == "warning"
        assert rows[0].severity == "medium"

    @pytest.mark.asyncio
    async def test_unhandled_error_is_failure(self, product_routes, audit_rows):
        transport = ASGITransport(app=product_routes, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.put("/api/products/p-1", json={"name": "x"})

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.headers["x-request-id"]

        rows = await audit_rows(AuditAction.UPDATE.value)
        assert len(rows) == 1
        assert rows[0].status == "failure"
        assert rows[0].severity == "high"
        assert rows[0].meta["errorType"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_explicit_record_suppresses_generic(self, product_routes, client, audit_rows):
        response = await client.patch("/api/products/p-1", json={"name": "new"})
        assert response.status_code == 200

        rows = await audit_rows()
        assert len(rows) == 1
        assert rows[0].old_values == {"name": "old"}
        assert rows[0].entity_type == "Product"

    @pytest.mark.asyncio
    async def test_excluded_path_not_audited(self, client, audit_rows):
        await client.post("/api/health")
        assert await audit_rows() == []

    @pytest.mark.asyncio
    async def test_audit_disabled(self, product_routes, client, services, audit_rows):
        services.settings.audit_enabled = False
        await client.post("/api/products", json={"name": "Tee"})
        assert await audit_rows() == []

    @pytest.mark.asyncio
    async def test_large_body_summarized(self, product_routes, client, services, audit_rows):
        limit = services.settings.audit_max_body_size
        await client.post("/api/products", json={"name": "x" * (limit + 10)})
        rows = await audit_rows()
        assert rows[0].new_values["_truncated"] is True
