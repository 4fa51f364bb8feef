"""
Storefront Backend — Response Envelope Tests
==============================================

What we test:
    ✅ Collection vs single inference from path, method and data
    ✅ `data` is never null; empty collections become [], singles {}
    ✅ Error envelopes always carry a non-empty `error`
    ✅ Client-facing messages for each kind of error and environment
    ✅ errorDetails only in development
    ✅ Sensitive keys in response data are redacted
    ✅ Framework errors (unknown route, bad input) use the envelope too
"""

import json
import logging

import pytest
from fastapi import HTTPException

from storefront.context import RequestContext
from storefront.exceptions import (
    AuthenticationError,
    DatabaseError,
    NotFoundError,
    RateLimitExceededError,
    WebhookSignatureError,
    ValidationError,
)
from storefront.responses import (
    Envelope,
    Pagination,
    ResourceType,
    ResponseBuilder,
    infer_resource_type,
)


def body_of(response) -> dict:
    return json.loads(response.body)


class TestInferResourceType:
    @pytest.mark.parametrize(
        "path",
        ["/api/users", "/api/featured-products", "/api/orders/search", "/api/catalog/all"],
    )
    def test_plural_get_is_collection(self, path):
        assert infer_resource_type(path, "GET") == ResourceType.COLLECTION

    @pytest.mark.parametrize(
        "path",
        [
            "/api/users/42",
            "/api/users/3f2504e0-4f89-11d3-9a0c-0305e82c3301",
            "/api/products/507f1f77bcf86cd799439011",
        ],
    )
    def test_id_segment_is_single(self, path):
        assert infer_resource_type(path, "GET") == ResourceType.SINGLE

    def test_non_get_is_single(self):
        assert infer_resource_type("/api/users", "POST") == ResourceType.SINGLE

    def test_list_data_wins_over_path(self):
        assert infer_resource_type("/api/auth/me", "POST", [1, 2]) == ResourceType.COLLECTION

    def test_query_string_ignored(self):
        assert infer_resource_type("/api/users?page=2", "GET") == ResourceType.COLLECTION

    def test_known_false_positive_is_documented_behaviour(self):
        """Singular words ending in "s" read as collections; callers override explicitly."""
        assert infer_resource_type("/api/status", "GET") == ResourceType.COLLECTION

    def test_root_is_single(self):
        assert infer_resource_type("/", "GET") == ResourceType.SINGLE


class TestEnvelope:
    def test_null_data_rejected(self):
        with pytest.raises(ValueError):
            Envelope(success=True, data=None)

    def test_failure_requires_error(self):
        with pytest.raises(ValueError):
            Envelope(success=False, data={}, error="")

    def test_wire_format_omits_unset_optionals(self):
        wire = Envelope(success=True, data={"a": 1}, request_id="r1").to_wire()
        assert wire == {"success": True, "data": {"a": 1}, "message": None, "error": None, "requestId": "r1"}

    def test_pagination_math(self):
        p = Pagination.build(page=2, limit=10, total=25)
        assert p.total_pages == 3
        assert p.has_next is True
        assert p.has_prev is True
        assert Pagination.build(page=1, limit=10, total=0).total_pages == 0


class TestResponseBuilder:
    def setup_method(self):
        self.builder = ResponseBuilder("test")
        self.ctx = RequestContext(method="GET", path="/api/users")

    def test_empty_collection_becomes_list(self):
        body = body_of(self.builder.success(self.ctx, None, "Users retrieved"))
        assert body["success"] is True
        assert body["data"] == []
        assert body["requestId"] == self.ctx.request_id

    def test_empty_single_becomes_object(self):
        ctx = RequestContext(method="GET", path="/api/users/42")
        body = body_of(self.builder.success(ctx, None))
        assert body["data"] == {}

    def test_explicit_resource_type_overrides(self):
        ctx = RequestContext(method="GET", path="/api/status")
        body = body_of(self.builder.success(ctx, None, resource_type=ResourceType.SINGLE))
        assert body["data"] == {}

    def test_created_is_201_single(self):
        ctx = RequestContext(method="POST", path="/api/products")
        response = self.builder.created(ctx, None)
        assert response.status_code == 201
        assert body_of(response)["data"] == {}

    def test_paginated(self):
        body = body_of(self.builder.paginated(self.ctx, [{"id": 1}], page=1, limit=1, total=3))
        assert body["data"] == [{"id": 1}]
        assert body["pagination"]["totalPages"] == 3
        assert body["pagination"]["hasNext"] is True

    def test_storefront_error_uses_its_status_and_message(self):
        response = self.builder.error(self.ctx, NotFoundError("user", "42"))
        body = body_of(response)
        assert response.status_code == 404
        assert body["success"] is False
        assert body["data"] == {}
        assert "user" in body["error"]

    def test_http_exception_detail_is_client_message(self):
        response = self.builder.error(self.ctx, HTTPException(status_code=405, detail="Method Not Allowed"))
        assert response.status_code == 405
        assert body_of(response)["error"] == "Method Not Allowed"

    def test_plain_message_error(self):
        response = self.builder.error(self.ctx, "Something broke", status_code=400)
        assert body_of(response)["error"] == "Something broke"

    def test_unexpected_error_hidden_in_production(self):
        builder = ResponseBuilder("production")
        body = body_of(builder.error(self.ctx, RuntimeError("db password is hunter2")))
        assert body["error"] == "An unexpected error occurred"
        assert "errorDetails" not in body

    def test_unexpected_error_shown_outside_production(self):
        body = body_of(self.builder.error(self.ctx, RuntimeError("boom")))
        assert body["error"] == "boom"

    def test_database_error_is_generic_everywhere(self):
        body = body_of(self.builder.error(self.ctx, DatabaseError("duplicate key in users_email_key")))
        assert "users_email_key" not in body["error"]

    def test_error_details_only_in_development(self):
        try:
            raise RuntimeError("trace me")
        except RuntimeError as e:
            dev = body_of(ResponseBuilder("development").error(self.ctx, e))
            test = body_of(self.builder.error(self.ctx, e))
        assert any("trace me" in line for line in dev["errorDetails"])
        assert "errorDetails" not in test

    def test_retry_after_header_passthrough(self):
        error = RateLimitExceededError(retry_after=30)
        response = self.builder.error(self.ctx, error, headers={"Retry-After": "30"})
        assert response.status_code == 429
        assert response.headers["retry-after"] == "30"

    def test_validation_error_shape(self):
        response = self.builder.validation_error(self.ctx, {"email": "Invalid email address"})
        body = body_of(response)
        assert response.status_code == 400
        assert body["error"] == "Validation failed"
        assert body["data"] == {"validationErrors": {"email": "Invalid email address"}}

    def test_validation_exception_carries_field_errors(self):
        response = self.builder.error(self.ctx, ValidationError("Unknown role: wizard", field="role"))
        body = body_of(response)
        assert response.status_code == 400
        assert body["error"] == "Unknown role: wizard"
        assert body["data"] == {"validationErrors": {"role": "Unknown role: wizard"}}

    def test_sensitive_keys_redacted_in_data(self):
        ctx = RequestContext(method="GET", path="/api/users/42")
        data = {
            "email": "ada@example.com",
            "password": "hunter22",
            "profile": {"api_key": "sk_live_123", "keywords": ["tee"]},
        }
        body = body_of(self.builder.success(ctx, data))
        assert body["data"] == {
            "email": "ada@example.com",
            "password": "[REDACTED]",
            "profile": {"api_key": "[REDACTED]", "keywords": ["tee"]},
        }
        assert data["password"] == "hunter22"

    def test_access_token_reaches_its_owner(self):
        ctx = RequestContext(method="POST", path="/api/auth/login")
        body = body_of(self.builder.success(ctx, {"accessToken": "abc.def.ghi", "token": "x"}))
        assert body["data"] == {"accessToken": "abc.def.ghi", "token": "[REDACTED]"}

    def test_logs_at_the_error_class_level(self, caplog):
        with caplog.at_level(logging.INFO, logger="storefront.responses"):
            self.builder.error(self.ctx, AuthenticationError("No token provided"))
            self.builder.error(self.ctx, WebhookSignatureError("bad sig"))
        levels = [r.levelno for r in caplog.records if r.name == "storefront.responses"]
        assert levels == [logging.WARNING, logging.ERROR]

    def test_log_records_carry_request_ids(self, caplog):
        with caplog.at_level(logging.INFO, logger="storefront.responses"):
            self.builder.success(self.ctx, [])
        record = caplog.records[-1]
        assert record.fields["request_id"] == self.ctx.request_id
        assert record.fields["correlation_id"] == self.ctx.correlation_id


class TestFrameworkErrors:
    @pytest.mark.asyncio
    async def test_unknown_route_is_enveloped_404(self, client):
        response = await client.get("/api/nope")
        body = response.json()
        assert response.status_code == 404
        assert body["success"] is False
        assert body["error"]
        assert body["data"] == {}
        assert response.headers["x-request-id"] == body["requestId"]

    @pytest.mark.asyncio
    async def test_method_not_allowed_is_enveloped(self, client):
        response = await client.patch("/api/health")
        assert response.status_code == 405
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_request_validation_is_400_with_field_errors(self, client):
        response = await client.post("/api/auth/register", json={"email": "not-an-email"})
        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "Validation failed"
        errors = body["data"]["validationErrors"]
        assert "email" in errors
        assert "password" in errors

    @pytest.mark.asyncio
    async def test_incoming_request_id_is_echoed(self, client):
        response = await client.get("/api/health", headers={"X-Request-ID": "req-123", "X-Correlation-ID": "corr-9"})
        assert response.headers["x-request-id"] == "req-123"
        assert response.headers["x-correlation-id"] == "corr-9"
        assert response.json()["requestId"] == "req-123"

    @pytest.mark.asyncio
    async def test_unsafe_request_id_is_replaced(self, client):
        response = await client.get("/api/health", headers={"X-Request-ID": "bad id <script>"})
        assert response.headers["x-request-id"] != "bad id <script>"
