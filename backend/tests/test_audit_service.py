"""
Storefront Backend — Audit Recorder Tests
===========================================

What we test:
    ✅ Action, entity and outcome derivation from method, path and status
    ✅ Which requests are auditable (exclusions, GET toggle)
    ✅ Records are sanitized before storage
    ✅ create() returns None instead of raising when storage fails
    ✅ An explicit record marks the request context
    ✅ Filtered queries, entity history and user history
"""

from datetime import datetime, timedelta, timezone

import pytest

from storefront.context import RequestContext
from storefront.database import Database
from storefront.services.audit_service import (
    AuditAction,
    AuditFilters,
    AuditRecorder,
    AuditSeverity,
    AuditStatus,
    EntityType,
    action_for_method,
    entity_name,
    extract_entity_info,
    outcome_for_status,
    record_to_dict,
    should_audit,
    singularize,
)


class TestDerivation:
    @pytest.mark.parametrize(
        "word, expected",
        [("products", "product"), ("categories", "category"), ("address", "address"), ("user", "user")],
    )
    def test_singularize(self, word, expected):
        assert singularize(word) == expected

    def test_entity_name_pascal_cases_kebab(self):
        assert entity_name("featured-products") == "FeaturedProduct"
        assert entity_name("order_items") == "OrderItem"

    def test_extract_entity_info(self):
        assert extract_entity_info("/api/featured-products/42") == ("FeaturedProduct", "42")
        assert extract_entity_info("/api/users") == ("User", None)
        assert extract_entity_info("/api/orders/7?expand=items") == ("Order", "7")
        assert extract_entity_info("/api") == ("Unknown", None)

    def test_action_for_method(self):
        assert action_for_method("post") == AuditAction.CREATE
        assert action_for_method("PATCH") == AuditAction.UPDATE
        assert action_for_method("DELETE") == AuditAction.DELETE
        assert action_for_method("OPTIONS") is None

    @pytest.mark.parametrize(
        "status_code, outcome",
        [
            (201, (AuditStatus.SUCCESS, AuditSeverity.LOW)),
            (404, (AuditStatus.WARNING, AuditSeverity.MEDIUM)),
            (503, (AuditStatus.FAILURE, AuditSeverity.HIGH)),
        ],
    )
    def test_outcome_for_status(self, status_code, outcome):
        assert outcome_for_status(status_code) == outcome


class TestShouldAudit:
    def test_mutations_audited(self):
        for method in ("POST", "PUT", "PATCH", "DELETE"):
            assert should_audit(method, "/api/featured-products")

    def test_get_only_when_enabled(self):
        assert not should_audit("GET", "/api/users")
        assert should_audit("GET", "/api/users", audit_get_requests=True)

    def test_excluded_prefixes(self):
        excluded = ["/api/health", "/static"]
        assert not should_audit("POST", "/api/health", excluded)
        assert not should_audit("POST", "/static/app.js", excluded)
        assert should_audit("POST", "/api/healthcare", excluded)


class TestRecorderCreate:
    @pytest.mark.asyncio
    async def test_create_sanitizes_and_fills_from_context(self, database):
        recorder = AuditRecorder(database)
        ctx = RequestContext(method="POST", path="/api/users", ip_address="10.0.0.1", user_agent="pytest")
        ctx.user_id = "user-1"

        record = await recorder.create(
            AuditAction.CREATE,
            EntityType.USER,
            "42",
            new_values={"email": "a@b.c", "password": "secret"},
            ctx=ctx,
        )

        assert record is not None
        assert record.new_values == {"email": "a@b.c", "password": "[REDACTED]"}
        assert record.user_id == "user-1"
        assert record.ip_address == "10.0.0.1"
        assert record.request_id == ctx.request_id
        assert record.status == "success"
        assert record.severity == "low"
        assert ctx.audit_recorded is True

    @pytest.mark.asyncio
    async def test_accepts_plain_strings(self, database):
        record = await AuditRecorder(database).create("UPDATE", "FeaturedProduct", 7, status="warning")
        assert record.action == "UPDATE"
        assert record.entity_id == "7"
        assert record.status == "warning"

    @pytest.mark.asyncio
    async def test_unknown_action_returns_none(self, database):
        ctx = RequestContext()
        assert await AuditRecorder(database).create("EXPLODE", "User", ctx=ctx) is None
        assert ctx.audit_recorded is False

    @pytest.mark.asyncio
    async def test_storage_failure_returns_none(self):
        """A database without tables must not raise out of the recorder."""
        broken = Database("sqlite+aiosqlite:///:memory:")
        try:
            result = await AuditRecorder(broken).create(AuditAction.CREATE, EntityType.ORDER, "1")
        finally:
            await broken.dispose()
        assert result is None

    @pytest.mark.asyncio
    async def test_login_failed_helper(self, database):
        record = await AuditRecorder(database).log_login_failed("a@b.c", "invalid_password")
        assert record.action == "LOGIN_FAILED"
        assert record.status == "failure"
        assert record.severity == "medium"
        assert record.meta == {"email": "a@b.c", "reason": "invalid_password"}

    @pytest.mark.asyncio
    async def test_system_error_helper(self, database):
        record = await AuditRecorder(database).log_system_error(RuntimeError("disk"), metadata={"job": "cleanup"})
        assert record.severity == "high"
        assert record.meta == {"error": "disk", "errorType": "RuntimeError", "job": "cleanup"}


class TestRecorderQueries:
    async def _seed(self, recorder: AuditRecorder):
        await recorder.create(AuditAction.CREATE, EntityType.FEATURED_PRODUCT, "p1", user_id="u1")
        await recorder.create(AuditAction.UPDATE, EntityType.FEATURED_PRODUCT, "p1", user_id="u2")
        await recorder.create(
            AuditAction.LOGIN_FAILED, EntityType.USER,
            status=AuditStatus.FAILURE, severity=AuditSeverity.MEDIUM,
        )

    @pytest.mark.asyncio
    async def test_filters_and_total(self, database):
        recorder = AuditRecorder(database)
        await self._seed(recorder)
        async with database.session() as db:
            records, total = await recorder.get_audit_records(
                db, AuditFilters(entity_type="FeaturedProduct"), page=1, limit=1
            )
            assert total == 2
            assert len(records) == 1

            failures, total = await recorder.get_audit_records(db, AuditFilters(status="failure"))
            assert total == 1
            assert failures[0].action == "LOGIN_FAILED"

    @pytest.mark.asyncio
    async def test_date_range(self, database):
        recorder = AuditRecorder(database)
        await self._seed(recorder)
        future = datetime.now(timezone.utc) + timedelta(days=1)
        async with database.session() as db:
            _, total = await recorder.get_audit_records(db, AuditFilters(start_date=future))
        assert total == 0

    @pytest.mark.asyncio
    async def test_sort_order(self, database):
        recorder = AuditRecorder(database)
        await self._seed(recorder)
        async with database.session() as db:
            oldest_first, _ = await recorder.get_audit_records(db, sort_order="asc")
        assert oldest_first[0].action == "CREATE"

    @pytest.mark.asyncio
    async def test_entity_and_user_history(self, database):
        recorder = AuditRecorder(database)
        await self._seed(recorder)
        async with database.session() as db:
            history = await recorder.get_entity_history(db, "FeaturedProduct", "p1")
            by_user = await recorder.get_user_action_history(db, "u2")
        assert [r.action for r in history] == ["UPDATE", "CREATE"]
        assert [r.action for r in by_user] == ["UPDATE"]

    @pytest.mark.asyncio
    async def test_record_to_dict_is_camel_case(self, database):
        record = await AuditRecorder(database).create(AuditAction.DELETE, EntityType.ORDER, "o1")
        data = record_to_dict(record)
        assert data["entityType"] == "Order"
        assert data["entityId"] == "o1"
        assert "createdAt" in data
