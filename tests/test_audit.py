"""Tests for the audit recorder and audit log listing."""

from datetime import datetime, timedelta, timezone

import pytest

from arrow_ledger.audit import AuditLogger
from arrow_ledger.errors import Forbidden, ValidationError
from arrow_ledger.models import AuditAction, AuditEntry


T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


async def _store(audit_storage, action, user_id, minutes):
    return await audit_storage.append_entry(
        AuditEntry(action=action, user_id=user_id, timestamp=T0 + timedelta(minutes=minutes))
    )


class TestAuditLogger:
    """Background recording."""

    @pytest.mark.asyncio
    async def test_record_then_flush_persists(self, audit_logger, audit_storage):
        audit_logger.record(AuditEntry(action=AuditAction.LOGIN, user_id="u1"))
        assert audit_logger.pending == 1

        await audit_logger.flush()

        assert audit_logger.pending == 0
        entries = await audit_storage.query_entries()
        assert [entry.action for entry in entries] == [AuditAction.LOGIN]

    @pytest.mark.asyncio
    async def test_log_reports_failure(self):
        class Broken:
            async def append_entry(self, entry):
                raise RuntimeError("quota exceeded")

        logger = AuditLogger(Broken())
        assert await logger.log(AuditEntry(action=AuditAction.LOGIN, user_id="u1")) is False

    @pytest.mark.asyncio
    async def test_without_storage(self):
        logger = AuditLogger()
        assert await logger.log(AuditEntry(action=AuditAction.LOGIN, user_id="u1")) is True
        assert await logger.query() == []
        assert await logger.verify() is True

    @pytest.mark.asyncio
    async def test_login_and_logout(self, audit_logger, audit_storage):
        assert await audit_logger.log_login("u1", meta={"ip": "10.0.0.1"}) is True
        assert await audit_logger.log_logout("u1") is True
        assert audit_logger.pending == 0

        entries = await audit_storage.query_entries(user_id="u1")
        assert {entry.action for entry in entries} == {AuditAction.LOGIN, AuditAction.LOGOUT}
        login = next(entry for entry in entries if entry.action == AuditAction.LOGIN)
        assert login.meta == {"ip": "10.0.0.1"}


class TestAuditQuery:
    """Filtering and ordering of stored entries."""

    @pytest.mark.asyncio
    async def test_newest_first(self, audit_storage):
        await _store(audit_storage, AuditAction.LOGIN, "u1", 0)
        await _store(audit_storage, AuditAction.LOGOUT, "u1", 10)
        await _store(audit_storage, AuditAction.LOGIN, "u2", 5)

        entries = await audit_storage.query_entries()
        assert [entry.timestamp for entry in entries] == [
            T0 + timedelta(minutes=10),
            T0 + timedelta(minutes=5),
            T0,
        ]

    @pytest.mark.asyncio
    async def test_filters(self, audit_storage):
        await _store(audit_storage, AuditAction.LOGIN, "u1", 0)
        await _store(audit_storage, AuditAction.LOGOUT, "u1", 10)
        await _store(audit_storage, AuditAction.LOGIN, "u2", 20)

        assert len(await audit_storage.query_entries(user_id="u1")) == 2
        assert len(await audit_storage.query_entries(action=AuditAction.LOGIN)) == 2
        in_range = await audit_storage.query_entries(
            start=T0 + timedelta(minutes=10),
            end=T0 + timedelta(minutes=20),
        )
        assert len(in_range) == 2

    @pytest.mark.asyncio
    async def test_pagination(self, audit_storage):
        for minute in range(5):
            await _store(audit_storage, AuditAction.LOGIN, "u1", minute)
        second_page = await audit_storage.query_entries(limit=2, offset=2)
        assert [entry.timestamp for entry in second_page] == [
            T0 + timedelta(minutes=2),
            T0 + timedelta(minutes=1),
        ]


class TestListAuditLogs:
    """The admin-only listing on the ledger service."""

    @pytest.mark.asyncio
    async def test_admin_sees_mutations(self, ledger, admin, seed, audit_logger):
        (created,) = await seed(1)
        await ledger.update_transaction(admin, created.id, {"notes": "edited"})
        await audit_logger.flush()

        page = await ledger.list_audit_logs(admin)
        assert [entry.action for entry in page.entries] == [AuditAction.UPDATE, AuditAction.CREATE]
        assert page.page == 1
        assert page.limit == 50

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role_fixture", ["taylor", "dad"])
    async def test_non_admin_forbidden(self, ledger, request, role_fixture):
        actor = request.getfixturevalue(role_fixture)
        with pytest.raises(Forbidden):
            await ledger.list_audit_logs(actor)

    @pytest.mark.asyncio
    async def test_filters_passed_through(self, ledger, admin, audit_storage):
        await _store(audit_storage, AuditAction.LOGIN, "u1", 0)
        await _store(audit_storage, AuditAction.LOGIN, "u2", 30)
        await _store(audit_storage, AuditAction.LOGOUT, "u2", 60)

        page = await ledger.list_audit_logs(
            admin,
            user_id="u2",
            action="login",
            start="2024-05-01T09:15:00",
            end=T0 + timedelta(hours=2),
        )
        assert len(page.entries) == 1
        assert page.entries[0].user_id == "u2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"action": "teleport"},
        {"start": "yesterday"},
        {"end": 12345},
        {"page": 0},
    ])
    async def test_bad_filters(self, ledger, admin, kwargs):
        with pytest.raises(ValidationError):
            await ledger.list_audit_logs(admin, **kwargs)


class TestHashChain:
    """Tamper evidence over the stored entries."""

    @pytest.mark.asyncio
    async def test_chain_intact_after_mutations(self, ledger, admin, seed, audit_logger):
        created = await seed(3)
        await ledger.delete_transaction(admin, created[0].id)
        await audit_logger.flush()
        assert await audit_logger.verify() is True

    @pytest.mark.asyncio
    async def test_edited_entry_detected(self, audit_storage, audit_logger):
        await _store(audit_storage, AuditAction.LOGIN, "u1", 0)
        await _store(audit_storage, AuditAction.LOGOUT, "u1", 1)
        assert await audit_logger.verify() is True

        audit_storage._entries[0] = audit_storage._entries[0].model_copy(update={"user_id": "u9"})
        assert await audit_logger.verify() is False

    @pytest.mark.asyncio
    async def test_first_entry_links_to_genesis(self, audit_storage):
        from arrow_ledger.models.audit import GENESIS_HASH

        stored = await _store(audit_storage, AuditAction.LOGIN, "u1", 0)
        assert stored.previous_hash == GENESIS_HASH
        assert stored.entry_hash == stored.compute_hash(GENESIS_HASH)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
