"""
Ordered Ledger Service

The core of Arrow Ledger. Every read and write of transactions goes
through here.

DISPLAY ORDER: rank descending. A new transaction gets max(rank) + 1 and
so shows up first; reorder gives position 0 of the new order rank N.
List, the reorder concurrency check and the Conflict payload all speak
this one order.

DESIGN DECISIONS:
- Mutations run inside storage.atomic(), so a concurrent reader never
  sees a half-written ledger (in particular, never a staged rank).
- Update is all-or-nothing: one forbidden protected field rejects the
  whole request.
- Reorder uses optimistic concurrency: the caller says which order it
  saw, and loses with Conflict if that is stale. No server-side retry.
- Audit recording happens after the write and can never undo it.
"""

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from arrow_ledger.audit import AuditLogger, diff_snapshots
from arrow_ledger.auth import can_edit_field, denied_fields, require_mutation_role, require_role
from arrow_ledger.config import LedgerSettings, get_settings
from arrow_ledger.errors import Conflict, Forbidden, InternalError, NotFound, ValidationError
from arrow_ledger.models.audit import AuditAction, AuditEntryBuilder, AuditPage
from arrow_ledger.models.identity import Actor, Role
from arrow_ledger.models.transaction import (
    AggregateRow,
    ConfirmationField,
    ReorderResult,
    Transaction,
    TransactionCategory,
    TransactionChanges,
    TransactionPage,
    order_token,
    parse_ledger_date,
    to_utc_midnight,
    utc_now,
)
from arrow_ledger.queries import LedgerAggregator
from arrow_ledger.services.storage import StorageError, TransactionStorageInterface


def _pydantic_message(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "value"
    return f"{location}: {first.get('msg', 'invalid value')}"


class LedgerService:
    """
    Ordered, audited transaction ledger.

    Exposes the eight core operations consumed by the HTTP layer:
    list_transactions, create_transaction, update_transaction,
    set_checkbox, delete_transaction, reorder, aggregate, list_audit_logs.
    """

    def __init__(
        self,
        storage: TransactionStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._aggregator = LedgerAggregator(storage)
        self._settings = settings or get_settings().ledger
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        """Turn storage failures into InternalError, logging the cause."""
        try:
            yield
        except StorageError as e:
            self._logger.error("storage_failure", operation=operation, error=str(e))
            raise InternalError("Unexpected error") from e

    def _parse_date_filter(self, value: Optional[str], name: str) -> Optional[datetime]:
        if value is None or value == "":
            return None
        try:
            return parse_ledger_date(value)
        except ValueError:
            raise ValidationError(f"Invalid {name}")

    def _parse_category(self, value: Union[TransactionCategory, str, None]) -> Optional[TransactionCategory]:
        if value is None or value == "":
            return None
        try:
            return TransactionCategory(value)
        except ValueError:
            raise ValidationError("Invalid category")

    def _page_window(self, page: Any, limit: Any, default_limit: int) -> tuple[int, int, int]:
        """Validate paging; returns (page, limit, offset). Limit is capped."""
        if limit is None:
            limit = default_limit
        for name, value in (("page", page), ("limit", limit)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(f"Invalid {name}")
        limit = min(limit, self._settings.max_page_size)
        return page, limit, (page - 1) * limit

    def _parse_id(self, value: Union[UUID, str]) -> UUID:
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            raise ValidationError("Invalid transaction id")

    def _parse_ids(self, values: Any, name: str) -> list[UUID]:
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise ValidationError(f"{name} must be a list of ids")
        try:
            return [value if isinstance(value, UUID) else UUID(str(value)) for value in values]
        except ValueError:
            raise ValidationError(f"{name} contains an invalid id")

    # =========================================================================
    # READS
    # =========================================================================

    async def list_transactions(
        self,
        actor: Actor,
        category: Union[TransactionCategory, str, None] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> TransactionPage:
        """
        One page of the ledger in display order, optionally filtered.

        The page's order_token always describes the full, unfiltered order,
        which is what reorder checks against.
        """
        category = self._parse_category(category)
        date_from = self._parse_date_filter(start_date, "startDate")
        date_to = self._parse_date_filter(end_date, "endDate")
        page, limit, offset = self._page_window(page, limit, self._settings.default_page_size)

        with self._storage_errors("list_transactions"):
            async with self._storage.atomic():
                transactions = await self._storage.list_transactions(
                    category=category,
                    date_from=date_from,
                    date_to=date_to,
                    limit=limit,
                    offset=offset,
                )
                total = await self._storage.count_transactions(
                    category=category,
                    date_from=date_from,
                    date_to=date_to,
                )
                full_order = await self._storage.current_order()

        self._logger.debug("transactions_listed", user_id=actor.user_id, count=len(transactions))
        return TransactionPage(
            transactions=transactions,
            page=page,
            limit=limit,
            total=total,
            order_token=order_token(full_order),
        )

    async def aggregate(
        self,
        actor: Actor,
        by: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[AggregateRow]:
        """Grouped sums by "month" or "category"."""
        LedgerAggregator.check_grouping(by)
        date_from = self._parse_date_filter(start_date, "startDate")
        date_to = self._parse_date_filter(end_date, "endDate")

        with self._storage_errors("aggregate"):
            async with self._storage.atomic():
                rows = await self._aggregator.aggregate(by, date_from=date_from, date_to=date_to)

        self._logger.debug("ledger_aggregated", user_id=actor.user_id, by=by, groups=len(rows))
        return rows

    async def list_audit_logs(
        self,
        actor: Actor,
        user_id: Optional[str] = None,
        action: Union[AuditAction, str, None] = None,
        start: Union[datetime, str, None] = None,
        end: Union[datetime, str, None] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> AuditPage:
        """
        Audit entries, newest first. Admin only.

        `start`/`end` are inclusive and accept datetimes or ISO-8601
        strings; naive values are taken as UTC.
        """
        require_role(actor, Role.ADMIN)

        if action is not None and action != "":
            try:
                action = AuditAction(action)
            except ValueError:
                raise ValidationError("Invalid action")
        else:
            action = None
        start = self._parse_instant(start, "startDate")
        end = self._parse_instant(end, "endDate")
        page, limit, offset = self._page_window(page, limit, self._settings.audit_page_size)

        with self._storage_errors("list_audit_logs"):
            entries = await self._audit.query(
                user_id=user_id or None,
                action=action,
                start=start,
                end=end,
                limit=limit,
                offset=offset,
            )
        return AuditPage(entries=entries, page=page, limit=limit)

    def _parse_instant(self, value: Union[datetime, str, None], name: str) -> Optional[datetime]:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                raise ValidationError(f"Invalid {name}")
        if not isinstance(value, datetime):
            raise ValidationError(f"Invalid {name}")
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_transaction(
        self,
        actor: Actor,
        date: Union[str, datetime],
        category: Union[TransactionCategory, str],
        amount: Any,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Add a transaction at the top of the ledger (rank = max + 1).

        `date` is a DD/MM/YYYY string (or a date/datetime from Python
        callers) and is stored as UTC midnight.
        """
        require_mutation_role(actor)
        parsed_date = self._parse_transaction_date(date)

        now = self._clock()
        try:
            # rank is a placeholder until the atomic section picks the real one
            candidate = Transaction(
                date=parsed_date,
                category=category,
                amount=amount,
                notes=notes,
                rank=0,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(_pydantic_message(e))

        with self._storage_errors("create_transaction"):
            async with self._storage.atomic():
                highest = await self._storage.max_rank()
                transaction = candidate.model_copy(update={"rank": (highest or 0) + 1})
                await self._storage.insert_transaction(transaction)

        self._logger.info(
            "transaction_created",
            user_id=actor.user_id,
            transaction_id=str(transaction.id),
            rank=transaction.rank,
        )
        self._audit.record(AuditEntryBuilder.created(
            user_id=actor.user_id,
            after=transaction.to_snapshot(),
            timestamp=now,
        ))
        return transaction

    def _parse_transaction_date(self, value: Any) -> datetime:
        if isinstance(value, str):
            try:
                return parse_ledger_date(value)
            except ValueError:
                raise ValidationError("Invalid date format")
        if isinstance(value, (date, datetime)):
            return to_utc_midnight(value)
        raise ValidationError("Invalid date format")

    async def update_transaction(
        self,
        actor: Actor,
        transaction_id: Union[UUID, str],
        fields: Mapping[str, Any],
    ) -> Transaction:
        """
        Edit any non-rank fields of a transaction.

        Order of checks: payload shape, existence (NotFound), protected
        fields (Forbidden, whole request), field values (ValidationError).
        Nothing is written unless every check passes.
        """
        require_mutation_role(actor)
        if not isinstance(fields, Mapping):
            raise ValidationError("Update payload must be an object")
        if "rank" in fields:
            raise ValidationError("rank can only be changed by reorder")
        if "id" in fields:
            raise ValidationError("id cannot be changed")
        transaction_id = self._parse_id(transaction_id)

        with self._storage_errors("update_transaction"):
            async with self._storage.atomic():
                current = await self._storage.get_transaction(transaction_id)
                if current is None:
                    raise NotFound("Transaction not found")

                denied = denied_fields(fields.keys(), actor.role)
                if denied:
                    self._logger.warning(
                        "update_forbidden",
                        user_id=actor.user_id,
                        role=actor.role.value,
                        fields=denied,
                    )
                    raise Forbidden("Cannot edit checkbox", details={"fields": denied})

                try:
                    changes = TransactionChanges.model_validate(dict(fields))
                except PydanticValidationError as e:
                    raise ValidationError(_pydantic_message(e))

                now = self._clock()
                updated = current.model_copy(
                    update={**changes.present_fields(), "updated_at": now}
                )
                await self._storage.replace_transaction(updated)

        before = current.to_snapshot()
        after = updated.to_snapshot()
        diff = diff_snapshots(before, after)
        self._logger.info(
            "transaction_updated",
            user_id=actor.user_id,
            transaction_id=str(transaction_id),
            fields=sorted(diff),
        )
        self._audit.record(AuditEntryBuilder.updated(
            user_id=actor.user_id,
            before=before,
            after=after,
            diff=diff,
            timestamp=now,
        ))
        return updated

    async def set_checkbox(
        self,
        actor: Actor,
        transaction_id: Union[UUID, str],
        field: str,
        value: bool,
    ) -> Transaction:
        """Set one confirmation checkbox."""
        require_mutation_role(actor)
        transaction_id = self._parse_id(transaction_id)
        try:
            field = ConfirmationField(field).value
        except ValueError:
            raise ValidationError("Invalid checkbox field")
        if not isinstance(value, bool):
            raise ValidationError("Checkbox value must be true or false")
        if not can_edit_field(field, actor.role):
            self._logger.warning(
                "checkbox_forbidden",
                user_id=actor.user_id,
                role=actor.role.value,
                field=field,
            )
            raise Forbidden("Cannot edit checkbox", details={"fields": [field]})

        with self._storage_errors("set_checkbox"):
            async with self._storage.atomic():
                current = await self._storage.get_transaction(transaction_id)
                if current is None:
                    raise NotFound("Transaction not found")

                now = self._clock()
                updated = current.model_copy(update={field: value, "updated_at": now})
                await self._storage.replace_transaction(updated)

        before = current.to_snapshot()
        after = updated.to_snapshot()
        self._audit.record(AuditEntryBuilder.checkbox_changed(
            user_id=actor.user_id,
            before=before,
            after=after,
            diff=diff_snapshots(before, after),
            field=field,
            timestamp=now,
        ))
        return updated

    async def delete_transaction(self, actor: Actor, transaction_id: Union[UUID, str]) -> Transaction:
        """
        Remove a transaction. Remaining ranks keep their gaps until the
        next reorder.

        Returns the deleted transaction.
        """
        require_mutation_role(actor)
        transaction_id = self._parse_id(transaction_id)

        with self._storage_errors("delete_transaction"):
            async with self._storage.atomic():
                current = await self._storage.get_transaction(transaction_id)
                if current is None:
                    raise NotFound("Transaction not found")
                await self._storage.delete_transaction(transaction_id)

        self._logger.info(
            "transaction_deleted",
            user_id=actor.user_id,
            transaction_id=str(transaction_id),
            rank=current.rank,
        )
        self._audit.record(AuditEntryBuilder.deleted(
            user_id=actor.user_id,
            before=current.to_snapshot(),
            timestamp=self._clock(),
        ))
        return current

    async def reorder(
        self,
        actor: Actor,
        expected_order: Optional[Sequence[Union[UUID, str]]],
        new_order: Sequence[Union[UUID, str]],
        expected_token: Optional[str] = None,
    ) -> ReorderResult:
        """
        Replace the whole display order.

        Args:
            expected_order: The full order the caller last saw.
            new_order: The full order the caller wants.
            expected_token: Alternative to expected_order - the
                order_token from list_transactions. Ignored when
                expected_order is given.

        Raises, checked in this order:
            ValidationError: a list is not the size of the whole ledger
            ValidationError: new_order has duplicates or the wrong ids
            Conflict: the ledger changed since the caller read it
            InternalError: storage failed; original ranks were restored
        """
        require_mutation_role(actor)
        if expected_order is None and not expected_token:
            raise ValidationError("expectedOrder and orderedIds required")
        wanted = self._parse_ids(new_order, "orderedIds")
        expected = None if expected_order is None else self._parse_ids(expected_order, "expectedOrder")

        with self._storage_errors("reorder"):
            async with self._storage.atomic():
                rows = await self._storage.list_transactions()
                current = [row.id for row in rows]

                if len(wanted) != len(current) or (
                    expected is not None and len(expected) != len(current)
                ):
                    raise ValidationError(
                        "Cannot reorder when filters are active. Please clear filters first."
                    )
                if len(set(wanted)) != len(wanted):
                    raise ValidationError("Duplicate ids in orderedIds")
                if set(wanted) != set(current):
                    raise ValidationError("Some transactions in orderedIds don't exist")

                stale = (
                    expected != current if expected is not None
                    else expected_token != order_token(current)
                )
                if stale:
                    self._logger.warning("reorder_conflict", user_id=actor.user_id)
                    raise Conflict("Ordering changed", current_order=current)

                original_ranks = [(row.id, row.rank) for row in rows]
                final_ranks = [
                    (transaction_id, len(wanted) - idx)
                    for idx, transaction_id in enumerate(wanted)
                ]
                await self._rewrite_ranks(final_ranks, original_ranks)

        self._logger.info("ledger_reordered", user_id=actor.user_id, size=len(wanted))
        self._audit.record(AuditEntryBuilder.reordered(
            user_id=actor.user_id,
            old_order=current,
            new_order=wanted,
            timestamp=self._clock(),
        ))
        return ReorderResult(ordered_ids=wanted, order_token=order_token(wanted))

    async def _rewrite_ranks(
        self,
        final_ranks: list[tuple[UUID, int]],
        original_ranks: list[tuple[UUID, int]],
    ) -> None:
        """
        Two-phase rank rewrite.

        Phase 1 parks every row at -(offset + idx), a range no live rank
        uses; phase 2 writes the final ranks. On failure the original
        ranks are put back the same way, via a second disjoint range.
        """
        offset = self._settings.rank_staging_offset
        size = len(final_ranks)
        staged = [(transaction_id, -(offset + idx)) for idx, (transaction_id, _) in enumerate(final_ranks)]

        try:
            await self._storage.bulk_update_ranks(staged)
            await self._storage.bulk_update_ranks(final_ranks)
        except StorageError as e:
            self._logger.error("reorder_write_failed", error=str(e))
            restage = [
                (transaction_id, -(offset + size + idx))
                for idx, (transaction_id, _) in enumerate(original_ranks)
            ]
            try:
                await self._storage.bulk_update_ranks(restage)
                await self._storage.bulk_update_ranks(original_ranks)
            except StorageError as restore_error:
                self._logger.critical("reorder_restore_failed", error=str(restore_error))
            raise
