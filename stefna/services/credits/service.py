"""
Credit ledger: reserve / finalize / refund of per-user balances, idempotent by request id.

Each operation is its own transaction. Balance changes go through guarded UPDATEs
(balance >= amount, status == reserved) so concurrent requests cannot lose updates;
a duplicate reservation is stopped by the (user_id, request_id) unique constraint,
and rolling back that transaction also rolls back its balance decrement.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stefna.core.config import settings
from stefna.models.credit_account import CreditAccount
from stefna.models.ledger_entry import (
    LEDGER_COMPLETED,
    LEDGER_REFUNDED,
    LEDGER_RESERVED,
    LedgerEntry,
)
from stefna.services.errors import InsufficientCredits, PersistenceError, ValidationError
from stefna.utils.metrics import balance_rejected_total, ledger_operations_total

logger = logging.getLogger(__name__)


@dataclass
class Reservation:
    entry_id: str
    user_id: str
    request_id: str
    amount: int
    status: str
    replayed: bool = False


class CreditLedger:
    def __init__(self, db: Session, starter_credits: int | None = None):
        self.db = db
        self.starter_credits = settings.starter_credits if starter_credits is None else starter_credits

    def reserve(
        self,
        user_id: str,
        amount: int,
        request_id: str,
        action: str,
        meta: dict[str, Any] | None = None,
    ) -> Reservation:
        """
        Deduct amount and record a `reserved` ledger row in one transaction.
        A request id already reserved or completed returns the existing outcome (replayed=True).
        Raises InsufficientCredits without touching the balance.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not request_id:
            raise ValidationError("request_id is required")
        if amount <= 0:
            raise ValidationError(f"Invalid amount: {amount}")

        existing = self.get_entry(user_id, request_id)
        if existing is not None:
            return self._replay(existing)

        self._ensure_account(user_id)
        now = datetime.now(timezone.utc)
        try:
            result = self.db.execute(
                update(CreditAccount)
                .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
                .values(balance=CreditAccount.balance - amount, updated_at=now)
            )
            if result.rowcount == 0:
                self.db.rollback()
                balance = self.get_balance(user_id)
                balance_rejected_total.inc()
                logger.info(
                    "ledger_insufficient_credits",
                    extra={"user_id": user_id, "request_id": request_id, "amount": amount, "balance": balance},
                )
                raise InsufficientCredits(user_id, balance, amount)
            entry = LedgerEntry(
                user_id=user_id,
                request_id=request_id,
                action=action,
                amount=amount,
                status=LEDGER_RESERVED,
                meta=dict(meta or {}),
                created_at=now,
                updated_at=now,
            )
            self.db.add(entry)
            self.db.commit()
        except IntegrityError:
            # Lost the race to a concurrent reservation with the same request id
            self.db.rollback()
            existing = self.get_entry(user_id, request_id)
            if existing is None:
                raise PersistenceError("Ledger reservation conflicted but no entry found", detail={"request_id": request_id})
            return self._replay(existing)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Ledger reservation failed: {e}", detail={"request_id": request_id}) from e

        ledger_operations_total.labels(operation="reserve").inc()
        logger.info(
            "ledger_reserved",
            extra={"user_id": user_id, "request_id": request_id, "amount": amount},
        )
        return Reservation(
            entry_id=entry.id,
            user_id=user_id,
            request_id=request_id,
            amount=amount,
            status=LEDGER_RESERVED,
        )

    def finalize(
        self,
        user_id: str,
        request_id: str,
        success: bool,
        meta: dict[str, Any] | None = None,
    ) -> bool:
        """
        reserved -> completed (charge stands) or reserved -> refunded (amount credited back).
        Only acts on a row still in `reserved`; returns False when there was nothing to do.
        """
        entry = self.get_entry(user_id, request_id)
        if entry is None:
            logger.warning("ledger_finalize_missing_entry", extra={"user_id": user_id, "request_id": request_id})
            return False
        if entry.status != LEDGER_RESERVED:
            return False

        entry_id = entry.id
        amount = entry.amount
        new_status = LEDGER_COMPLETED if success else LEDGER_REFUNDED
        merged_meta = {**(entry.meta or {}), **(meta or {})}
        now = datetime.now(timezone.utc)
        try:
            result = self.db.execute(
                update(LedgerEntry)
                .where(LedgerEntry.id == entry_id, LedgerEntry.status == LEDGER_RESERVED)
                .values(status=new_status, meta=merged_meta, finalized_at=now, updated_at=now)
            )
            if result.rowcount == 0:
                self.db.rollback()
                return False
            if not success:
                self.db.execute(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id)
                    .values(balance=CreditAccount.balance + amount, updated_at=now)
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Ledger finalize failed: {e}", detail={"request_id": request_id}) from e

        ledger_operations_total.labels(operation="complete" if success else "refund").inc()
        logger.info(
            "ledger_finalized",
            extra={"user_id": user_id, "request_id": request_id, "status": new_status, "amount": amount},
        )
        return True

    def get_balance(self, user_id: str) -> int:
        account = self.db.get(CreditAccount, user_id)
        if account is None:
            return self.starter_credits
        return account.balance

    def get_entry(self, user_id: str, request_id: str) -> LedgerEntry | None:
        return self.db.execute(
            select(LedgerEntry).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.request_id == request_id,
            )
        ).scalar_one_or_none()

    def sweep_stale_reservations(self, max_age_seconds: int | None = None, limit: int = 500) -> int:
        """Refund reservations left `reserved` longer than max_age (crashed or lost workers)."""
        max_age = settings.reservation_max_age_seconds if max_age_seconds is None else max_age_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age)
        stale = self.db.execute(
            select(LedgerEntry.user_id, LedgerEntry.request_id)
            .where(LedgerEntry.status == LEDGER_RESERVED, LedgerEntry.created_at < cutoff)
            .order_by(LedgerEntry.created_at)
            .limit(limit)
        ).all()
        refunded = 0
        for user_id, request_id in stale:
            if self.finalize(user_id, request_id, success=False, meta={"refund_reason": "stale_reservation"}):
                refunded += 1
        if refunded:
            logger.warning("ledger_stale_reservations_refunded", extra={"count": refunded})
        return refunded

    def _replay(self, entry: LedgerEntry) -> Reservation:
        if entry.status == LEDGER_REFUNDED:
            raise ValidationError(
                "Request id was already used and refunded",
                detail={"request_id": entry.request_id},
            )
        ledger_operations_total.labels(operation="replay").inc()
        return Reservation(
            entry_id=entry.id,
            user_id=entry.user_id,
            request_id=entry.request_id,
            amount=entry.amount,
            status=entry.status,
            replayed=True,
        )

    def _ensure_account(self, user_id: str) -> None:
        if self.db.get(CreditAccount, user_id) is not None:
            return
        try:
            self.db.add(CreditAccount(user_id=user_id, balance=self.starter_credits))
            self.db.commit()
            logger.info("credit_account_created", extra={"user_id": user_id, "balance": self.starter_credits})
        except IntegrityError:
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not create credit account: {e}") from e
