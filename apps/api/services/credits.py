"""Credit ledger: per-user balances plus an append-only transaction log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import CoreConfig
from models.credit_balance import UserCreditBalance
from models.credit_transaction import TRANSACTION_TYPES, CreditTransaction
from services.errors import DuplicateExternalOrder, PersistenceError

logger = logging.getLogger(__name__)

ACTOR_KINDS = ("system", "webhook", "admin", "user")


@dataclass(frozen=True)
class Actor:
    """Who performed a ledger mutation."""

    kind: str = "system"
    id: Optional[str] = None

    def __post_init__(self):
        if self.kind not in ACTOR_KINDS:
            raise ValueError(f"Unknown actor kind: {self.kind}")

    @classmethod
    def system(cls) -> "Actor":
        return cls("system")

    @classmethod
    def webhook(cls, source: str) -> "Actor":
        return cls("webhook", source)

    @classmethod
    def admin(cls, admin_id: str) -> "Actor":
        return cls("admin", admin_id)

    @classmethod
    def user(cls, user_id: str) -> "Actor":
        return cls("user", user_id)


SYSTEM_ACTOR = Actor.system()


@dataclass(frozen=True)
class LedgerResult:
    success: bool
    new_balance: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_transaction(entry: CreditTransaction, *, include_audit: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": entry.id,
        "type": entry.type,
        "amount": entry.amount,
        "balance_after": entry.balance_after,
        "description": entry.description,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
    if include_audit:
        payload.update(
            {
                "external_order_id": entry.external_order_id,
                "external_product_id": entry.external_product_id,
                "generation_id": entry.generation_id,
                "performed_by": {"kind": entry.performed_by_kind, "id": entry.performed_by_id},
                "metadata": entry.metadata_json,
            }
        )
    return payload


class CreditLedger:
    """Single source of truth for credit balances.

    Every mutation runs in its own transaction on the given session and is
    committed before returning. Balance changes are guarded single-statement
    updates, so the read-check-write against a user's row is atomic on
    Postgres (row lock) and SQLite (database write lock) alike.
    """

    def __init__(self, db: AsyncSession, config: CoreConfig):
        self.db = db
        self.config = config

    # Initialization

    def _insert_if_absent(self, values: Dict[str, Any]):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(UserCreditBalance).values(**values).on_conflict_do_nothing(
                index_elements=[UserCreditBalance.user_id]
            )
        if dialect == "sqlite":
            return sqlite_insert(UserCreditBalance).values(**values).on_conflict_do_nothing(
                index_elements=[UserCreditBalance.user_id]
            )
        return None

    async def _balance_row_exists(self, user_id: str) -> bool:
        result = await self.db.execute(
            select(UserCreditBalance.user_id).where(UserCreditBalance.user_id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def initialize_user(self, user_id: str) -> bool:
        """Create the balance row with the signup bonus. Returns True if this call created it."""
        if await self._balance_row_exists(user_id):
            return False

        bonus = max(int(self.config.signup_bonus_credits), 0)
        now = _utcnow()
        values = {
            "user_id": user_id,
            "balance": bonus,
            "total_purchased": 0,
            "total_used": 0,
            "last_transaction_at": now,
            "created_at": now,
            "updated_at": now,
        }
        try:
            stmt = self._insert_if_absent(values)
            if stmt is not None:
                result = await self.db.execute(stmt.returning(UserCreditBalance.user_id))
                created = result.scalar_one_or_none() is not None
            else:
                try:
                    await self.db.execute(insert(UserCreditBalance).values(**values))
                    created = True
                except IntegrityError:
                    await self.db.rollback()
                    return False

            if created:
                self.db.add(
                    CreditTransaction(
                        user_id=user_id,
                        type="signup_bonus",
                        amount=bonus,
                        balance_after=bonus,
                        description=f"Welcome bonus - {bonus} free credit{'' if bonus == 1 else 's'}",
                        performed_by_kind=SYSTEM_ACTOR.kind,
                        created_at=now,
                    )
                )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError("Failed to initialize credit balance") from exc

        if created:
            logger.info("credits_initialized user=%s bonus=%s", user_id, bonus)
        return created

    # Reads

    async def get_balance(self, user_id: str) -> int:
        await self.initialize_user(user_id)
        try:
            result = await self.db.execute(
                select(UserCreditBalance.balance).where(UserCreditBalance.user_id == user_id)
            )
            return int(result.scalar_one_or_none() or 0)
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to read credit balance") from exc

    async def get_summary(self, user_id: str) -> Dict[str, int]:
        await self.initialize_user(user_id)
        try:
            result = await self.db.execute(
                select(UserCreditBalance)
                .where(UserCreditBalance.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one()
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to read credit balance") from exc
        return {
            "balance": int(row.balance),
            "total_purchased": int(row.total_purchased),
            "total_used": int(row.total_used),
        }

    async def get_balance_row(self, user_id: str) -> Optional[UserCreditBalance]:
        """Read a balance row without initializing it."""
        result = await self.db.execute(
            select(UserCreditBalance)
            .where(UserCreditBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_transactions(self, user_id: str, *, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(max(1, min(int(limit), 100)))
            .offset(max(int(offset), 0))
        )
        return list(result.scalars().all())

    async def find_by_external_order(self, external_order_id: str) -> Optional[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction).where(CreditTransaction.external_order_id == external_order_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def sum_for_generation(self, generation_id: str, entry_type: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.generation_id == generation_id,
                CreditTransaction.type == entry_type,
            )
        )
        return int(result.scalar() or 0)

    # Mutations

    async def _apply(
        self,
        user_id: str,
        delta: int,
        *,
        entry_type: str,
        purchased: int = 0,
        used: int = 0,
        description: Optional[str],
        actor: Actor,
        generation_id: Optional[str] = None,
        external_order_id: Optional[str] = None,
        external_product_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerResult:
        now = _utcnow()
        stmt = (
            update(UserCreditBalance)
            .where(
                UserCreditBalance.user_id == user_id,
                UserCreditBalance.balance + delta >= 0,
            )
            .values(
                balance=UserCreditBalance.balance + delta,
                total_purchased=UserCreditBalance.total_purchased + purchased,
                total_used=UserCreditBalance.total_used + used,
                last_transaction_at=now,
                updated_at=now,
            )
            .returning(UserCreditBalance.balance)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            new_balance = result.scalar_one_or_none()
            if new_balance is None:
                await self.db.rollback()
                current = await self.db.execute(
                    select(UserCreditBalance.balance).where(UserCreditBalance.user_id == user_id)
                )
                return LedgerResult(success=False, new_balance=int(current.scalar_one_or_none() or 0))

            self.db.add(
                CreditTransaction(
                    user_id=user_id,
                    type=entry_type,
                    amount=delta,
                    balance_after=int(new_balance),
                    description=description,
                    external_order_id=external_order_id,
                    external_product_id=external_product_id,
                    generation_id=generation_id,
                    performed_by_kind=actor.kind,
                    performed_by_id=actor.id,
                    metadata_json=metadata,
                    created_at=now,
                )
            )
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if external_order_id:
                raise DuplicateExternalOrder(f"Order {external_order_id} already processed") from exc
            raise PersistenceError("Failed to record credit transaction") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError("Failed to record credit transaction") from exc

        return LedgerResult(success=True, new_balance=int(new_balance))

    async def debit(
        self,
        user_id: str,
        amount: int,
        generation_id: Optional[str],
        description: Optional[str] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> LedgerResult:
        """Subtract credits for usage. Fails without side effects when the balance is short."""
        amount = int(amount)
        if amount <= 0:
            raise ValueError("debit amount must be positive")
        return await self._apply(
            user_id,
            -amount,
            entry_type="usage",
            used=amount,
            description=description or "Logo generation",
            actor=actor,
            generation_id=generation_id,
        )

    async def credit(
        self,
        user_id: str,
        amount: int,
        entry_type: str,
        *,
        description: Optional[str] = None,
        actor: Actor = SYSTEM_ACTOR,
        generation_id: Optional[str] = None,
        external_order_id: Optional[str] = None,
        external_product_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerResult:
        """Record a non-usage transaction.

        `adjustment_remove` subtracts `amount` and is refused when it would
        overdraw the balance; every other type adds `amount`.
        """
        if entry_type not in TRANSACTION_TYPES or entry_type == "usage":
            raise ValueError(f"Unsupported credit transaction type: {entry_type}")
        amount = int(amount)
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        delta = -amount if entry_type == "adjustment_remove" else amount

        await self.initialize_user(user_id)
        result = await self._apply(
            user_id,
            delta,
            entry_type=entry_type,
            purchased=amount if entry_type == "purchase" else 0,
            description=description or f"{'Removed' if delta < 0 else 'Added'} {amount} credits",
            actor=actor,
            generation_id=generation_id,
            external_order_id=external_order_id,
            external_product_id=external_product_id,
            metadata=metadata,
        )
        if result.success:
            logger.info(
                "credits_%s user=%s amount=%s balance=%s actor=%s",
                entry_type,
                user_id,
                delta,
                result.new_balance,
                actor.kind,
            )
        return result
