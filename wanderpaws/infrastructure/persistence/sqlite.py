import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional

from ...domain.errors import (
    ConditionNotMet,
    DuplicatePayment,
    StoreUnavailable,
    SubscriptionNotFound,
)
from ...domain.models import PaymentRecord, Plan, Subscription, SubscriptionStatus, User
from ...domain.ports.persistence import (
    PersistenceGateway,
    SubscriptionMutation,
    SubscriptionPredicate,
)

logger = logging.getLogger(__name__)


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway.

    Conditional updates run under ``BEGIN IMMEDIATE`` so the read-check-write
    sequence holds the database write lock, which also serialises separate
    processes sharing the same file.
    """

    def __init__(self, path: Path, timeout: float = 30.0) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False, timeout=timeout)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS plans (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    walk_credits INTEGER NOT NULL CHECK (walk_credits > 0),
                    walk_duration INTEGER NOT NULL,
                    price INTEGER NOT NULL CHECK (price >= 0),
                    validity_period INTEGER NOT NULL CHECK (validity_period > 0),
                    is_active INTEGER NOT NULL DEFAULT 1,
                    discount_percentage INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    plan_id TEXT NOT NULL,
                    plan_name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    purchase_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    total_credits INTEGER NOT NULL,
                    credits_remaining INTEGER NOT NULL
                        CHECK (credits_remaining >= 0 AND credits_remaining <= total_credits),
                    purchase_amount INTEGER NOT NULL,
                    walk_duration INTEGER NOT NULL,
                    payment_reference TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_id
                    ON subscriptions(user_id);

                CREATE INDEX IF NOT EXISTS idx_subscriptions_status
                    ON subscriptions(status);

                CREATE TABLE IF NOT EXISTS payments (
                    reference TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    amount INTEGER,
                    subscription_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def close(self) -> None:
        self._conn.close()

    # PlanRepository API -----------------------------------------------------
    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._guard(), self._lock:
            cur = self._conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,))
            row = cur.fetchone()
        return self._row_to_plan(row) if row else None

    def list_plans(self, active_only: bool = False) -> List[Plan]:
        query = "SELECT * FROM plans"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY price ASC, id ASC"
        with self._guard(), self._lock:
            rows = self._conn.execute(query).fetchall()
        return [self._row_to_plan(row) for row in rows]

    def save_plan(self, plan: Plan) -> Plan:
        now = self._now()
        with self._write_transaction() as conn:
            conn.execute(
                """
                INSERT INTO plans (
                    id, name, description, walk_credits, walk_duration, price,
                    validity_period, is_active, discount_percentage, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    walk_credits = excluded.walk_credits,
                    walk_duration = excluded.walk_duration,
                    price = excluded.price,
                    validity_period = excluded.validity_period,
                    is_active = excluded.is_active,
                    discount_percentage = excluded.discount_percentage,
                    updated_at = excluded.updated_at
                """,
                (
                    plan.id,
                    plan.name,
                    plan.description,
                    plan.walk_credits,
                    plan.walk_duration,
                    plan.price,
                    plan.validity_period,
                    int(plan.is_active),
                    plan.discount_percentage,
                    self._format(plan.created_at) if plan.created_at else now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM plans WHERE id = ?", (plan.id,)).fetchone()
        return self._row_to_plan(row)

    # SubscriptionRepository API ---------------------------------------------
    def insert_subscription(
        self, subscription: Subscription, payment: Optional[PaymentRecord] = None
    ) -> Subscription:
        now = self._now()
        with self._write_transaction() as conn:
            if payment is not None:
                self._claim_payment(conn, payment)
            conn.execute(
                """
                INSERT INTO subscriptions (
                    id, plan_id, plan_name, user_id, owner_id, status, purchase_date,
                    end_date, total_credits, credits_remaining, purchase_amount,
                    walk_duration, payment_reference, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subscription.id,
                    subscription.plan_id,
                    subscription.plan_name,
                    subscription.user_id,
                    subscription.owner_id,
                    subscription.status.value,
                    self._format(subscription.purchase_date),
                    self._format(subscription.end_date),
                    subscription.total_credits,
                    subscription.credits_remaining,
                    subscription.purchase_amount,
                    subscription.walk_duration,
                    subscription.payment_reference,
                    self._format(subscription.created_at) if subscription.created_at else now,
                    self._format(subscription.updated_at) if subscription.updated_at else now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription.id,)
            ).fetchone()
        return self._row_to_subscription(row)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._guard(), self._lock:
            cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def update_subscription_conditional(
        self,
        subscription_id: str,
        predicate: SubscriptionPredicate,
        mutation: SubscriptionMutation,
    ) -> Subscription:
        # Only status, end_date, credits_remaining and updated_at are mutable.
        with self._write_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            ).fetchone()
            if not row:
                raise SubscriptionNotFound(subscription_id)
            current = self._row_to_subscription(row)
            if not predicate(current):
                raise ConditionNotMet(current)
            updated = mutation(current)
            conn.execute(
                """
                UPDATE subscriptions
                SET status = ?, end_date = ?, credits_remaining = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.status.value,
                    self._format(updated.end_date),
                    updated.credits_remaining,
                    self._format(updated.updated_at) if updated.updated_at else self._now(),
                    subscription_id,
                ),
            )
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            ).fetchone()
        return self._row_to_subscription(row)

    def find_subscriptions_by_user(self, user_id: str) -> List[Subscription]:
        with self._guard(), self._lock:
            rows = self._conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY purchase_date DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def find_subscriptions_by_status(self, status: SubscriptionStatus) -> List[Subscription]:
        with self._guard(), self._lock:
            rows = self._conn.execute(
                "SELECT * FROM subscriptions WHERE status = ? ORDER BY end_date ASC",
                (status.value,),
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    # PaymentRepository API --------------------------------------------------
    def record_payment(self, record: PaymentRecord) -> bool:
        with self._write_transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO payments (
                    reference, status, amount, subscription_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.reference,
                    record.status,
                    record.amount,
                    record.subscription_id,
                    self._format(record.created_at),
                    self._format(record.updated_at),
                ),
            )
            return cur.rowcount == 1

    def _claim_payment(self, conn: sqlite3.Connection, payment: PaymentRecord) -> None:
        existing = conn.execute(
            "SELECT status, subscription_id FROM payments WHERE reference = ?",
            (payment.reference,),
        ).fetchone()
        if existing and (existing["subscription_id"] or existing["status"] == "succeeded"):
            raise DuplicatePayment(payment.reference)
        conn.execute(
            """
            INSERT INTO payments (
                reference, status, amount, subscription_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(reference) DO UPDATE SET
                status = excluded.status,
                amount = excluded.amount,
                subscription_id = excluded.subscription_id,
                updated_at = excluded.updated_at
            """,
            (
                payment.reference,
                payment.status,
                payment.amount,
                payment.subscription_id,
                self._format(payment.created_at),
                self._format(payment.updated_at),
            ),
        )

    def update_payment(
        self,
        reference: str,
        *,
        status: str,
        subscription_id: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        updates = ["status = ?", "updated_at = ?"]
        params: List[Any] = [status, self._now()]
        if subscription_id is not None:
            updates.append("subscription_id = ?")
            params.append(subscription_id)
        params.append(reference)
        with self._write_transaction() as conn:
            conn.execute(f"UPDATE payments SET {', '.join(updates)} WHERE reference = ?", params)
            row = conn.execute("SELECT * FROM payments WHERE reference = ?", (reference,)).fetchone()
        return self._row_to_payment(row) if row else None

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        with self._guard(), self._lock:
            row = self._conn.execute(
                "SELECT * FROM payments WHERE reference = ?", (reference,)
            ).fetchone()
        return self._row_to_payment(row) if row else None

    # UserRepository API ----------------------------------------------------
    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._guard(), self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE email = ?", (email.lower(),))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        with self._guard(), self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def create_user(self, email: str, password_hash: str) -> User:
        normalized = email.lower()
        now = self._now()
        with self._write_transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO users (email, password_hash, is_active, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?)
                """,
                (normalized, password_hash, now, now),
            )
            row = conn.execute("SELECT * FROM users WHERE id = ?", (cur.lastrowid,)).fetchone()
        if not row:
            raise RuntimeError("Failed to persist user.")
        return self._row_to_user(row)

    # Helpers ----------------------------------------------------------------
    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            logger.error("SQLite operation failed: %s", exc)
            raise StoreUnavailable("Database is unavailable.") from exc

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        with self._guard(), self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.rollback()
                raise
            self._conn.commit()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _format(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        result = datetime.fromisoformat(value)
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _row_to_plan(self, row: sqlite3.Row) -> Plan:
        return Plan(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            walk_credits=row["walk_credits"],
            walk_duration=row["walk_duration"],
            price=row["price"],
            validity_period=row["validity_period"],
            is_active=bool(row["is_active"]),
            discount_percentage=row["discount_percentage"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            plan_id=row["plan_id"],
            plan_name=row["plan_name"],
            user_id=row["user_id"],
            owner_id=row["owner_id"],
            status=SubscriptionStatus(row["status"]),
            purchase_date=self._parse_datetime(row["purchase_date"]),
            end_date=self._parse_datetime(row["end_date"]),
            total_credits=row["total_credits"],
            credits_remaining=row["credits_remaining"],
            purchase_amount=row["purchase_amount"],
            walk_duration=row["walk_duration"],
            payment_reference=row["payment_reference"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_payment(self, row: sqlite3.Row) -> PaymentRecord:
        return PaymentRecord(
            reference=row["reference"],
            status=row["status"],
            amount=row["amount"],
            subscription_id=row["subscription_id"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_active=bool(row["is_active"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )
