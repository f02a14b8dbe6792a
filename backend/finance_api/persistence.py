from __future__ import annotations

import unicodedata
from collections.abc import Callable
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import settings
from .errors import ConflictProblem, InternalProblem
from .logging_config import get_logger
from .schemas import TransactionFilters
from .store import store

T = TypeVar("T")

logger = get_logger(__name__)

INCOMPLETE_TRANSFER = "Transfer is incomplete: the paired transaction no longer exists."
DUPLICATE_EMAIL = "Email already registered."

ACCOUNT_FIELDS = {"name", "type", "initial_balance", "color", "icon"}
CATEGORY_FIELDS = {"name", "type", "color"}
SUBCATEGORY_FIELDS = {"name", "color"}
TRANSACTION_FIELDS = {"account_id", "category_id", "subcategory_id", "type", "amount", "date", "description", "notes"}
USER_FIELDS = {"name", "email"}


def fold_text(value: str) -> str:
    """Lower-cased, accent-free form used for text search."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _signed(row: dict[str, Any]) -> Decimal:
    amount = Decimal(str(row["amount"]))
    return amount if row["type"] == "income" else -amount


def _pick(fields: dict[str, Any], allowed: set[str]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k in allowed}


class Persistence:
    # users
    def create_user(self, name: str, email: str, password_hash: str) -> dict[str, Any]:
        raise NotImplementedError

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_password_hash(self, user_id: UUID) -> str | None:
        raise NotImplementedError

    def set_password_hash(self, user_id: UUID, password_hash: str) -> None:
        raise NotImplementedError

    def update_user(self, user_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_user(self, user_id: UUID) -> None:
        raise NotImplementedError

    # accounts
    def insert_account(self, values: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_account(self, account_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_accounts(self, user_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_account(self, account_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_account(self, account_id: UUID) -> None:
        raise NotImplementedError

    def account_has_transactions(self, account_id: UUID) -> bool:
        raise NotImplementedError

    def account_balance_deltas(self, user_id: UUID) -> dict[UUID, Decimal]:
        raise NotImplementedError

    # categories
    def insert_category(self, values: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_category(self, category_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_categories(self, user_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def list_system_categories(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def find_system_category(self, name: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def update_category(self, category_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_category(self, category_id: UUID) -> None:
        raise NotImplementedError

    def category_has_subcategories(self, category_id: UUID) -> bool:
        raise NotImplementedError

    def category_has_transactions(self, category_id: UUID) -> bool:
        raise NotImplementedError

    # subcategories
    def insert_subcategory(self, values: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_subcategory(self, subcategory_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_subcategories(self, category_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_subcategory(self, subcategory_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_subcategory(self, subcategory_id: UUID) -> None:
        raise NotImplementedError

    def subcategory_has_transactions(self, subcategory_id: UUID) -> bool:
        raise NotImplementedError

    # transactions
    def insert_transaction(self, values: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def insert_transactions(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_transaction(self, transaction_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def update_transaction(self, transaction_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_transfer_legs(self, transfer_id: UUID, fields: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    def delete_transaction(self, transaction_id: UUID) -> None:
        raise NotImplementedError

    def delete_transfer(self, transfer_id: UUID) -> int:
        raise NotImplementedError

    def query_transactions(
        self,
        user_id: UUID,
        filters: TransactionFilters,
        sort: str,
        direction: str,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        raise NotImplementedError

    def sum_by_type(self, user_id: UUID, filters: TransactionFilters) -> dict[str, Decimal]:
        raise NotImplementedError

    def expense_totals(self, user_id: UUID, filters: TransactionFilters, group_by: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def list_descriptions(self, user_id: UUID, account_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class InMemoryPersistence(Persistence):
    def create_user(self, name: str, email: str, password_hash: str) -> dict[str, Any]:
        user_id = store.make_id()
        row = {"id": user_id, "name": name, "email": email, "created_at": store.now()}
        store.users[user_id] = row
        store.user_credentials[user_id] = password_hash
        return row

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        return store.users.get(user_id)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        return next((u for u in store.users.values() if u["email"].lower() == email.lower()), None)

    def get_password_hash(self, user_id: UUID) -> str | None:
        return store.user_credentials.get(user_id)

    def set_password_hash(self, user_id: UUID, password_hash: str) -> None:
        store.user_credentials[user_id] = password_hash

    def update_user(self, user_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        row = store.users[user_id].copy()
        row.update(_pick(fields, USER_FIELDS))
        store.users[user_id] = row
        return row

    def delete_user(self, user_id: UUID) -> None:
        store.users.pop(user_id, None)
        store.user_credentials.pop(user_id, None)
        store.transactions = {k: v for k, v in store.transactions.items() if v["user_id"] != user_id}
        store.subcategories = {k: v for k, v in store.subcategories.items() if v["user_id"] != user_id}
        store.categories = {k: v for k, v in store.categories.items() if v.get("user_id") != user_id}
        store.accounts = {k: v for k, v in store.accounts.items() if v["user_id"] != user_id}

    def insert_account(self, values: dict[str, Any]) -> dict[str, Any]:
        row = {"id": store.make_id(), "created_at": store.now(), "updated_at": None, **values}
        store.accounts[row["id"]] = row
        return row

    def get_account(self, account_id: UUID) -> dict[str, Any] | None:
        return store.accounts.get(account_id)

    def list_accounts(self, user_id: UUID) -> list[dict[str, Any]]:
        return sorted((a for a in store.accounts.values() if a["user_id"] == user_id), key=lambda a: a["created_at"])

    def update_account(self, account_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        row = store.accounts[account_id].copy()
        row.update(_pick(fields, ACCOUNT_FIELDS))
        row["updated_at"] = store.now()
        store.accounts[account_id] = row
        return row

    def delete_account(self, account_id: UUID) -> None:
        store.accounts.pop(account_id, None)

    def account_has_transactions(self, account_id: UUID) -> bool:
        return any(tx["account_id"] == account_id for tx in store.transactions.values())

    def account_balance_deltas(self, user_id: UUID) -> dict[UUID, Decimal]:
        totals: dict[UUID, Decimal] = {}
        for tx in store.transactions.values():
            if tx["user_id"] != user_id:
                continue
            totals[tx["account_id"]] = totals.get(tx["account_id"], Decimal("0")) + _signed(tx)
        return totals

    def insert_category(self, values: dict[str, Any]) -> dict[str, Any]:
        row = {"id": store.make_id(), "color": None, "system": False, "created_at": store.now(), "updated_at": None, **values}
        store.categories[row["id"]] = row
        return row

    def get_category(self, category_id: UUID) -> dict[str, Any] | None:
        return store.categories.get(category_id)

    def list_categories(self, user_id: UUID) -> list[dict[str, Any]]:
        rows = [c for c in store.categories.values() if c.get("system") or c.get("user_id") == user_id]
        return sorted(rows, key=lambda c: c["created_at"])

    def list_system_categories(self) -> list[dict[str, Any]]:
        return [c for c in store.categories.values() if c.get("system")]

    def find_system_category(self, name: str) -> dict[str, Any] | None:
        return next(
            (c for c in store.categories.values() if c.get("system") and c.get("user_id") is None and c["name"] == name),
            None,
        )

    def update_category(self, category_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        row = store.categories[category_id].copy()
        row.update(_pick(fields, CATEGORY_FIELDS))
        row["updated_at"] = store.now()
        store.categories[category_id] = row
        return row

    def delete_category(self, category_id: UUID) -> None:
        store.categories.pop(category_id, None)

    def category_has_subcategories(self, category_id: UUID) -> bool:
        return any(s["category_id"] == category_id for s in store.subcategories.values())

    def category_has_transactions(self, category_id: UUID) -> bool:
        return any(tx["category_id"] == category_id for tx in store.transactions.values())

    def insert_subcategory(self, values: dict[str, Any]) -> dict[str, Any]:
        row = {"id": store.make_id(), "created_at": store.now(), "updated_at": None, **values}
        store.subcategories[row["id"]] = row
        return row

    def get_subcategory(self, subcategory_id: UUID) -> dict[str, Any] | None:
        return store.subcategories.get(subcategory_id)

    def list_subcategories(self, category_id: UUID) -> list[dict[str, Any]]:
        rows = [s for s in store.subcategories.values() if s["category_id"] == category_id]
        return sorted(rows, key=lambda s: s["created_at"])

    def update_subcategory(self, subcategory_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        row = store.subcategories[subcategory_id].copy()
        row.update(_pick(fields, SUBCATEGORY_FIELDS))
        row["updated_at"] = store.now()
        store.subcategories[subcategory_id] = row
        return row

    def delete_subcategory(self, subcategory_id: UUID) -> None:
        store.subcategories.pop(subcategory_id, None)

    def subcategory_has_transactions(self, subcategory_id: UUID) -> bool:
        return any(tx.get("subcategory_id") == subcategory_id for tx in store.transactions.values())

    def _new_transaction(self, values: dict[str, Any]) -> dict[str, Any]:
        row = {
            "id": store.make_id(),
            "subcategory_id": None,
            "description": None,
            "notes": None,
            "transfer_id": None,
            "created_at": store.now(),
            "updated_at": None,
            **values,
        }
        row["amount"] = str(row["amount"])
        return row

    def insert_transaction(self, values: dict[str, Any]) -> dict[str, Any]:
        row = self._new_transaction(values)
        store.transactions[row["id"]] = row
        return row

    def insert_transactions(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        created = [self._new_transaction(values) for values in rows]
        for row in created:
            store.transactions[row["id"]] = row
        return created

    def get_transaction(self, transaction_id: UUID) -> dict[str, Any] | None:
        return store.transactions.get(transaction_id)

    def _apply(self, row: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
        updated = row.copy()
        updated.update(_pick(fields, TRANSACTION_FIELDS))
        updated["amount"] = str(updated["amount"])
        updated["updated_at"] = store.now()
        return updated

    def update_transaction(self, transaction_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        row = self._apply(store.transactions[transaction_id], fields)
        store.transactions[transaction_id] = row
        return row

    def update_transfer_legs(self, transfer_id: UUID, fields: dict[str, Any]) -> list[dict[str, Any]]:
        legs = [tx for tx in store.transactions.values() if tx.get("transfer_id") == transfer_id]
        if len(legs) != 2:
            raise ConflictProblem(INCOMPLETE_TRANSFER)
        updated = [self._apply(leg, fields) for leg in legs]
        for row in updated:
            store.transactions[row["id"]] = row
        return updated

    def delete_transaction(self, transaction_id: UUID) -> None:
        store.transactions.pop(transaction_id, None)

    def delete_transfer(self, transfer_id: UUID) -> int:
        leg_ids = [k for k, tx in store.transactions.items() if tx.get("transfer_id") == transfer_id]
        for leg_id in leg_ids:
            del store.transactions[leg_id]
        return len(leg_ids)

    @staticmethod
    def _matches(row: dict[str, Any], user_id: UUID, filters: TransactionFilters) -> bool:
        if row["user_id"] != user_id:
            return False
        if filters.startDate and row["date"] < filters.startDate:
            return False
        if filters.endDate and row["date"] > filters.endDate:
            return False
        if filters.accountId and row["account_id"] != filters.accountId:
            return False
        if filters.categoryId and row["category_id"] != filters.categoryId:
            return False
        if filters.subcategoryId and row.get("subcategory_id") != filters.subcategoryId:
            return False
        if filters.type and row["type"] != filters.type.value:
            return False
        if filters.description and fold_text(filters.description) not in fold_text(row.get("description") or ""):
            return False
        if filters.notes and fold_text(filters.notes) not in fold_text(row.get("notes") or ""):
            return False
        return True

    def _with_names(self, row: dict[str, Any]) -> dict[str, Any]:
        account = store.accounts.get(row["account_id"])
        category = store.categories.get(row["category_id"])
        subcategory = store.subcategories.get(row["subcategory_id"]) if row.get("subcategory_id") else None
        return {
            **row,
            "account_name": account["name"] if account else None,
            "category_name": category["name"] if category else None,
            "subcategory_name": subcategory["name"] if subcategory else None,
        }

    def query_transactions(
        self,
        user_id: UUID,
        filters: TransactionFilters,
        sort: str,
        direction: str,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        rows = [self._with_names(tx) for tx in store.transactions.values() if self._matches(tx, user_id, filters)]
        sort_keys: dict[str, Callable[[dict[str, Any]], Any]] = {
            "date": lambda r: r["date"],
            "amount": lambda r: Decimal(r["amount"]),
            "type": lambda r: r["type"],
            "description": lambda r: (r.get("description") is None, r.get("description") or ""),
            "account": lambda r: (r["account_name"] is None, r["account_name"] or ""),
            "category": lambda r: (r["category_name"] is None, r["category_name"] or ""),
            "subcategory": lambda r: (r["subcategory_name"] is None, r["subcategory_name"] or ""),
        }
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        rows.sort(key=sort_keys.get(sort, sort_keys["date"]), reverse=direction == "desc")
        return rows[offset : offset + limit], len(rows)

    def sum_by_type(self, user_id: UUID, filters: TransactionFilters) -> dict[str, Decimal]:
        totals = {"income": Decimal("0"), "expense": Decimal("0")}
        for tx in store.transactions.values():
            if self._matches(tx, user_id, filters):
                totals[tx["type"]] += Decimal(tx["amount"])
        return totals

    def expense_totals(self, user_id: UUID, filters: TransactionFilters, group_by: str) -> list[dict[str, Any]]:
        groups: dict[UUID, dict[str, Any]] = {}
        for tx in store.transactions.values():
            if tx["type"] != "expense" or tx.get("transfer_id") or not self._matches(tx, user_id, filters):
                continue
            category = store.categories.get(tx["category_id"])
            if group_by == "subcategory":
                subcategory = store.subcategories.get(tx.get("subcategory_id")) if tx.get("subcategory_id") else None
                if subcategory is None:
                    continue
                key, name = subcategory["id"], subcategory["name"]
            else:
                if category is None:
                    continue
                key, name = category["id"], category["name"]
            group = groups.setdefault(
                key,
                {
                    "id": key,
                    "name": name,
                    "total": Decimal("0"),
                    "category_id": category["id"] if category else None,
                    "category_name": category["name"] if category else None,
                },
            )
            group["total"] += Decimal(tx["amount"])
        return list(groups.values())

    def list_descriptions(self, user_id: UUID, account_id: UUID) -> list[dict[str, Any]]:
        return [
            {"description": tx["description"], "date": tx["date"], "created_at": tx["created_at"]}
            for tx in store.transactions.values()
            if tx["user_id"] == user_id and tx["account_id"] == account_id and (tx.get("description") or "").strip()
        ]

    def reset(self) -> None:
        store.reset()


TX_COLUMNS = (
    "id, user_id, account_id, category_id, subcategory_id, type, amount, date, description, notes, "
    "transfer_id, created_at, updated_at"
)
ACCOUNT_COLUMNS = "id, user_id, name, type, initial_balance, color, icon, created_at, updated_at"
CATEGORY_COLUMNS = "id, user_id, name, type, color, system, created_at, updated_at"
SUBCATEGORY_COLUMNS = "id, user_id, category_id, name, color, created_at, updated_at"
USER_COLUMNS = "id, name, email, created_at"

SORT_COLUMNS = {
    "date": "t.date",
    "amount": "t.amount",
    "type": "t.type",
    "description": "t.description",
    "account": "a.name",
    "category": "c.name",
    "subcategory": "s.name",
}


def _like(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _set_clause(fields: dict[str, Any]) -> str:
    return ", ".join([f"{col} = :{col}" for col in fields] + ["updated_at = now()"])


class PostgresPersistence(Persistence):
    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._unaccent: bool | None = None

    @staticmethod
    def _fetch(conn: Connection, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        result = conn.execute(text(sql), params or {})
        if result.returns_rows:
            return [dict(row._mapping) for row in result.fetchall()]
        return []

    def _atomic(self, work: Callable[[Connection], T], conflict: str | None = None) -> T:
        """Run `work` in one transaction. With `conflict`, unique violations become a Conflict."""
        try:
            with self.engine.begin() as conn:
                return work(conn)
        except IntegrityError as exc:
            if conflict is None:
                logger.error("postgres.error", error=exc.__class__.__name__)
                raise InternalProblem(f"postgres error: {exc.__class__.__name__}") from exc
            logger.warning("postgres.conflict", detail=conflict)
            raise ConflictProblem(conflict) from exc
        except SQLAlchemyError as exc:
            logger.error("postgres.error", error=exc.__class__.__name__)
            raise InternalProblem(f"postgres error: {exc.__class__.__name__}") from exc

    def _run(self, sql: str, params: dict[str, Any] | None = None, conflict: str | None = None) -> list[dict[str, Any]]:
        return self._atomic(lambda conn: self._fetch(conn, sql, params), conflict)

    def _first(self, sql: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        rows = self._run(sql, params)
        return rows[0] if rows else None

    def _exists(self, table: str, column: str, value: UUID) -> bool:
        return bool(self._run(f"select 1 as ok from {table} where {column} = :value limit 1", {"value": value}))

    def create_user(self, name: str, email: str, password_hash: str) -> dict[str, Any]:
        return self._run(
            f"""
            insert into users (id, name, email, password_hash)
            values (:id, :name, :email, :password_hash)
            returning {USER_COLUMNS}
            """,
            {"id": str(uuid4()), "name": name, "email": email, "password_hash": password_hash},
            conflict=DUPLICATE_EMAIL,
        )[0]

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        return self._first(f"select {USER_COLUMNS} from users where id = :id", {"id": user_id})

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        return self._first(f"select {USER_COLUMNS} from users where lower(email) = lower(:email)", {"email": email})

    def get_password_hash(self, user_id: UUID) -> str | None:
        row = self._first("select password_hash from users where id = :id", {"id": user_id})
        return row["password_hash"] if row else None

    def set_password_hash(self, user_id: UUID, password_hash: str) -> None:
        self._run("update users set password_hash = :hash where id = :id", {"hash": password_hash, "id": user_id})

    def update_user(self, user_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        fields = _pick(fields, USER_FIELDS)
        if not fields:
            return self.get_user_by_id(user_id) or {}
        assignments = ", ".join(f"{col} = :{col}" for col in fields)
        return self._run(
            f"update users set {assignments} where id = :id returning {USER_COLUMNS}",
            {**fields, "id": user_id},
            conflict=DUPLICATE_EMAIL,
        )[0]

    def delete_user(self, user_id: UUID) -> None:
        self._run("delete from users where id = :id", {"id": user_id})

    def insert_account(self, values: dict[str, Any]) -> dict[str, Any]:
        return self._run(
            f"""
            insert into accounts (id, user_id, name, type, initial_balance, color, icon)
            values (:id, :user_id, :name, :type, cast(:initial_balance as numeric), :color, :icon)
            returning {ACCOUNT_COLUMNS}
            """,
            {
                "id": str(uuid4()),
                "user_id": values["user_id"],
                "name": values["name"],
                "type": values["type"],
                "initial_balance": values["initial_balance"],
                "color": values.get("color"),
                "icon": values.get("icon"),
            },
        )[0]

    def get_account(self, account_id: UUID) -> dict[str, Any] | None:
        return self._first(f"select {ACCOUNT_COLUMNS} from accounts where id = :id", {"id": account_id})

    def list_accounts(self, user_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"select {ACCOUNT_COLUMNS} from accounts where user_id = :user_id order by created_at asc",
            {"user_id": user_id},
        )

    def update_account(self, account_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        fields = _pick(fields, ACCOUNT_FIELDS)
        return self._run(
            f"update accounts set {_set_clause(fields)} where id = :id returning {ACCOUNT_COLUMNS}",
            {**fields, "id": account_id},
        )[0]

    def delete_account(self, account_id: UUID) -> None:
        self._run("delete from accounts where id = :id", {"id": account_id})

    def account_has_transactions(self, account_id: UUID) -> bool:
        return self._exists("transactions", "account_id", account_id)

    def account_balance_deltas(self, user_id: UUID) -> dict[UUID, Decimal]:
        rows = self._run(
            """
            select account_id, coalesce(sum(case when type = 'income' then amount else -amount end), 0) as signed_total
            from transactions
            where user_id = :user_id
            group by account_id
            """,
            {"user_id": user_id},
        )
        return {row["account_id"]: Decimal(str(row["signed_total"])) for row in rows}

    def insert_category(self, values: dict[str, Any]) -> dict[str, Any]:
        return self._run(
            f"""
            insert into categories (id, user_id, name, type, color, system)
            values (:id, :user_id, :name, :type, :color, :system)
            returning {CATEGORY_COLUMNS}
            """,
            {
                "id": str(uuid4()),
                "user_id": values.get("user_id"),
                "name": values["name"],
                "type": values["type"],
                "color": values.get("color"),
                "system": bool(values.get("system", False)),
            },
        )[0]

    def get_category(self, category_id: UUID) -> dict[str, Any] | None:
        return self._first(f"select {CATEGORY_COLUMNS} from categories where id = :id", {"id": category_id})

    def list_categories(self, user_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"select {CATEGORY_COLUMNS} from categories where user_id = :user_id or system = true order by created_at asc",
            {"user_id": user_id},
        )

    def list_system_categories(self) -> list[dict[str, Any]]:
        return self._run(f"select {CATEGORY_COLUMNS} from categories where system = true")

    def find_system_category(self, name: str) -> dict[str, Any] | None:
        return self._first(
            f"select {CATEGORY_COLUMNS} from categories where system = true and user_id is null and name = :name limit 1",
            {"name": name},
        )

    def update_category(self, category_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        fields = _pick(fields, CATEGORY_FIELDS)
        return self._run(
            f"update categories set {_set_clause(fields)} where id = :id returning {CATEGORY_COLUMNS}",
            {**fields, "id": category_id},
        )[0]

    def delete_category(self, category_id: UUID) -> None:
        self._run("delete from categories where id = :id", {"id": category_id})

    def category_has_subcategories(self, category_id: UUID) -> bool:
        return self._exists("subcategories", "category_id", category_id)

    def category_has_transactions(self, category_id: UUID) -> bool:
        return self._exists("transactions", "category_id", category_id)

    def insert_subcategory(self, values: dict[str, Any]) -> dict[str, Any]:
        return self._run(
            f"""
            insert into subcategories (id, user_id, category_id, name, color)
            values (:id, :user_id, :category_id, :name, :color)
            returning {SUBCATEGORY_COLUMNS}
            """,
            {
                "id": str(uuid4()),
                "user_id": values["user_id"],
                "category_id": values["category_id"],
                "name": values["name"],
                "color": values.get("color"),
            },
        )[0]

    def get_subcategory(self, subcategory_id: UUID) -> dict[str, Any] | None:
        return self._first(f"select {SUBCATEGORY_COLUMNS} from subcategories where id = :id", {"id": subcategory_id})

    def list_subcategories(self, category_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"select {SUBCATEGORY_COLUMNS} from subcategories where category_id = :category_id order by created_at asc",
            {"category_id": category_id},
        )

    def update_subcategory(self, subcategory_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        fields = _pick(fields, SUBCATEGORY_FIELDS)
        return self._run(
            f"update subcategories set {_set_clause(fields)} where id = :id returning {SUBCATEGORY_COLUMNS}",
            {**fields, "id": subcategory_id},
        )[0]

    def delete_subcategory(self, subcategory_id: UUID) -> None:
        self._run("delete from subcategories where id = :id", {"id": subcategory_id})

    def subcategory_has_transactions(self, subcategory_id: UUID) -> bool:
        return self._exists("transactions", "subcategory_id", subcategory_id)

    def _insert_transaction(self, conn: Connection, values: dict[str, Any]) -> dict[str, Any]:
        return self._fetch(
            conn,
            f"""
            insert into transactions (
              id, user_id, account_id, category_id, subcategory_id, type, amount, date, description, notes, transfer_id
            )
            values (
              :id, :user_id, :account_id, :category_id, :subcategory_id, :type, cast(:amount as numeric), :date,
              :description, :notes, :transfer_id
            )
            returning {TX_COLUMNS}
            """,
            {
                "id": str(uuid4()),
                "user_id": values["user_id"],
                "account_id": values["account_id"],
                "category_id": values["category_id"],
                "subcategory_id": values.get("subcategory_id"),
                "type": values["type"],
                "amount": values["amount"],
                "date": values["date"],
                "description": values.get("description"),
                "notes": values.get("notes"),
                "transfer_id": values.get("transfer_id"),
            },
        )[0]

    def insert_transaction(self, values: dict[str, Any]) -> dict[str, Any]:
        return self._atomic(lambda conn: self._insert_transaction(conn, values))

    def insert_transactions(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return self._atomic(lambda conn: [self._insert_transaction(conn, values) for values in rows])

    def get_transaction(self, transaction_id: UUID) -> dict[str, Any] | None:
        return self._first(f"select {TX_COLUMNS} from transactions where id = :id", {"id": transaction_id})

    @staticmethod
    def _tx_set_clause(fields: dict[str, Any]) -> str:
        parts = [f"{col} = cast(:{col} as numeric)" if col == "amount" else f"{col} = :{col}" for col in fields]
        return ", ".join(parts + ["updated_at = now()"])

    def update_transaction(self, transaction_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
        fields = _pick(fields, TRANSACTION_FIELDS)
        return self._run(
            f"update transactions set {self._tx_set_clause(fields)} where id = :id returning {TX_COLUMNS}",
            {**fields, "id": transaction_id},
        )[0]

    def update_transfer_legs(self, transfer_id: UUID, fields: dict[str, Any]) -> list[dict[str, Any]]:
        fields = _pick(fields, TRANSACTION_FIELDS)

        def work(conn: Connection) -> list[dict[str, Any]]:
            rows = self._fetch(
                conn,
                f"update transactions set {self._tx_set_clause(fields)} where transfer_id = :transfer_id returning {TX_COLUMNS}",
                {**fields, "transfer_id": transfer_id},
            )
            if len(rows) != 2:
                raise ConflictProblem(INCOMPLETE_TRANSFER)
            return rows

        return self._atomic(work)

    def delete_transaction(self, transaction_id: UUID) -> None:
        self._run("delete from transactions where id = :id", {"id": transaction_id})

    def delete_transfer(self, transfer_id: UUID) -> int:
        rows = self._run("delete from transactions where transfer_id = :transfer_id returning id", {"transfer_id": transfer_id})
        return len(rows)

    def _has_unaccent(self) -> bool:
        if self._unaccent is None:
            rows = self._run("select 1 as ok from pg_extension where extname = 'unaccent'")
            self._unaccent = bool(rows)
            logger.info("postgres.unaccent", available=self._unaccent)
        return self._unaccent

    def _text_match(self, column: str, param: str) -> str:
        if self._has_unaccent():
            return f"unaccent({column}) ilike unaccent(:{param})"
        return f"{column} ilike :{param}"

    def _where(self, user_id: UUID, filters: TransactionFilters) -> tuple[str, dict[str, Any]]:
        clauses = ["t.user_id = :user_id"]
        params: dict[str, Any] = {"user_id": user_id}
        if filters.startDate:
            clauses.append("t.date >= :start_date")
            params["start_date"] = filters.startDate
        if filters.endDate:
            clauses.append("t.date <= :end_date")
            params["end_date"] = filters.endDate
        if filters.accountId:
            clauses.append("t.account_id = :account_id")
            params["account_id"] = filters.accountId
        if filters.categoryId:
            clauses.append("t.category_id = :category_id")
            params["category_id"] = filters.categoryId
        if filters.subcategoryId:
            clauses.append("t.subcategory_id = :subcategory_id")
            params["subcategory_id"] = filters.subcategoryId
        if filters.type:
            clauses.append("t.type = :type")
            params["type"] = filters.type.value
        if filters.description:
            clauses.append(self._text_match("t.description", "description"))
            params["description"] = _like(filters.description)
        if filters.notes:
            clauses.append(self._text_match("t.notes", "notes"))
            params["notes"] = _like(filters.notes)
        return " and ".join(clauses), params

    def query_transactions(
        self,
        user_id: UUID,
        filters: TransactionFilters,
        sort: str,
        direction: str,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        where, params = self._where(user_id, filters)
        order_column = SORT_COLUMNS.get(sort, SORT_COLUMNS["date"])
        order_direction = "asc" if direction == "asc" else "desc"
        joins = """
            from transactions t
            left join accounts a on a.id = t.account_id
            left join categories c on c.id = t.category_id
            left join subcategories s on s.id = t.subcategory_id
        """
        prefixed = ", ".join(f"t.{col.strip()}" for col in TX_COLUMNS.split(","))

        def work(conn: Connection) -> tuple[list[dict[str, Any]], int]:
            total = self._fetch(conn, f"select count(*)::integer as total {joins} where {where}", params)[0]["total"]
            rows = self._fetch(
                conn,
                f"""
                select {prefixed}, a.name as account_name, c.name as category_name, s.name as subcategory_name
                {joins}
                where {where}
                order by {order_column} {order_direction}, t.created_at desc
                limit :limit offset :offset
                """,
                {**params, "limit": limit, "offset": offset},
            )
            return rows, total

        return self._atomic(work)

    def sum_by_type(self, user_id: UUID, filters: TransactionFilters) -> dict[str, Decimal]:
        where, params = self._where(user_id, filters)
        rows = self._run(
            f"select t.type as type, coalesce(sum(t.amount), 0) as total from transactions t where {where} group by t.type",
            params,
        )
        totals = {"income": Decimal("0"), "expense": Decimal("0")}
        for row in rows:
            totals[row["type"]] = Decimal(str(row["total"]))
        return totals

    def expense_totals(self, user_id: UUID, filters: TransactionFilters, group_by: str) -> list[dict[str, Any]]:
        where, params = self._where(user_id, filters)
        if group_by == "subcategory":
            sql = f"""
                select s.id as id, s.name as name, sum(t.amount) as total, c.id as category_id, c.name as category_name
                from transactions t
                join subcategories s on s.id = t.subcategory_id
                join categories c on c.id = t.category_id
                where {where} and t.type = 'expense' and t.transfer_id is null
                group by s.id, s.name, c.id, c.name
            """
        else:
            sql = f"""
                select c.id as id, c.name as name, sum(t.amount) as total, c.id as category_id, c.name as category_name
                from transactions t
                join categories c on c.id = t.category_id
                where {where} and t.type = 'expense' and t.transfer_id is null
                group by c.id, c.name
            """
        return [{**row, "total": Decimal(str(row["total"]))} for row in self._run(sql, params)]

    def list_descriptions(self, user_id: UUID, account_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            """
            select description, date, created_at
            from transactions
            where user_id = :user_id and account_id = :account_id and coalesce(trim(description), '') <> ''
            """,
            {"user_id": user_id, "account_id": account_id},
        )

    def reset(self) -> None:
        def work(conn: Connection) -> None:
            for table in ("transactions", "subcategories", "categories", "accounts", "users"):
                self._fetch(conn, f"delete from {table}")

        self._atomic(work)


def get_persistence() -> Persistence:
    if settings.storage_backend == "postgres":
        return PostgresPersistence(settings.database_url)
    return InMemoryPersistence()
