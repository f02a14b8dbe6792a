"""Transaction consistency engine.

Create and update run the same validation pipeline over a ``TransactionDraft``:

1. the account exists and belongs to the caller;
2. the category exists and is visible; a system category is accepted only on
   a transfer leg;
3. an optional subcategory belongs to the caller and to that category;
4. the transaction type equals the category type, except for the transfer
   category.

Transfer legs keep account, category, subcategory and type fixed. Their
shared fields are written to both legs in one storage transaction.
"""

from dataclasses import dataclass, fields, replace
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from ..errors import ConflictProblem, ForbiddenProblem, ValidationProblem
from ..logging_config import get_logger
from ..persistence import Persistence
from ..schemas import TransactionCreate, TransactionFilters, TransactionUpdate
from ..seed import is_transfer_category
from .amounts import to_storage
from .ownership import Entity, require_access

logger = get_logger(__name__)

LEG_LOCKED_FIELDS = ("account_id", "category_id", "subcategory_id", "type")


@dataclass(frozen=True)
class TransactionDraft:
    account_id: UUID
    category_id: UUID
    type: str
    amount: Decimal
    date: date
    subcategory_id: Optional[UUID] = None
    description: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: TransactionCreate) -> "TransactionDraft":
        return cls(
            account_id=payload.accountId,
            category_id=payload.categoryId,
            subcategory_id=payload.subcategoryId,
            type=payload.type.value,
            amount=payload.amount,
            date=payload.date,
            description=payload.description,
            notes=payload.notes,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TransactionDraft":
        return cls(**{f.name: row.get(f.name) for f in fields(cls)})

    def merge(self, patch: dict[str, Any]) -> "TransactionDraft":
        return replace(self, **patch)

    def to_values(self) -> dict[str, Any]:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["amount"] = to_storage(self.amount)
        return values


class TransactionService:
    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def _resolve_category(self, user_id: UUID, category_id: UUID, transfer_id: UUID | None) -> dict[str, Any]:
        category = require_access(self.persistence, Entity.category, category_id, user_id)
        if category.get("system") and not (transfer_id and is_transfer_category(category)):
            raise ForbiddenProblem("Access denied to category.", instance=f"/categories/{category_id}")
        return category

    def _validate(self, user_id: UUID, draft: TransactionDraft, transfer_id: UUID | None = None) -> None:
        require_access(self.persistence, Entity.account, draft.account_id, user_id)
        category = self._resolve_category(user_id, draft.category_id, transfer_id)
        if draft.subcategory_id is not None:
            subcategory = require_access(self.persistence, Entity.subcategory, draft.subcategory_id, user_id)
            if subcategory["category_id"] != draft.category_id:
                raise ConflictProblem(
                    "Subcategory does not belong to the given category.",
                    instance=f"/subcategories/{draft.subcategory_id}",
                )
        if not is_transfer_category(category) and draft.type != category["type"]:
            raise ValidationProblem(
                f"Transaction type ({draft.type}) does not match category type ({category['type']})."
            )

    def create(self, user_id: UUID, payload: TransactionCreate) -> dict[str, Any]:
        draft = TransactionDraft.from_payload(payload)
        self._validate(user_id, draft)
        row = self.persistence.insert_transaction({"user_id": user_id, **draft.to_values()})
        logger.info("transaction.created", user_id=str(user_id), transaction_id=str(row["id"]))
        return row

    def get_one(self, transaction_id: UUID, user_id: UUID) -> dict[str, Any]:
        return require_access(self.persistence, Entity.transaction, transaction_id, user_id)

    def update(self, transaction_id: UUID, user_id: UUID, payload: TransactionUpdate) -> dict[str, Any]:
        existing = self.get_one(transaction_id, user_id)
        patch = payload.to_patch()
        current = TransactionDraft.from_row(existing)
        candidate = current.merge(patch)
        transfer_id = existing.get("transfer_id")

        if transfer_id:
            locked = [name for name in LEG_LOCKED_FIELDS if getattr(candidate, name) != getattr(current, name)]
            if locked:
                raise ValidationProblem(
                    "Cannot change account, category, subcategory or type on a transfer transaction.",
                    instance=f"/transactions/{transaction_id}",
                )

        self._validate(user_id, candidate, transfer_id)

        changes = dict(patch)
        if "amount" in changes:
            changes["amount"] = to_storage(changes["amount"])

        if transfer_id:
            shared = {k: v for k, v in changes.items() if k not in LEG_LOCKED_FIELDS}
            legs = self.persistence.update_transfer_legs(transfer_id, shared)
            logger.info("transfer.updated", user_id=str(user_id), transfer_id=str(transfer_id))
            return next(leg for leg in legs if leg["id"] == existing["id"])

        row = self.persistence.update_transaction(transaction_id, changes)
        logger.info("transaction.updated", user_id=str(user_id), transaction_id=str(transaction_id))
        return row

    def delete(self, transaction_id: UUID, user_id: UUID) -> dict[str, str]:
        existing = self.get_one(transaction_id, user_id)
        transfer_id = existing.get("transfer_id")
        if transfer_id:
            removed = self.persistence.delete_transfer(transfer_id)
            logger.info("transfer.removed", user_id=str(user_id), transfer_id=str(transfer_id), legs=removed)
            return {"message": "Transfer removed successfully."}
        self.persistence.delete_transaction(transaction_id)
        logger.info("transaction.removed", user_id=str(user_id), transaction_id=str(transaction_id))
        return {"message": "Transaction removed successfully."}

    def list_page(
        self,
        user_id: UUID,
        filters: TransactionFilters,
        page: int = 1,
        limit: int = 10,
        sort: str = "date",
        direction: str = "desc",
    ) -> dict[str, Any]:
        if filters.accountId:
            require_access(self.persistence, Entity.account, filters.accountId, user_id)
        rows, total = self.persistence.query_transactions(
            user_id,
            filters,
            sort=sort,
            direction=direction,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {"data": rows, "page": page, "limit": limit, "total": total}
