from decimal import Decimal
from typing import Any
from uuid import UUID

from ..errors import ConflictProblem
from ..logging_config import get_logger
from ..persistence import Persistence
from ..schemas import AccountCreate, AccountUpdate
from .amounts import to_storage
from .ownership import Entity, require_access

logger = get_logger(__name__)


class AccountService:
    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def _with_balance(self, row: dict[str, Any], deltas: dict[UUID, Decimal]) -> dict[str, Any]:
        initial = Decimal(str(row["initial_balance"]))
        return {**row, "current_balance": initial + deltas.get(row["id"], Decimal("0"))}

    def _balanced(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._with_balance(row, self.persistence.account_balance_deltas(row["user_id"]))

    def create(self, user_id: UUID, payload: AccountCreate) -> dict[str, Any]:
        row = self.persistence.insert_account(
            {
                "user_id": user_id,
                "name": payload.name,
                "type": payload.type.value,
                "initial_balance": to_storage(payload.initialBalance),
                "color": payload.color,
                "icon": payload.icon,
            }
        )
        logger.info("account.created", user_id=str(user_id), account_id=str(row["id"]))
        return self._balanced(row)

    def list_all(self, user_id: UUID) -> list[dict[str, Any]]:
        deltas = self.persistence.account_balance_deltas(user_id)
        return [self._with_balance(row, deltas) for row in self.persistence.list_accounts(user_id)]

    def get_one(self, account_id: UUID, user_id: UUID) -> dict[str, Any]:
        return self._balanced(require_access(self.persistence, Entity.account, account_id, user_id))

    def update(self, account_id: UUID, user_id: UUID, payload: AccountUpdate) -> dict[str, Any]:
        require_access(self.persistence, Entity.account, account_id, user_id)
        fields: dict[str, Any] = {}
        if payload.name is not None:
            fields["name"] = payload.name
        if payload.type is not None:
            fields["type"] = payload.type.value
        if payload.initialBalance is not None:
            fields["initial_balance"] = to_storage(payload.initialBalance)
        if "color" in payload.model_fields_set:
            fields["color"] = payload.color
        if "icon" in payload.model_fields_set:
            fields["icon"] = payload.icon
        row = self.persistence.update_account(account_id, fields)
        return self._balanced(row)

    def delete(self, account_id: UUID, user_id: UUID) -> dict[str, str]:
        require_access(self.persistence, Entity.account, account_id, user_id)
        if self.persistence.account_has_transactions(account_id):
            raise ConflictProblem("Account has transactions and cannot be removed.", instance=f"/accounts/{account_id}")
        self.persistence.delete_account(account_id)
        logger.info("account.removed", user_id=str(user_id), account_id=str(account_id))
        return {"message": "Account removed successfully."}
