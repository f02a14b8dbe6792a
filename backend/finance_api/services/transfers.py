from typing import Any
from uuid import UUID, uuid4

from ..config import settings
from ..errors import NotFoundProblem, ValidationProblem
from ..logging_config import get_logger
from ..persistence import Persistence
from ..schemas import TransferCreate
from .amounts import to_storage
from .ownership import Entity, require_access

logger = get_logger(__name__)


class TransferService:
    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def create(self, user_id: UUID, payload: TransferCreate) -> dict[str, Any]:
        """Write the expense leg on the source and the income leg on the destination, both or neither."""
        if payload.fromAccountId == payload.toAccountId:
            raise ValidationProblem("Source and destination accounts must be different.", instance="/transfers")
        require_access(self.persistence, Entity.account, payload.fromAccountId, user_id)
        require_access(self.persistence, Entity.account, payload.toAccountId, user_id)

        category = self.persistence.find_system_category(settings.transfer_category_name)
        if category is None:
            raise NotFoundProblem("Transfer category not found. Run the system seed.", instance="/transfers")

        transfer_id = uuid4()
        shared = {
            "user_id": user_id,
            "category_id": category["id"],
            "subcategory_id": None,
            "amount": to_storage(payload.amount),
            "date": payload.date,
            "description": payload.description,
            "notes": None,
            "transfer_id": transfer_id,
        }
        expense_leg, income_leg = self.persistence.insert_transactions(
            [
                {**shared, "account_id": payload.fromAccountId, "type": "expense"},
                {**shared, "account_id": payload.toAccountId, "type": "income"},
            ]
        )
        logger.info(
            "transfer.created",
            user_id=str(user_id),
            transfer_id=str(transfer_id),
            from_account_id=str(payload.fromAccountId),
            to_account_id=str(payload.toAccountId),
        )
        return {"id": transfer_id, "from_account": expense_leg, "to_account": income_leg}
