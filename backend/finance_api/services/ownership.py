from enum import Enum
from typing import Any
from uuid import UUID

from ..errors import ForbiddenProblem, NotFoundProblem
from ..persistence import Persistence


class Entity(str, Enum):
    account = "account"
    category = "category"
    subcategory = "subcategory"
    transaction = "transaction"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def collection(self) -> str:
        return {
            Entity.account: "/accounts",
            Entity.category: "/categories",
            Entity.subcategory: "/subcategories",
            Entity.transaction: "/transactions",
        }[self]


def belongs_to(entity: Entity, row: dict[str, Any], user_id: UUID) -> bool:
    """True when ``user_id`` owns the row. System categories have no owner."""
    if entity is Entity.category and row.get("system"):
        return False
    return row.get("user_id") == user_id


def is_visible(entity: Entity, row: dict[str, Any], user_id: UUID) -> bool:
    if entity is Entity.category and row.get("system"):
        return True
    return belongs_to(entity, row, user_id)


def _load(persistence: Persistence, entity: Entity, entity_id: UUID) -> dict[str, Any] | None:
    loaders = {
        Entity.account: persistence.get_account,
        Entity.category: persistence.get_category,
        Entity.subcategory: persistence.get_subcategory,
        Entity.transaction: persistence.get_transaction,
    }
    return loaders[entity](entity_id)


def require_access(persistence: Persistence, entity: Entity, entity_id: UUID, user_id: UUID) -> dict[str, Any]:
    """Load a row the caller may see, or raise NotFound / Forbidden naming the entity."""
    instance = f"{entity.collection}/{entity_id}"
    row = _load(persistence, entity, entity_id)
    if row is None:
        raise NotFoundProblem(f"{entity.label} not found.", instance=instance)
    if not is_visible(entity, row, user_id):
        raise ForbiddenProblem(f"Access denied to {entity.value}.", instance=instance)
    return row
