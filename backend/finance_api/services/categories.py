from typing import Any
from uuid import UUID

from ..errors import ConflictProblem, ForbiddenProblem, ValidationProblem
from ..logging_config import get_logger
from ..persistence import Persistence
from ..schemas import CategoryCreate, CategoryUpdate, SubcategoryCreate, SubcategoryUpdate
from .ownership import Entity, require_access

logger = get_logger(__name__)


class CategoryService:
    """User categories plus the read-only system categories every user can see."""

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def _guard_system_name(self, name: str, instance: str) -> None:
        wanted = name.strip().casefold()
        if any(row["name"].casefold() == wanted for row in self.persistence.list_system_categories()):
            raise ConflictProblem("A system category with this name already exists.", instance=instance)

    def create(self, user_id: UUID, payload: CategoryCreate) -> dict[str, Any]:
        self._guard_system_name(payload.name, "/categories")
        row = self.persistence.insert_category(
            {
                "user_id": user_id,
                "name": payload.name,
                "type": payload.type.value,
                "color": payload.color,
                "system": False,
            }
        )
        logger.info("category.created", user_id=str(user_id), category_id=str(row["id"]))
        return row

    def list_all(self, user_id: UUID) -> list[dict[str, Any]]:
        return self.persistence.list_categories(user_id)

    def get_one(self, category_id: UUID, user_id: UUID) -> dict[str, Any]:
        return require_access(self.persistence, Entity.category, category_id, user_id)

    def update(self, category_id: UUID, user_id: UUID, payload: CategoryUpdate) -> dict[str, Any]:
        instance = f"/categories/{category_id}"
        category = self.get_one(category_id, user_id)
        if category.get("system"):
            raise ForbiddenProblem("System categories cannot be modified.", instance=instance)

        fields: dict[str, Any] = {}
        if payload.name is not None and payload.name != category["name"]:
            self._guard_system_name(payload.name, instance)
            fields["name"] = payload.name
        if payload.type is not None and payload.type.value != category["type"]:
            if self.persistence.category_has_transactions(category_id):
                raise ConflictProblem("Category type cannot be changed while transactions use it.", instance=instance)
            fields["type"] = payload.type.value
        if "color" in payload.model_fields_set:
            fields["color"] = payload.color
        if not fields:
            return category
        return self.persistence.update_category(category_id, fields)

    def delete(self, category_id: UUID, user_id: UUID) -> dict[str, str]:
        instance = f"/categories/{category_id}"
        category = self.get_one(category_id, user_id)
        if category.get("system"):
            raise ForbiddenProblem("System categories cannot be removed.", instance=instance)
        if self.persistence.category_has_subcategories(category_id):
            raise ConflictProblem("Category has subcategories and cannot be removed.", instance=instance)
        if self.persistence.category_has_transactions(category_id):
            raise ConflictProblem("Category has transactions and cannot be removed.", instance=instance)
        self.persistence.delete_category(category_id)
        logger.info("category.removed", user_id=str(user_id), category_id=str(category_id))
        return {"message": "Category removed successfully."}


class SubcategoryService:
    """Subcategories hang off one user category; ownership is read from the subcategory row."""

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def create(self, user_id: UUID, payload: SubcategoryCreate) -> dict[str, Any]:
        category = require_access(self.persistence, Entity.category, payload.categoryId, user_id)
        if category.get("system"):
            raise ValidationProblem(
                "Subcategories cannot be created under a system category.",
                instance=f"/categories/{payload.categoryId}",
            )
        row = self.persistence.insert_subcategory(
            {
                "user_id": user_id,
                "category_id": category["id"],
                "name": payload.name,
                "color": payload.color if payload.color is not None else category.get("color"),
            }
        )
        logger.info("subcategory.created", user_id=str(user_id), subcategory_id=str(row["id"]))
        return row

    def list_for_category(self, category_id: UUID, user_id: UUID) -> list[dict[str, Any]]:
        category = require_access(self.persistence, Entity.category, category_id, user_id)
        if category.get("system"):
            return []
        return self.persistence.list_subcategories(category_id)

    def get_one(self, subcategory_id: UUID, user_id: UUID) -> dict[str, Any]:
        return require_access(self.persistence, Entity.subcategory, subcategory_id, user_id)

    def update(self, subcategory_id: UUID, user_id: UUID, payload: SubcategoryUpdate) -> dict[str, Any]:
        subcategory = self.get_one(subcategory_id, user_id)
        fields: dict[str, Any] = {}
        if payload.name is not None:
            fields["name"] = payload.name
        if "color" in payload.model_fields_set:
            fields["color"] = payload.color
        if not fields:
            return subcategory
        return self.persistence.update_subcategory(subcategory_id, fields)

    def delete(self, subcategory_id: UUID, user_id: UUID) -> dict[str, str]:
        self.get_one(subcategory_id, user_id)
        if self.persistence.subcategory_has_transactions(subcategory_id):
            raise ConflictProblem(
                "Subcategory has transactions and cannot be removed.",
                instance=f"/subcategories/{subcategory_id}",
            )
        self.persistence.delete_subcategory(subcategory_id)
        logger.info("subcategory.removed", user_id=str(user_id), subcategory_id=str(subcategory_id))
        return {"message": "Subcategory removed successfully."}
