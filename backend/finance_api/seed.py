from typing import Any

from .config import settings
from .logging_config import get_logger
from .persistence import Persistence

logger = get_logger(__name__)


def is_transfer_category(category: dict[str, Any]) -> bool:
    return bool(category.get("system")) and category.get("user_id") is None and category["name"] == settings.transfer_category_name


def seed_system_categories(persistence: Persistence) -> dict[str, Any]:
    """Create the global transfer category when it is missing. Safe to run repeatedly."""
    existing = persistence.find_system_category(settings.transfer_category_name)
    if existing is not None:
        logger.debug("seed.system_category.exists", category_id=str(existing["id"]))
        return existing
    row = persistence.insert_category(
        {
            "user_id": None,
            "name": settings.transfer_category_name,
            "type": "expense",
            "color": None,
            "system": True,
        }
    )
    logger.info("seed.system_category.created", category_id=str(row["id"]))
    return row
