"""Create the system transfer category.

    python backend/scripts/seed_system.py            # keep data, add what is missing
    python backend/scripts/seed_system.py --reset    # wipe every table first
"""

import argparse

from finance_api.config import settings
from finance_api.logging_config import configure_logging, get_logger
from finance_api.persistence import get_persistence
from finance_api.seed import seed_system_categories

logger = get_logger("finance_api.seed")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the system categories.")
    parser.add_argument("--reset", "--clear", dest="reset", action="store_true", help="delete all rows before seeding")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    persistence = get_persistence()
    if args.reset:
        persistence.reset()
        logger.info("seed.reset", backend=settings.storage_backend)
    category = seed_system_categories(persistence)
    logger.info("seed.finished", category_id=str(category["id"]))


if __name__ == "__main__":
    main()
