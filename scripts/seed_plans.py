"""Insert or refresh the default walk plans in the configured database."""

import logging

from wanderpaws.core.config import Settings
from wanderpaws.core.logging import configure_logging
from wanderpaws.domain.models import Plan, format_price
from wanderpaws.infrastructure.persistence.sqlite import SQLitePersistence

logger = logging.getLogger("seed_plans")

DEFAULT_PLANS = [
    Plan(
        id="basic",
        name="Basic",
        description="Four 60-minute walks to use within a month.",
        walk_credits=4,
        walk_duration=60,
        price=2999,
        validity_period=30,
    ),
    Plan(
        id="standard",
        name="Standard",
        description="Eight 60-minute walks to use within a month.",
        walk_credits=8,
        walk_duration=60,
        price=5499,
        validity_period=30,
        discount_percentage=8,
    ),
    Plan(
        id="premium",
        name="Premium",
        description="Twenty 60-minute walks to use within two months.",
        walk_credits=20,
        walk_duration=60,
        price=12999,
        validity_period=60,
        discount_percentage=13,
    ),
]


def main() -> None:
    configure_logging()
    settings = Settings()
    persistence = SQLitePersistence(settings.database_path)
    try:
        for plan in DEFAULT_PLANS:
            saved = persistence.save_plan(plan)
            logger.info("Saved plan %s (%s, %s credits)", saved.id, format_price(saved.price), saved.walk_credits)
    finally:
        persistence.close()


if __name__ == "__main__":
    main()
