"""
Database initialization and seeding for the Library Circulation service.

Creates the schema and, optionally, a realistic sample collection:
- items with one to five copies each
- patrons, a few of them inactive
- loans and holds placed through the loan engine, so every seeded copy
  count agrees with the ledger

Usage:
    library-circulation-init [--drop-existing] [--sample-data] [--database-url URL]
"""

import argparse
import logging
import random
import sys

from faker import Faker
from sqlalchemy import inspect

from .config import get_config
from .database.item_repository import ItemCreateSchema, ItemRepository
from .database.patron_repository import PatronCreateSchema, PatronRepository
from .database.session import DatabaseManager, get_db_manager
from .engine import LoanLifecycleEngine
from .errors import PolicyViolation

logger = logging.getLogger(__name__)

EXPECTED_TABLES = {"items", "patrons", "loan_records"}


def seed_catalog(
    db: DatabaseManager,
    num_items: int = 40,
    num_patrons: int = 25,
    seed: int = 42,
) -> tuple[list[str], list[str]]:
    """Add items and patrons. Returns their ids."""
    fake = Faker()
    Faker.seed(seed)
    rng = random.Random(seed)

    item_ids = []
    patron_ids = []
    with db.session_scope() as session:
        items = ItemRepository(session)
        for _ in range(num_items):
            item = items.create(
                ItemCreateSchema(
                    title=fake.catch_phrase(),
                    author=fake.name(),
                    total_copies=rng.randint(1, 5),
                )
            )
            item_ids.append(item.id)

        patrons = PatronRepository(session)
        for _ in range(num_patrons):
            patron = patrons.create(
                PatronCreateSchema(
                    name=fake.name(),
                    email=fake.unique.email(),
                    active=rng.random() > 0.1,
                )
            )
            patron_ids.append(patron.id)

    logger.info("Seeded %d items and %d patrons", len(item_ids), len(patron_ids))
    return item_ids, patron_ids


def seed_circulation(
    engine: LoanLifecycleEngine,
    item_ids: list[str],
    patron_ids: list[str],
    attempts: int = 60,
    seed: int = 42,
) -> int:
    """
    Place random loans and holds through the engine.

    Requests the policy rejects (limit reached, no copies...) are skipped.
    Returns the number of records created.
    """
    rng = random.Random(seed)
    created = 0
    for _ in range(attempts):
        patron_id = rng.choice(patron_ids)
        item_id = rng.choice(item_ids)
        try:
            if rng.random() < 0.75:
                engine.borrow(patron_id, item_id)
            else:
                engine.reserve(patron_id, item_id)
            created += 1
        except PolicyViolation as e:
            logger.debug("Seed request skipped: %s", e.code)

    logger.info("Seeded %d loans and holds (%d attempts)", created, attempts)
    return created


def main(argv: list[str] | None = None) -> None:
    """Main entry point for database initialization."""
    parser = argparse.ArgumentParser(description="Initialize the Library Circulation database")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Load sample items, patrons and loans after creating tables",
    )
    parser.add_argument("--database-url", help="Override default database URL")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    db = get_db_manager(args.database_url)
    if not db.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)

    try:
        db.init_database(drop_existing=args.drop_existing)

        tables = set(inspect(db.engine).get_table_names())
        missing = EXPECTED_TABLES - tables
        if missing:
            logger.error("Missing expected tables: %s", ", ".join(sorted(missing)))
            sys.exit(1)
        logger.info("Tables present: %s", ", ".join(sorted(tables)))

        if args.sample_data:
            item_ids, patron_ids = seed_catalog(db)
            engine = LoanLifecycleEngine(db, policy=get_config().policy)
            seed_circulation(engine, item_ids, patron_ids)

        logger.info("Database initialization complete")
    finally:
        db.close()


if __name__ == "__main__":
    main()
