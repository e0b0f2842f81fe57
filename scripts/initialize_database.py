"""
Create the fact-find tables and load the default questions.

Usage:
    DATABASE_URL=postgresql://... python3 scripts/initialize_database.py [--force]

--force seeds the default questions even if the table already has rows.
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from factfind.config import Settings, configure_logging, load_env_file
from factfind.seed import seed_questions
from factfind.storage.sql import SQLStorage

logger = logging.getLogger("factfind.init_db")


def main():
    parser = argparse.ArgumentParser(description="Initialise the fact-find database")
    parser.add_argument("--force", action="store_true", help="seed even when questions exist")
    args = parser.parse_args()

    load_env_file()
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if not settings.database_url:
        print("  DATABASE_URL is not set. Nothing to initialise.")
        sys.exit(1)

    storage = SQLStorage(settings.database_url, timeout=settings.db_timeout)
    try:
        created = seed_questions(storage, force=args.force)
        storage.get_config()
    finally:
        storage.close()

    print(f"  Tables ready, {created} question(s) seeded.")


if __name__ == "__main__":
    main()
