"""
Move legacy per-user face embeddings into the face_embeddings table.

Older databases stored each user's embedding as JSON on the users row.
Face sign-in only reads the face_embeddings table, so those users cannot
sign in by face until this has been run once.

Usage:
    # Migrate the database configured in config.yaml
    python scripts/migrate_embeddings.py

    # Migrate a specific database file
    python scripts/migrate_embeddings.py --db-path storage/old_study_buddy.sqlite
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Move user-row face embeddings into the face_embeddings table"
    )
    parser.add_argument(
        "--db-path", type=str, default=None,
        help="SQLite database to migrate (default: storage.db_path from config)",
    )
    args = parser.parse_args()

    from buddy_core.store import get_store

    store = get_store(args.db_path)
    try:
        before = store.get_stats()
        migrated = store.migrate_legacy_embeddings()
        after = store.get_stats()
    finally:
        store.close()

    logger.info(f"Database: {store.db_path}")
    logger.info(f"Migrated {migrated} embedding(s)")
    logger.info(f"Users with an enrolled face: {before['enrolled_faces']} -> {after['enrolled_faces']}")


if __name__ == "__main__":
    main()
