#!/usr/bin/env python3
"""
Database initialization script for JobFeeds.
Creates the schema and optionally registers a set of starter feeds.
"""

import argparse
import logging
import sys
from pathlib import Path

# Make the project root importable
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import inspect

from app.database.engine import engine
from app.database.init_db import init_database
from app.database.session import get_db_session
from app.services.errors import ValidationError
from app.services.feed_service import feed_service

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

STARTER_FEEDS = [
    {"name": "Jobicy - All Jobs", "url": "https://jobicy.com/?feed=job_feed", "category": "General", "region": "Remote"},
    {
        "name": "Jobicy - Data Science",
        "url": "https://jobicy.com/?feed=job_feed&job_categories=data-science",
        "category": "Data Science",
        "region": "Remote",
    },
    {"name": "HigherEdJobs", "url": "https://www.higheredjobs.com/rss/articleFeed.cfm", "category": "Education"},
]


def check_tables_exist() -> bool:
    """Check whether the core tables are already present."""
    tables = set(inspect(engine).get_table_names())
    return {"feeds", "import_sessions", "job_postings"}.issubset(tables)


def seed_feeds() -> int:
    created = 0
    with get_db_session() as db:
        for feed in STARTER_FEEDS:
            try:
                feed_service.create_feed(db, feed)
                created += 1
            except ValidationError as e:
                logger.info(f"Skipping starter feed {feed['name']}: {e}")
    return created


def main():
    parser = argparse.ArgumentParser(description="Initialize the JobFeeds database")
    parser.add_argument("--seed", action="store_true", help="register the starter feeds")
    args = parser.parse_args()

    if check_tables_exist():
        logger.info("✅ Schema already present")
    else:
        logger.info("Creating schema...")
        init_database()
        logger.info("✅ Schema created")

    if args.seed:
        logger.info(f"✅ Registered {seed_feeds()} starter feeds")


if __name__ == "__main__":
    main()
