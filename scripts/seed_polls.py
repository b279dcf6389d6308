#!/usr/bin/env python3
"""
Seed the poll catalog of a LivePoll storage backend.

Writes the built-in demo polls, or the polls of a JSON file, into the
backend selected by STORAGE_BACKEND (or --backend). Polls that already
exist are left untouched unless --overwrite is given.

Usage:
    python seed_polls.py [--backend memory|redis|postgres] [--polls-file FILE] [--overwrite] [--list]

Environment Variables:
    STORAGE_BACKEND: Backend to seed (default: memory)
    REDIS_HOST / REDIS_PORT / REDIS_PASSWORD: Redis connection
    POSTGRES_HOST / POSTGRES_PORT / POSTGRES_DB / POSTGRES_USER / POSTGRES_PASSWORD
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from livepoll.api.config import Settings
from livepoll.engine import DEFAULT_POLLS, PollCatalog, load_polls_file
from livepoll.storage import StorageError, create_storage

logger = logging.getLogger("seed_polls")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Seed the LivePoll poll catalog")
    parser.add_argument(
        '--backend',
        choices=['memory', 'redis', 'postgres'],
        help='Storage backend (overrides STORAGE_BACKEND)'
    )
    parser.add_argument(
        '--polls-file',
        help='JSON file with poll definitions (default: built-in demo polls)'
    )
    parser.add_argument(
        '--overwrite',
        action='store_true',
        help='Replace polls that already exist'
    )
    parser.add_argument(
        '--list',
        action='store_true',
        help='Print the catalog after seeding'
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    settings = Settings()
    if args.backend:
        settings.STORAGE_BACKEND = args.backend

    try:
        polls = load_polls_file(args.polls_file) if args.polls_file else DEFAULT_POLLS
    except (OSError, ValueError) as e:
        logger.error(f"Could not read polls file: {e}")
        return 1

    try:
        storage = create_storage(settings)
    except StorageError as e:
        logger.error(f"Could not connect to {settings.STORAGE_BACKEND} storage: {e}")
        return 1

    try:
        catalog = PollCatalog(storage)
        written = catalog.seed(polls, overwrite=args.overwrite)
        print(f"Seeded {written} poll(s) into {storage.name} storage")

        if args.list:
            for poll in catalog.list():
                options = ', '.join(f"{option.id}={option.text}" for option in poll.options)
                state = 'active' if poll.is_active else 'closed'
                print(f"  {poll.id} [{state}] {poll.question} ({options})")
    except StorageError as e:
        logger.error(f"Seeding failed: {e}")
        return 1
    finally:
        storage.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
