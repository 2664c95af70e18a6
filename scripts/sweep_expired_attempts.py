#!/usr/bin/env python3
import argparse
import logging

from assessment_engine.core.config import settings
from assessment_engine.db.session import SessionLocal
from assessment_engine.services.attempt_service import sweep_expired_attempts


def main() -> int:
    parser = argparse.ArgumentParser(
        description='Submit or abandon in-progress attempts whose time limit has elapsed.'
    )
    parser.add_argument(
        '--limit',
        type=int,
        default=settings.ATTEMPT_SWEEP_BATCH_SIZE,
        help='Maximum number of expired attempts to close in this run.',
    )
    args = parser.parse_args()
    if args.limit < 1:
        raise SystemExit('--limit must be at least 1.')

    logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    db = SessionLocal()
    try:
        outcome = sweep_expired_attempts(db, limit=args.limit)
    finally:
        db.close()

    print(
        f"Expired attempts: {outcome['submitted']} submitted, "
        f"{outcome['abandoned']} abandoned, {outcome['skipped']} skipped."
    )
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
