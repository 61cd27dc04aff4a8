#!/usr/bin/env python3

"""
RN Job Pipeline - Classifier
Confirms pending jobs are staff RN roles with a local Ollama model and activates them
"""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .classifier import ClassifierError, JobClassifier
from .config_loader import load_config
from .indexnow import queue_slugs_if_enabled
from .job_store import JsonlJobStore
from .main import PROJECT_ROOT, setup_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Classify pending RN jobs")
    parser.add_argument("--limit", type=int, default=None, help="Classify at most N jobs")
    parser.add_argument("--employer", default=None, help="Only jobs for this employer slug")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print decisions without writing to the store",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    setup_logging(config)
    logger = logging.getLogger(__name__)

    if not config.is_classifier_enabled():
        print("⚠️  Classifier disabled in config (classifier.enabled=false)")
        return 0

    store = JsonlJobStore(config.get_store_path(), expiry_days=config.get_expiry_days())
    classifier = JobClassifier(config)
    try:
        summary = classifier.classify_pending(
            store, limit=args.limit, employer_slug=args.employer, dry_run=args.dry_run
        )
    except ClassifierError as e:
        logger.error("Classifier unavailable: %s", e)
        print(f"❌ {e}")
        return 1

    print("\n" + "="*60)
    print(f"✅ CLASSIFICATION COMPLETE{' (DRY RUN)' if args.dry_run else ''}")
    print("="*60)
    print(f"  Total: {summary.total}")
    print(f"  Activated: {summary.activated}")
    print(f"  Rejected: {summary.rejected}")
    print(f"  Failed: {summary.failed}")
    if summary.specialty_counts:
        print("\n  Specialties:")
        for specialty, count in sorted(summary.specialty_counts.items(), key=lambda kv: -kv[1]):
            print(f"    {specialty}: {count}")
    print("\n" + "="*60 + "\n")

    if not args.dry_run:
        queue_slugs_if_enabled(config, summary.activated_slugs, "update")

    logger.info("Classification complete: %s activated of %s", summary.activated, summary.total)
    return 0


if __name__ == "__main__":
    sys.exit(main())
