#!/usr/bin/env python3

"""
RN Job Pipeline - Daily Google Indexing
Submits new job URLs and removals to the Google Indexing API within the daily quota
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config_loader import load_config
from .indexing import GoogleIndexingClient, IndexingEngine, IndexingError, load_service_account_info
from .job_store import JsonlJobStore
from .main import PROJECT_ROOT, setup_logging
from .notifier import EmailNotifier
from .run_metrics import RunMetrics


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit job URLs to the Google Indexing API")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the URLs that would be submitted without calling the API or writing",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    return parser.parse_args(argv)


def build_client(config) -> GoogleIndexingClient:
    raw = os.getenv(config.get_google_credentials_env())
    return GoogleIndexingClient(load_service_account_info(raw))


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
    notifier = EmailNotifier.from_config(config)
    site_url = config.get_site_url()

    print("\n" + "="*60)
    print(f"🔎 DAILY GOOGLE INDEXING{' (DRY RUN)' if args.dry_run else ''}")
    print("="*60)
    print(f"  Site: {site_url}")
    print(f"  Daily quota: {config.get_daily_quota()} (hard limit {config.get_hard_limit()})")

    metrics = RunMetrics(pipeline="indexing")
    try:
        client = None
        if not args.dry_run:
            client = build_client(config)
            status = client.check_configuration(site_url)
            if not status.working:
                raise IndexingError(f"Google Indexing API is not working: {status.error}")
            print("  ✓ Indexing API configuration verified")

        store = JsonlJobStore(config.get_store_path(), expiry_days=config.get_expiry_days())
        engine = IndexingEngine(
            store,
            client,
            site_url=site_url,
            daily_quota=config.get_daily_quota(),
            batch_size=config.get_batch_size(),
            request_delay=config.get_request_delay(),
            batch_delay=config.get_batch_delay(),
            dry_run=args.dry_run,
            metrics=metrics,
        )
        report = engine.run()
    except Exception as e:
        logger.error("Indexing run failed: %s", e, exc_info=True)
        print(f"\n❌ Indexing run failed: {e}")
        if not args.dry_run:
            notifier.send("Google indexing FAILED", f"The daily indexing run failed:\n\n{e}")
        return 1

    text = report.to_text()
    print("\n" + "="*60)
    print(text)
    print("="*60 + "\n")

    if report.needs_alert:
        subject = "Google indexing quota exceeded" if report.quota_exceeded else "Google indexing failures"
        notifier.send(subject, text)

    metrics.finish()
    metrics_path = config.get_metrics_path()
    if metrics_path:
        metrics.write_json(template=metrics_path, extra={"dry_run": args.dry_run})

    logger.info("Indexing complete: %s/%s quota used", report.quota_used, report.daily_quota)
    return 0


if __name__ == "__main__":
    sys.exit(main())
