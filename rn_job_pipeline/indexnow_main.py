#!/usr/bin/env python3

"""
RN Job Pipeline - IndexNow Worker
Drains the Redis URL queue into IndexNow, one URL per throttle window
"""

import argparse
import logging
import sys
from typing import List, Optional

import redis
from dotenv import load_dotenv

from .config_loader import load_config
from .indexnow import IndexNowClient, IndexNowError, IndexNowQueue, IndexNowWorker
from .main import PROJECT_ROOT, setup_logging
from .run_metrics import RunMetrics


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="IndexNow queue worker")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the current queue and exit",
    )
    parser.add_argument(
        "--enqueue",
        nargs="+",
        metavar="SLUG",
        help="Queue job slugs instead of running the worker",
    )
    parser.add_argument(
        "--action",
        choices=("update", "delete"),
        default="update",
        help="Action recorded with --enqueue",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print queue statistics and exit",
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

    try:
        queue = IndexNowQueue.from_config(config)
        if args.stats:
            stats = queue.stats()
            print(f"📬 IndexNow queue: {stats['waiting']} waiting, {stats['seen']} tracked")
            return 0
        if args.enqueue:
            queued = queue.queue_job_urls(args.enqueue, args.action)
            print(f"📬 Queued {queued}/{len(args.enqueue)} URLs ({args.action})")
            return 0

        client = IndexNowClient(config.get_site_url(), config.get_indexnow_key())
    except (IndexNowError, redis.RedisError) as e:
        logger.error("IndexNow setup failed: %s", e)
        print(f"❌ {e}")
        return 1

    metrics = RunMetrics(pipeline="indexnow")
    worker = IndexNowWorker(queue, client, throttle_seconds=config.get_indexnow_throttle(), metrics=metrics)

    print("\n" + "="*60)
    print(f"📡 INDEXNOW WORKER{' (ONCE)' if args.once else ''}")
    print("="*60)
    print(f"  Site: {config.get_site_url()}")
    print(f"  Throttle: {worker.throttle_seconds:g}s per URL")

    try:
        stats = worker.run(once=args.once, idle_seconds=config.get_indexnow_idle_seconds())
    except KeyboardInterrupt:
        stats = worker.stats
        print("\n⏹️  Worker stopped by user")
    except redis.RedisError as e:
        logger.error("Redis error in IndexNow worker: %s", e)
        return 1

    metrics.finish()
    print(f"\n📊 Submitted: {stats.submitted} | Failed: {stats.failed}")
    logger.info("IndexNow worker finished: %s submitted, %s failed", stats.submitted, stats.failed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
