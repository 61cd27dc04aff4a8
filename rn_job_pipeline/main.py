#!/usr/bin/env python3

"""
RN Job Pipeline - Scraper Runner
Scrapes RN jobs from configured Workday employers into the job store
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config_loader import ConfigValidationError, load_config
from .indexnow import queue_slugs_if_enabled
from .job_store import JsonlJobStore
from .orchestrator import ScrapeResult, ScraperRunError, WorkdayScraper
from .run_metrics import RunMetrics

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(config, employers, save: bool, max_pages: Optional[int]) -> None:
    """Display the run configuration"""
    print("\n" + "="*60)
    print("🩺 RN JOB PIPELINE - SCRAPER")
    print("="*60)

    print("\n🏥 EMPLOYERS:")
    for i, employer in enumerate(employers, 1):
        print(f"  {i}. {employer}")

    max_pages_label = "unlimited (auto-stop)" if not max_pages else str(max_pages)
    print(f"\n📄 Max pages per employer: {max_pages_label}")
    print(f"💾 Save to store: {'yes' if save else 'no (dry run)'}")
    if save:
        print(f"   Store: {config.get_store_path()}")

    print(f"\n⚙️  BROWSER SETTINGS:")
    print(f"  Headless mode: {config.is_headless()}")
    print(f"  Page timeout: {config.get_page_timeout()/1000}s")
    print(f"  Stealth: {config.use_stealth()}")

    print("\n" + "="*60 + "\n")


def print_result(result: ScrapeResult) -> None:
    print("\n" + "-"*60)
    print(f"📊 {result.employer_name}")
    if result.error:
        print(f"   ❌ Fatal: {result.error}")
        return
    print(f"   Listings seen: {result.total_listings} (pre-filtered {result.prefiltered})")
    print(f"   Processed: {result.processed} | Rejected: {result.rejected} | Invalid: {result.invalid}")
    print(f"   Valid RN jobs: {len(result.jobs)}")
    print(f"   Stopped: {result.termination_reason}{' (page-limited)' if result.page_limited else ''}")
    if result.errors:
        print(f"   ⚠️  Errors: {len(result.errors)}")
    saved = result.save_results
    if saved:
        print(f"   Saved: {saved.created} created, {saved.updated} updated, "
              f"{saved.reactivated} reactivated, {saved.deactivated} deactivated, {saved.errors} errors")
    if result.jobs:
        sample = result.jobs[0]
        print(f"   Sample: {sample.title} | {sample.city}, {sample.state} | {sample.specialty}")
        if sample.salary_min is not None:
            print(f"           ${sample.salary_min:g}-{(sample.salary_max or sample.salary_min):g} {sample.salary_type}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scrape RN jobs from Workday employers")
    parser.add_argument(
        "employer",
        nargs="?",
        help="Employer slug from employers.yaml (default: all employers)",
    )
    parser.add_argument(
        "--no-save", "--dry-run",
        dest="no_save",
        action="store_true",
        help="Scrape without writing to the job store",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Stop after N listing pages (skips missing-job verification)",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
    print("\n🚀 Starting RN job scraper...")
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        all_employers = config.get_employers()
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        return 1
    except ConfigValidationError as e:
        print(f"❌ Invalid config: {e}")
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    setup_logging(config)
    logger = logging.getLogger(__name__)

    if args.employer:
        try:
            employers = [config.get_employer(args.employer)]
        except KeyError as e:
            print(f"❌ {e.args[0]}")
            return 1
    else:
        employers = list(all_employers.values())

    max_pages = args.max_pages if args.max_pages is not None else config.get_max_pages()
    save = not args.no_save
    display_config(config, employers, save, max_pages)

    store = JsonlJobStore(config.get_store_path(), expiry_days=config.get_expiry_days()) if save else None
    metrics = RunMetrics(pipeline="scraper")
    employer_delay = config.get_scraper_delay('employer_delay_seconds', 5)

    results: List[ScrapeResult] = []
    fatal = False
    for index, employer in enumerate(employers):
        scraper = WorkdayScraper(employer, config, store=store, save=save,
                                 max_pages=max_pages, metrics=metrics)
        try:
            result = scraper.scrape()
        except ScraperRunError as e:
            logger.error("Scrape failed for %s: %s", employer.slug, e)
            result = ScrapeResult(employer_slug=employer.slug, employer_name=employer.employer_name,
                                  error=str(e))
            fatal = True
        results.append(result)
        print_result(result)

        if result.save_results and result.save_results.deactivated_slugs:
            queue_slugs_if_enabled(config, result.save_results.deactivated_slugs, "delete")

        if index < len(employers) - 1:
            time.sleep(employer_delay)

    metrics.finish()
    metrics_path = config.get_metrics_path()
    if metrics_path:
        path = metrics.write_json(template=metrics_path, extra={
            "employers": [r.employer_slug for r in results],
            "saved": save,
        })
        logger.info("Run metrics written to %s", path)

    total_jobs = sum(len(r.jobs) for r in results)
    print("\n" + "="*60)
    print("✅ SCRAPE COMPLETE" if not fatal else "⚠️  SCRAPE COMPLETE WITH FATAL ERRORS")
    print("="*60)
    print(f"\n📊 Results: {total_jobs} valid RN jobs across {len(results)} employers")
    print("\n" + "="*60 + "\n")

    logger.info(f"Scrape complete: {total_jobs} valid jobs")
    return 1 if fatal else 0


if __name__ == "__main__":
    sys.exit(main())
