"""Entry point for the jobhunt poller.

Usage:
    python -m jobhunt.main                      # one poll with config.yaml
    python -m jobhunt.main --config my.yaml     # use custom config
    python -m jobhunt.main --source lever       # run a single source
    python -m jobhunt.main --loop               # poll on the configured interval
    python -m jobhunt.main --dry-run            # list enabled sources without polling
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from jobhunt.config import load_config
from jobhunt.events import EventHub
from jobhunt.poller import Poller, PollReport, StatusStore
from jobhunt.storage import JobStore


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the poller."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job lead poller: collects postings from email alerts and "
        "Greenhouse, Lever, Workday and SmartRecruiters boards into SQLite."
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Override the SQLite database path (default: <data_dir>/jobs.db)",
    )
    parser.add_argument(
        "--source",
        type=str,
        default=None,
        help="Run only a specific source (email, greenhouse, lever, workday, smartrecruiters)",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling on the configured interval until interrupted",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Load config and list sources without actually polling",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug-level logging",
    )
    return parser.parse_args(argv)


def print_summary(poller: Poller, report: PollReport | None) -> None:
    status = poller.status.snapshot()
    print("=== Poll Summary ===")
    print(f"  last run:   {status.last_run_at.isoformat() if status.last_run_at else '-'}")
    print(f"  last ok:    {status.last_ok_at.isoformat() if status.last_ok_at else '-'}")
    print(f"  last added: {status.last_added}")
    if status.last_error:
        print(f"  last error: {status.last_error}")
    if report is None:
        return
    for outcome in report.outcomes:
        state = "ok" if outcome.ok else f"FAILED ({outcome.error})"
        print(f"  {outcome.source:<16} {len(outcome.leads):>5} leads  {outcome.elapsed:6.1f}s  {state}")
        for company, err in sorted(outcome.failures.items()):
            print(f"      {company}: {err}")
    summary = report.summary
    print(f"  processed {summary.seen}: {summary.added} added, {summary.duplicates} duplicates, "
          f"{summary.errors} errors, rejected={dict(summary.rejected)}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    config = load_config(args.config)
    log_level = "DEBUG" if args.verbose else config.log_level
    setup_logging(log_level)

    logger = logging.getLogger(__name__)
    if args.db:
        config.db_path = args.db

    sources = (["email"] if config.email.enabled else []) + config.enabled_vendors
    logger.info("Loaded config with %d enabled sources: %s", len(sources), ", ".join(sources) or "none")

    if args.source:
        if args.source.lower() not in sources:
            logger.error("No enabled source matching '%s'", args.source)
            return 1
        logger.info("Filtered to source: %s", args.source)

    if args.dry_run:
        logger.info("=== Dry Run ===")
        for name in sources:
            if name == "email":
                logger.info("  [ON] email (%s@%s/%s)", config.email.username,
                            config.email.imap_host, config.email.mailbox)
                continue
            companies = config.sources.get(name).companies
            logger.info("  [ON] %s (%d companies)", name, len(companies))
        logger.info("Dry run complete, no polling performed.")
        return 0

    with JobStore(config.database_path, logo_max_bytes=config.enrichment.logo_max_bytes) as store:
        poller = Poller(config, store, status=StatusStore(), hub=EventHub(), only=args.source)

        if args.loop:
            poller.start()
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                logger.info("Interrupted, stopping poller")
            finally:
                poller.stop(timeout=30)
            print_summary(poller, None)
            return 0

        report = poller.run()
        print_summary(poller, report)
        return 1 if poller.status.snapshot().last_error else 0


if __name__ == "__main__":
    sys.exit(main())
