#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Progress Sync CLI - watch, inspect and cancel remediation batches

Usage:
    progress-sync watch <batch_id>
    progress-sync status <batch_id> [--json]
    progress-sync cancel <batch_id>
    progress-sync job <job_id>
"""

import sys
import json
import asyncio
import argparse
from typing import Optional

import httpx
from tqdm import tqdm

from config.logging_config import set_level
from config.settings import Settings
from .callbacks import create_progress_bar_subscriber, format_time_remaining
from .errors import StatusFetchError
from .fetcher import StatusFetcher
from .job_poller import JobPoller
from .models import BatchStatus
from .tracker import BatchProgressTracker


def build_settings(args) -> Settings:
    """Settings with command-line overrides applied"""
    overrides = {}
    if args.base_url:
        overrides["api_base_url"] = args.base_url
    if args.token:
        overrides["auth_token"] = args.token
    if getattr(args, "interval", None):
        overrides["poll_interval_seconds"] = args.interval
    return Settings(**overrides)


def print_batch(batch: BatchStatus):
    """Print a batch summary table"""
    print("\n" + "="*80)
    print(f"Batch:     {batch.batch_id}")
    print(f"Status:    {batch.status.value}")
    print(f"Progress:  {batch.completed_jobs} of {batch.total_jobs} completed "
          f"({batch.progress_percent}%), {batch.failed_jobs} failed")
    print(f"Fixed:     {batch.summary.total_issues_fixed} issues")
    print(f"ETA:       {format_time_remaining(batch.estimated_time_remaining)}")
    print("="*80)
    print(f"{'JOB ID':<24} {'FILE':<32} {'STATUS':<12} {'DETAIL':<20}")
    print("-"*80)
    for job in batch.jobs:
        if job.error:
            detail = job.error
        elif job.issues_fixed is not None:
            detail = f"{job.issues_fixed} fixed"
        else:
            detail = ""
        print(f"{job.job_id[:24]:<24} {job.file_name[:32]:<32} {job.status.value:<12} {detail[:20]:<20}")
    print()


async def cmd_watch(args) -> int:
    """Track a batch live until it finishes"""
    settings = build_settings(args)

    async with BatchProgressTracker(settings=settings) as tracker:
        with tqdm(total=0, desc=args.batch_id, unit="job") as progress_bar:
            tracker.subscribe(create_progress_bar_subscriber(progress_bar))
            await tracker.track(args.batch_id)
            snapshot = await tracker.wait_until_done(timeout=args.timeout)

    if snapshot.transport.poll_error:
        print(f"❌ {snapshot.transport.poll_error}")
        return 1
    if snapshot.batch:
        print_batch(snapshot.batch)
    return 0


async def cmd_status(args) -> int:
    """Fetch and print one snapshot"""
    settings = build_settings(args)

    async with httpx.AsyncClient() as client:
        fetcher = StatusFetcher(client, settings=settings)
        try:
            batch = await fetcher.fetch(args.batch_id)
        except StatusFetchError as e:
            print(f"❌ {e}")
            return 1

    if args.json:
        print(json.dumps(batch.to_dict(), indent=2))
    else:
        print_batch(batch)
    return 0


async def cmd_cancel(args) -> int:
    """Send a cancel request"""
    settings = build_settings(args)

    async with httpx.AsyncClient() as client:
        fetcher = StatusFetcher(client, settings=settings)
        try:
            await fetcher.cancel(args.batch_id)
        except StatusFetchError as e:
            print(f"❌ {e}")
            return 1

    print(f"✅ Cancel requested for batch {args.batch_id}")
    return 0


async def cmd_job(args) -> int:
    """Poll a single job until it finishes"""
    settings = build_settings(args)

    async with httpx.AsyncClient() as client:
        poller = JobPoller(
            StatusFetcher(client, settings=settings),
            interval=args.interval,
            on_update=lambda record: print(f"  {record.id}: {record.status.value}"),
        )
        poller.start(args.job_id)
        record = await poller.wait(timeout=args.timeout)

    if poller.error:
        print(f"❌ {poller.error}")
        return 1
    print(f"✅ Job {record.id} completed")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="progress-sync",
        description="Track remediation batch progress",
    )
    parser.add_argument("--base-url", help="API base URL")
    parser.add_argument("--token", help="Bearer token")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Follow a batch until it finishes")
    watch.add_argument("batch_id")
    watch.add_argument("--interval", type=float, help="Poll interval in seconds")
    watch.add_argument("--timeout", type=float, help="Give up after N seconds")
    watch.set_defaults(func=cmd_watch)

    status = subparsers.add_parser("status", help="Print the current batch status")
    status.add_argument("batch_id")
    status.add_argument("--json", action="store_true", help="Print JSON")
    status.set_defaults(func=cmd_status)

    cancel = subparsers.add_parser("cancel", help="Cancel a batch")
    cancel.add_argument("batch_id")
    cancel.set_defaults(func=cmd_cancel)

    job = subparsers.add_parser("job", help="Follow a single job until it finishes")
    job.add_argument("job_id")
    job.add_argument("--interval", type=float, help="Poll interval in seconds")
    job.add_argument("--timeout", type=float, help="Give up after N seconds")
    job.set_defaults(func=cmd_job)

    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_level("DEBUG")

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nStopped.")
        return 130
    except asyncio.TimeoutError:
        print("❌ Timed out")
        return 1


if __name__ == "__main__":
    sys.exit(main())
