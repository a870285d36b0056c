#!/usr/bin/env python3
"""
CLI Entry Point — run a swarm from the terminal
===============================================
Usage:
    tenderswarm --brief "Launch plan for a specialty coffee brand" --budget 0.8 --demo
    tenderswarm --brief "..." --budget 2.5 --user-address 0xabc... --output-dir out/
    tenderswarm --list-results
    tenderswarm --serve

Output is always written to a folder. If --output-dir is omitted, a default
path of ./outputs/<run_id> is used. Every finished run is also stored in the
result database.
"""
import argparse
import asyncio
import logging
import random
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(override=True)  # .env values win over empty system env vars

from .api_clients import UnifiedClient
from .config import Settings
from .engine import SwarmOrchestrator
from .errors import SwarmError
from .models import ClientBrief, SwarmSummary, new_id
from .output_writer import write_output_dir
from .progress import ProgressRenderer
from .state import ResultStore, RunRecorder
from .tracing import TracingConfig, configure_tracing

logger = logging.getLogger("tenderswarm.cli")


def _default_output_dir(run_id: str) -> str:
    """./outputs/<run_id>; created by write_output_dir, not here."""
    return str(Path("outputs") / run_id)


def setup_logging(verbose: bool = False, quiet: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        force=True,  # re-apply even if already configured
    )


async def _async_list_results(settings: Settings) -> None:
    store = ResultStore(settings.results_path)
    try:
        results = await store.list_results()
        if not results:
            print("No saved results.")
            return
        print(f"{'Run ID':<24} {'Status':<12} {'Created'}")
        print("-" * 55)
        for r in results:
            created = datetime.fromtimestamp(r["created_at"]).strftime("%Y-%m-%d %H:%M")
            print(f"{r['run_id']:<24} {r['status']:<12} {created}")
    finally:
        await store.close()


async def _async_run(args, settings: Settings) -> int:
    if args.tracing or settings.tracing:
        configure_tracing(TracingConfig(enabled=True))

    rng = random.Random(args.seed) if args.seed is not None else None
    client = UnifiedClient(timeout=settings.generation_timeout,
                           retries=settings.generation_retries)
    orch = SwarmOrchestrator(client, settings=settings, rng=rng)
    brief = ClientBrief(text=args.brief, budget=args.budget)
    run_id = new_id("swarm")

    renderer = ProgressRenderer(quiet=args.quiet, verbose=args.verbose)
    recorder = RunRecorder(run_id)

    def on_event(event) -> None:
        renderer.handle(event)
        recorder.record(event)

    mode = "demo" if args.demo else "live"
    print(f"Starting swarm (budget: {args.budget} MNEE, {mode} mode)")
    print(f"Brief: {args.brief}")
    print("-" * 60)

    store = ResultStore(settings.results_path)
    try:
        summary = await orch.run(brief, on_event=on_event, demo_mode=args.demo,
                                 user_address=args.user_address or None, run_id=run_id)
    except (SwarmError, ValueError) as e:
        print(f"\nRun failed: {e}", file=sys.stderr)
        return 1
    finally:
        if recorder.finished:
            await store.save_result(run_id, recorder.to_blob())
        await store.close()

    _print_results(summary, renderer)
    output_dir = args.output_dir or _default_output_dir(run_id)
    path = write_output_dir(summary, output_dir, brief_text=args.brief)
    print(f"\nOutput written to: {path}")
    return 0


def _serve(settings: Settings) -> None:
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


def main():
    parser = argparse.ArgumentParser(
        description="TenderSwarm — autonomous agent marketplace runner"
    )
    parser.add_argument("--brief", type=str, help="Client brief text")
    parser.add_argument("--budget", "-b", type=float, default=None,
                        help="Budget in MNEE")
    parser.add_argument("--demo", action="store_true",
                        help="Demo mode: cheapest model, capped tokens, simulated payments")
    parser.add_argument("--user-address", type=str, default="",
                        help="Payer wallet address for provider payments")
    parser.add_argument("--output-dir", "-o", type=str, default="",
                        help="Write the output package to this directory")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for reward variance and provider selection")
    parser.add_argument("--list-results", action="store_true",
                        help="List stored run results")
    parser.add_argument("--serve", action="store_true",
                        help="Serve the HTTP API (host/port from TENDERSWARM_HOST/PORT)")
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress live progress output")
    parser.add_argument(
        "--tracing",
        action="store_true",
        default=False,
        help="Enable OpenTelemetry tracing; spans are printed to console",
    )

    args = parser.parse_args()
    setup_logging(args.verbose, args.quiet)
    settings = Settings.from_env(dotenv=False)

    if args.list_results:
        asyncio.run(_async_list_results(settings))
        return

    if args.serve:
        _serve(settings)
        return

    if not args.brief:
        parser.error("--brief is required")
    if args.budget is None or args.budget <= 0:
        parser.error("--budget must be a positive number")

    sys.exit(asyncio.run(_async_run(args, settings)))


def _print_results(summary: SwarmSummary, renderer: ProgressRenderer):
    print("\n" + "=" * 60)
    print(f"RUN: {summary.run_id}  tier={summary.tier}")
    print(f"Spent: {summary.total_spent:.4f} / {summary.original_budget} MNEE  "
          f"refund: {summary.refund_amount:.4f}")
    print(f"Tasks: {renderer.summary()}")
    if summary.terminated_early:
        print("Generation stopped early: budget exhausted")
    print("-" * 60)
    for a in summary.agent_payments:
        print(f"  {a.agent:<20} {a.amount:.6f} MNEE  {a.reason}")
    print("=" * 60)


if __name__ == "__main__":
    main()
