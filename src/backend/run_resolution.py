"""
Resolve a single market from the command line.

Usage:
    cd src/backend
    python run_resolution.py "Will the bitcoin price increase this week?" --category crypto
    python run_resolution.py "Will the launch succeed?" --category news --deadline-hours 2
    python run_resolution.py "Will it rain?" --dispute "Official weather report shows rain"

Registers the market in an in-memory ledger, runs a full resolution against
the configured data providers, and prints the ResolutionOutcome as JSON.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import timedelta
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from oracle.agent.orchestrator import build_orchestrator  # noqa: E402
from oracle.config import settings  # noqa: E402
from oracle.models.schemas import Subject, utcnow  # noqa: E402
from oracle.services.settlement import InMemorySettlementLedger  # noqa: E402


async def main() -> int:
    parser = argparse.ArgumentParser(description="Resolve one prediction-market question")
    parser.add_argument("question", type=str)
    parser.add_argument("--category", type=str, default="general")
    parser.add_argument("--deadline-hours", type=float, default=24.0)
    parser.add_argument("--market-id", type=str, default=None)
    parser.add_argument("--dispute", action="append", default=None,
                        help="Dispute evidence; repeat for several lines")
    parser.add_argument("--quiet", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.WARNING if args.quiet else settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    ledger = InMemorySettlementLedger()
    subject = ledger.register(
        Subject(
            id=args.market_id or str(uuid.uuid4())[:8],
            question=args.question,
            category=args.category,
            deadline=utcnow() + timedelta(hours=args.deadline_hours),
        )
    )

    orchestrator = build_orchestrator(settings, settlement=ledger)
    await orchestrator.start()
    try:
        outcome = await orchestrator.resolve(subject.id)
        print(outcome.model_dump_json(indent=2))
        if args.dispute:
            dispute = await orchestrator.handle_dispute(subject.id, args.dispute)
            print(dispute.model_dump_json(indent=2))
    finally:
        await orchestrator.stop()

    return 0 if outcome.resolved else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
