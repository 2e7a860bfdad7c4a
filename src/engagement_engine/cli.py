"""Engagement engine command line interface.

Operational tools for:
- Schema creation
- Reconciliation sweeps (pending intents, unpaid approvals, bookkeeping)
- Payment status lookups
- Releasing integrity holds after manual review

Usage:
    python -m engagement_engine.cli init-db
    python -m engagement_engine.cli reconcile --limit 100
    python -m engagement_engine.cli retry-unpaid
    python -m engagement_engine.cli replay-bookkeeping
    python -m engagement_engine.cli payment-status --work-item-id X
    python -m engagement_engine.cli release-hold --payment-record-id X
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable
from uuid import UUID

from engagement_engine.config import Settings, get_settings
from engagement_engine.database import create_schema, get_engine, make_session_factory
from engagement_engine.engine import EngagementEngine
from engagement_engine.errors import EngagementError
from engagement_engine.events import AsyncEventEmitter, LoggingNotifier, register_notifications
from engagement_engine.gateway import build_gateway

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class EngineCli:
    """Engagement engine command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self.parser = self._build_parser()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m engagement_engine.cli",
            description="Engagement engine operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        for name, help_text in (
            ("reconcile", "Poll the gateway for open payment intents"),
            ("retry-unpaid", "Retry payment for approved, unpaid work items"),
            ("replay-bookkeeping", "Re-run missing bookkeeping for completed payments"),
        ):
            sweep = subparsers.add_parser(name, help=help_text)
            sweep.add_argument(
                "--limit",
                type=int,
                default=100,
                help="Maximum records to process (default: 100)",
            )

        status = subparsers.add_parser(
            "payment-status",
            help="Show the payment status of a work item",
        )
        status.add_argument(
            "--work-item-id",
            type=parse_uuid,
            required=True,
            help="Work item ID",
        )

        release = subparsers.add_parser(
            "release-hold",
            help="Clear an integrity hold after manual review",
        )
        release.add_argument(
            "--payment-record-id",
            type=parse_uuid,
            required=True,
            help="Payment record ID",
        )
        release.add_argument(
            "--actor-id",
            type=parse_uuid,
            help="Reviewer recorded in the log",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[EngagementEngine, argparse.Namespace], Awaitable[int]]] = {
            "reconcile": self._cmd_reconcile,
            "retry-unpaid": self._cmd_retry_unpaid,
            "replay-bookkeeping": self._cmd_replay_bookkeeping,
            "payment-status": self._cmd_payment_status,
            "release-hold": self._cmd_release_hold,
        }

        if parsed.command == "init-db":
            return asyncio.run(self._cmd_init_db(parsed))

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        return asyncio.run(self._with_engine(parsed, handler))

    async def _with_engine(
        self,
        args: argparse.Namespace,
        handler: Callable[[EngagementEngine, argparse.Namespace], Awaitable[int]],
    ) -> int:
        db_engine = get_engine(args.database_url or self.settings.database_url)
        gateway = build_gateway(self.settings.gateway_config())
        emitter = AsyncEventEmitter()
        register_notifications(emitter, LoggingNotifier())
        try:
            async with make_session_factory(db_engine)() as session:
                engine = EngagementEngine(
                    session,
                    gateway,
                    config=self.settings.engine_config(),
                    emitter=emitter,
                )
                try:
                    return await handler(engine, args)
                except EngagementError as e:
                    self._print({"error": str(e), "code": e.code})
                    return 1
        finally:
            await db_engine.dispose()

    @staticmethod
    def _print(data: dict[str, Any]) -> None:
        print(json.dumps(data, indent=2, default=str))

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create database tables."""
        db_engine = get_engine(args.database_url or self.settings.database_url)
        try:
            await create_schema(db_engine)
        finally:
            await db_engine.dispose()
        self._print({"status": "ok", "command": "init-db"})
        return 0

    async def _cmd_reconcile(self, engine: EngagementEngine, args: argparse.Namespace) -> int:
        """Poll open intents and finalize settled ones."""
        result = await engine.reconciliation.poll_pending(limit=args.limit)
        self._print(result.to_dict())
        return 0 if result.success else 1

    async def _cmd_retry_unpaid(self, engine: EngagementEngine, args: argparse.Namespace) -> int:
        """Retry payment initiation for approved, unpaid work items."""
        result = await engine.reconciliation.retry_unpaid(limit=args.limit)
        self._print(result.to_dict())
        return 0 if result.success else 1

    async def _cmd_replay_bookkeeping(
        self, engine: EngagementEngine, args: argparse.Namespace
    ) -> int:
        """Re-run missing bookkeeping steps."""
        result = await engine.reconciliation.replay_bookkeeping(limit=args.limit)
        self._print(result.to_dict())
        return 0 if result.success else 1

    async def _cmd_payment_status(
        self, engine: EngagementEngine, args: argparse.Namespace
    ) -> int:
        """Show the user-facing payment status of a work item."""
        display = await engine.payment_status(args.work_item_id)
        record = await engine.payments.get_payment(args.work_item_id)
        self._print({
            "work_item_id": args.work_item_id,
            "status": display.label,
            "retry_available": display.retry_available,
            "detail": display.detail,
            "payment_record_id": record.payment_record_id if record else None,
            "record_status": record.status if record else None,
            "gateway_intent_id": record.gateway_intent_id if record else None,
        })
        return 0

    async def _cmd_release_hold(
        self, engine: EngagementEngine, args: argparse.Namespace
    ) -> int:
        """Clear an integrity hold."""
        record = await engine.payments.release_hold(
            args.payment_record_id, actor_id=args.actor_id
        )
        self._print({
            "payment_record_id": record.payment_record_id,
            "status": record.status,
            "review_required": record.review_required,
        })
        return 0


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = EngineCli()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
