#!/usr/bin/env python3
"""
Conversation Gate operator CLI.

Inspect and steer the Redis state behind the input gates: silence or resume
a conversation, look at a pending batch, free a wedged batch lock, check
connectivity, or fire a burst of messages through the full pipeline.

Usage:
    conversation-gate check
    conversation-gate stop 77066318623
    conversation-gate status 77066318623
    conversation-gate simulate demo-thread --count 3 --gap-ms 400

Exit codes:
    0: Command succeeded
    1: Configuration or Redis error, or malformed entries in a batch list
"""
import argparse
import asyncio
import logging
import sys
import uuid
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from conversation_gate import __version__
from conversation_gate.core.errors import GateConfigurationError
from conversation_gate.core.models import BatchEntry, ConversationMessage, GateOutcome
from conversation_gate.core.settings import GateSettings
from conversation_gate.gating.batching import BatchWindowCoordinator, wall_clock_ms
from conversation_gate.gating.pipeline import InputPipeline
from conversation_gate.gating.stop_gate import StopGate, default_is_stopped
from conversation_gate.store.redis_store import RedisCoordinationStore

console = Console()


def configure_logging(level: str) -> None:
    """Send log records to stderr at *level*."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# =============================================================================
# COMMANDS
# =============================================================================


async def cmd_stop(settings: GateSettings, store: RedisCoordinationStore, args) -> int:
    gate = StopGate(store=store, key_prefix=settings.stop_key_prefix)
    await store.set(gate.build_stop_key(args.key), args.value)
    console.print(f"[green]✓[/green] Stop flag set for [bold]{args.key}[/bold] ({args.value!r})")
    return 0


async def cmd_resume(settings: GateSettings, store: RedisCoordinationStore, args) -> int:
    gate = StopGate(store=store, key_prefix=settings.stop_key_prefix)
    await store.delete(gate.build_stop_key(args.key))
    console.print(f"[green]✓[/green] Stop flag cleared for [bold]{args.key}[/bold]")
    return 0


async def cmd_release(settings: GateSettings, store: RedisCoordinationStore, args) -> int:
    coordinator = BatchWindowCoordinator(store=store, key_prefix=settings.batch_key_prefix)
    lock_key = coordinator.build_lock_key(args.key)
    await store.delete(lock_key)
    console.print(f"[green]✓[/green] Batch lock released: {lock_key}")
    return 0


async def cmd_status(settings: GateSettings, store: RedisCoordinationStore, args) -> int:
    gate = StopGate(store=store, key_prefix=settings.stop_key_prefix)
    coordinator = BatchWindowCoordinator(
        store=store, window_ms=settings.window_ms, key_prefix=settings.batch_key_prefix
    )
    stop_value = await store.get(gate.build_stop_key(args.key))
    list_key = coordinator.build_list_key(args.key)
    raw_entries = await store.read_all(list_key)
    list_ttl = await store.pttl(list_key)
    lock_ttl = await store.pttl(coordinator.build_lock_key(args.key))

    stopped = default_is_stopped(stop_value)
    summary = Table(show_header=False, box=None)
    summary.add_row("Stop flag", f"{stop_value!r} ({'[red]stopped[/red]' if stopped else '[green]open[/green]'})")
    summary.add_row("Batch lock", f"held, {lock_ttl} ms left" if lock_ttl is not None else "free")
    summary.add_row("Batch list TTL", f"{list_ttl} ms" if list_ttl is not None else "-")
    summary.add_row("Pending entries", str(len(raw_entries)))
    console.print(Panel(summary, title=f"Conversation {args.key}"))

    malformed = 0
    if raw_entries:
        now = wall_clock_ms()
        table = Table(title="Pending batch")
        table.add_column("#", justify="right")
        table.add_column("Message ID")
        table.add_column("Age (ms)", justify="right")
        table.add_column("Preview")
        for index, raw in enumerate(raw_entries, start=1):
            try:
                entry = BatchEntry.model_validate_json(raw)
            except ValidationError:
                malformed += 1
                table.add_row(str(index), "[red]malformed[/red]", "-", escape(str(raw)[:60]))
                continue
            text = " ".join(str(p.get("text", "")) for p in entry.content.parts if p.get("type") == "text")
            table.add_row(str(index), entry.id, str(now - entry.enqueued_at), text[:60])
        console.print(table)

    if malformed:
        console.print(f"[red bold]{malformed} malformed entr{'y' if malformed == 1 else 'ies'} in {list_key}[/red bold]")
        return 1
    return 0


async def cmd_check(settings: GateSettings, store: RedisCoordinationStore, args) -> int:
    await store.ping()
    table = Table(title="Conversation Gate configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("REDIS_URL", settings.redis_url or "-")
    table.add_row("Window", f"{settings.window_ms} ms")
    table.add_row("Poll interval", f"{settings.poll_interval_ms} ms")
    table.add_row("Lock / list TTL", f"{settings.ttl_ms} ms")
    table.add_row("Batch key prefix", settings.batch_key_prefix)
    table.add_row("Stop key prefix", settings.stop_key_prefix)
    console.print(table)
    console.print("[green]✓[/green] Redis reachable")
    return 0


async def cmd_simulate(settings: GateSettings, store: RedisCoordinationStore, args) -> int:
    pipeline = InputPipeline.from_settings(settings, store=store)
    run_id = uuid.uuid4().hex[:6]

    async def send(index: int) -> tuple[ConversationMessage, GateOutcome]:
        await asyncio.sleep(index * args.gap_ms / 1000)
        message = ConversationMessage.from_text(
            f"sim-{run_id}-{index}",
            f"Simulated message {index + 1} of {args.count}",
            thread_id=args.key,
        )
        return message, await pipeline.run([message])

    console.print(
        f"[cyan]Sending {args.count} message(s) to {args.key}, {args.gap_ms} ms apart "
        f"(window {settings.window_ms} ms)[/cyan]"
    )
    results = await asyncio.gather(*(send(i) for i in range(args.count)))

    table = Table(title="Simulation outcomes")
    table.add_column("Message ID")
    table.add_column("Outcome")
    table.add_column("Forwarded")
    for message, outcome in results:
        if outcome.aborted:
            table.add_row(message.id, f"[yellow]abort: {outcome.reason.value}[/yellow]", "-")
        else:
            forwarded = ", ".join(m.id for m in outcome.messages)
            table.add_row(message.id, "[green]forward[/green]", forwarded)
    console.print(table)
    return 0


COMMANDS = {
    "stop": cmd_stop,
    "resume": cmd_resume,
    "release": cmd_release,
    "status": cmd_status,
    "check": cmd_check,
    "simulate": cmd_simulate,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="conversation-gate",
        description="Inspect and steer Redis-backed conversation gates",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--redis-url", default=None, help="Override REDIS_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    stop = subparsers.add_parser("stop", help="Silence a conversation")
    stop.add_argument("key", help="Conversation key (thread ID, resource ID or user ID)")
    stop.add_argument("--value", default="1", help="Flag value to store (default: 1)")

    resume = subparsers.add_parser("resume", help="Clear a conversation's stop flag")
    resume.add_argument("key")

    status = subparsers.add_parser("status", help="Show stop flag and pending batch")
    status.add_argument("key")

    release = subparsers.add_parser("release", help="Force-release a batch lock")
    release.add_argument("key")

    subparsers.add_parser("check", help="Validate configuration and Redis connectivity")

    simulate = subparsers.add_parser("simulate", help="Send a burst of messages through the pipeline")
    simulate.add_argument("key")
    simulate.add_argument("--count", type=int, default=3)
    simulate.add_argument("--gap-ms", type=int, default=400)

    return parser


async def run(args: argparse.Namespace, settings: GateSettings) -> int:
    store = RedisCoordinationStore.from_settings(settings)
    try:
        await store.ensure_connected()
        return await COMMANDS[args.command](settings, store, args)
    finally:
        await store.close()


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the ``conversation-gate`` command."""
    args = build_parser().parse_args(argv)

    try:
        settings = GateSettings.from_env()
        if args.redis_url:
            settings = settings.model_copy(update={"redis_url": args.redis_url})
        configure_logging(settings.log_level)
        return asyncio.run(run(args, settings))
    except GateConfigurationError as e:
        console.print(f"[red bold]Configuration error: {e}[/red bold]")
        return 1
    except RedisError as e:
        console.print(f"[red bold]Redis error: {e}[/red bold]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
