#!/usr/bin/env python3
"""
Bridgewell Matching — Request Queue CLI

Operations helper for the ``matching-requests`` queue.  Subcommands:

  task         Enqueue task→users match requests.
  user         Enqueue user→tasks match requests.
  depth        Show pending / processing / dead counts for every queue.
  replay-dead  Move dead-lettered requests back onto the queue.

Usage examples
--------------
  # Re-score two tasks ahead of everything else
  python scripts/enqueue_requests.py task <task-uuid> <task-uuid> --priority high

  # Queue a user's recommendations
  python scripts/enqueue_requests.py user <user-uuid>

  # Inspect queues
  python scripts/enqueue_requests.py depth
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid

# Ensure the project root is importable
sys.path.insert(0, ".")

from app.config import get_settings
from app.schemas.messages import MatchRequestMessage
from app.services.queue import RedisQueue
from app.utils.redis import create_redis


# ──────────────────────────────────────────────────────────────────────────────
# Subcommands
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_enqueue(args: argparse.Namespace) -> None:
    settings = get_settings()
    redis = create_redis()
    try:
        queue = RedisQueue(redis, settings.REQUEST_QUEUE)
        for raw_id in args.ids:
            target = uuid.UUID(raw_id)
            if args.command == "task":
                message = MatchRequestMessage(type="task_matches", task_id=target, priority=args.priority)
            else:
                message = MatchRequestMessage(type="user_matches", user_id=target, priority=args.priority)
            await queue.publish(message, priority=args.priority)
            print(f"  queued {message.type} {target} ({args.priority})")
    finally:
        await redis.aclose()
    print(f"\n{len(args.ids)} request(s) queued on {settings.REQUEST_QUEUE}")


async def cmd_depth(args: argparse.Namespace) -> None:
    settings = get_settings()
    redis = create_redis()
    try:
        report = {}
        for name in (settings.REQUEST_QUEUE, settings.RESULTS_QUEUE, settings.NOTIFICATIONS_QUEUE):
            report[name] = await RedisQueue(redis, name).depth()
    finally:
        await redis.aclose()

    if args.json:
        print(json.dumps(report, indent=2))
        return

    print(f"\n{'queue':<28}{'pending':>10}{'processing':>12}{'dead':>8}")
    print("-" * 58)
    for name, counts in report.items():
        print(f"{name:<28}{counts['pending']:>10}{counts['processing']:>12}{counts['dead']:>8}")


async def cmd_replay_dead(args: argparse.Namespace) -> None:
    settings = get_settings()
    redis = create_redis()
    queue = RedisQueue(redis, settings.REQUEST_QUEUE)
    replayed = 0
    try:
        while args.limit is None or replayed < args.limit:
            entry = await redis.rpop(queue.dead)
            if entry is None:
                break
            original = json.loads(entry).get("message", "{}")
            try:
                body = json.loads(original)
            except ValueError:
                print(f"  skipped unparseable message: {original[:80]}")
                continue
            if isinstance(body, dict):
                body["attempts"] = 0
                await queue.publish(body)
                replayed += 1
    finally:
        await redis.aclose()
    print(f"{replayed} dead-lettered request(s) replayed")


# ──────────────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Bridgewell request queue — enqueue, inspect and replay match requests.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available subcommands")

    for name, help_text in (
        ("task", "Enqueue task→users match requests."),
        ("user", "Enqueue user→tasks match requests."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("ids", nargs="+", help="One or more UUIDs.")
        sub.add_argument(
            "--priority",
            choices=["normal", "high"],
            default="normal",
            help="'high' requests are served before the backlog (default: normal).",
        )

    depth_parser = subparsers.add_parser("depth", help="Show queue depths.")
    depth_parser.add_argument("--json", action="store_true", default=False, help="Output raw JSON.")

    replay_parser = subparsers.add_parser("replay-dead", help="Replay dead-lettered requests.")
    replay_parser.add_argument("--limit", type=int, default=None, help="Replay at most N messages.")

    args = parser.parse_args()

    if args.command in ("task", "user"):
        asyncio.run(cmd_enqueue(args))
    elif args.command == "depth":
        asyncio.run(cmd_depth(args))
    elif args.command == "replay-dead":
        asyncio.run(cmd_replay_dead(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
