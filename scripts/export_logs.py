#!/usr/bin/env python

import argparse
import asyncio
import json
import sys

from voice_coach.config import get_settings
from voice_coach.logs import ConversationLogger, build_log_sink


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Export voice coach conversation logs")
    p.add_argument("--session-id", help="Only export records for this session")
    p.add_argument(
        "--group-by",
        choices=["session"],
        default=None,
        help="Group records into an object keyed by session id",
    )
    p.add_argument("--format", choices=["json"], default="json")
    p.add_argument(
        "--backend",
        choices=["jsonl", "sql"],
        default=None,
        help="Log store to read (default: the LOG_BACKEND setting)",
    )
    p.add_argument("--log-dir", default=None, help="Directory holding conversations.jsonl")
    p.add_argument("--database-url", default=None, help="SQLAlchemy async URL for the sql backend")
    p.add_argument("--output", "-o", default=None, help="Write to this file instead of stdout")
    return p


async def export(args: argparse.Namespace) -> str:
    updates = {}
    if args.backend:
        updates["log_backend"] = args.backend
    if args.log_dir:
        updates["log_dir"] = args.log_dir
    if args.database_url:
        updates["log_database_url"] = args.database_url
    settings = get_settings().model_copy(update=updates)

    conversation_logger = ConversationLogger(build_log_sink(settings))
    try:
        if args.group_by == "session":
            grouped = await conversation_logger.group_by_session()
            if args.session_id:
                grouped = {k: v for k, v in grouped.items() if k == args.session_id}
            payload = {sid: [r.to_json_dict() for r in records] for sid, records in grouped.items()}
            return json.dumps(payload, indent=2, ensure_ascii=False)
        return await conversation_logger.export_json(args.session_id)
    finally:
        await conversation_logger.close()


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    text = await export(args)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Wrote {args.output}", file=sys.stderr)
    else:
        print(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
