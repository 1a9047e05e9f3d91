from __future__ import annotations

import argparse

from backend.app.config import load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.showcase_repository import ShowcaseRepository


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect recorded video showcases and CTA impressions.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    showcases_parser = subparsers.add_parser(
        "showcases",
        help="List conversations of a demo with the videos they were shown.",
    )
    showcases_parser.add_argument("--demo-id", required=True, help="Demo identifier.")

    cta_parser = subparsers.add_parser("cta", help="Show the CTA record of a conversation.")
    cta_parser.add_argument("--conversation-id", required=True, help="Conversation identifier.")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = load_settings()
    database = Database(settings.db_path)
    database.initialize()
    repository = ShowcaseRepository(database)

    if args.command == "showcases":
        records = repository.list_showcases(args.demo_id)
        if not records:
            print(f"No showcases recorded for demo {args.demo_id}.")
            return
        print("conversation_id\treceived_at\tvideos_shown")
        for record in records:
            print(
                "\t".join(
                    [
                        record.conversation_id,
                        record.received_at,
                        " | ".join(record.videos_shown) or "-",
                    ]
                )
            )
        return

    cta = repository.get_cta_tracking(args.conversation_id)
    if cta is None:
        print(f"No CTA recorded for conversation {args.conversation_id}.")
        return
    print(f"CTA shown at {cta.cta_shown_at} url={cta.cta_url or '-'}")


if __name__ == "__main__":
    main()
