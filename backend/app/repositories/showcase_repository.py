from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass

from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import Database

DEFAULT_OBJECTIVE_NAME = "video_showcase"


@dataclass(frozen=True)
class VideoShowcaseRecord:
    conversation_id: str
    demo_id: str
    objective_name: str
    videos_shown: list[str]
    received_at: str
    updated_at: str


@dataclass(frozen=True)
class CtaTrackingRecord:
    conversation_id: str
    demo_id: str
    cta_url: str | None
    cta_shown_at: str


class ShowcaseRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def append_video_shown(
        self,
        *,
        conversation_id: str,
        demo_id: str,
        title: str,
        objective_name: str = DEFAULT_OBJECTIVE_NAME,
    ) -> VideoShowcaseRecord:
        """Add `title` to the conversation's list, keeping first-seen order without repeats."""
        now = utc_now_iso()
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM video_showcase WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            if row is None:
                videos_shown = [title]
                received_at = now
                conn.execute(
                    """
                    INSERT INTO video_showcase
                    (conversation_id, demo_id, objective_name, videos_shown_json,
                     received_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        conversation_id,
                        demo_id,
                        objective_name,
                        json.dumps(videos_shown),
                        received_at,
                        now,
                    ),
                )
            else:
                videos_shown = _load_titles(row["videos_shown_json"])
                if title not in videos_shown:
                    videos_shown.append(title)
                received_at = str(row["received_at"])
                conn.execute(
                    """
                    UPDATE video_showcase
                    SET videos_shown_json = ?, updated_at = ?
                    WHERE conversation_id = ?
                    """,
                    (json.dumps(videos_shown), now, conversation_id),
                )

        return VideoShowcaseRecord(
            conversation_id=conversation_id,
            demo_id=demo_id,
            objective_name=objective_name,
            videos_shown=videos_shown,
            received_at=received_at,
            updated_at=now,
        )

    def get_showcase(self, conversation_id: str) -> VideoShowcaseRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM video_showcase WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_showcase(row)

    def list_showcases(self, demo_id: str) -> list[VideoShowcaseRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM video_showcase
                WHERE demo_id = ?
                ORDER BY received_at DESC
                """,
                (demo_id,),
            ).fetchall()
        return [_row_to_showcase(row) for row in rows]

    def record_cta_shown(
        self,
        *,
        conversation_id: str,
        demo_id: str,
        cta_url: str | None,
    ) -> CtaTrackingRecord:
        shown_at = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO cta_tracking (conversation_id, demo_id, cta_url, cta_shown_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    demo_id = excluded.demo_id,
                    cta_url = excluded.cta_url,
                    cta_shown_at = excluded.cta_shown_at
                """,
                (conversation_id, demo_id, cta_url, shown_at),
            )
        return CtaTrackingRecord(
            conversation_id=conversation_id,
            demo_id=demo_id,
            cta_url=cta_url,
            cta_shown_at=shown_at,
        )

    def get_cta_tracking(self, conversation_id: str) -> CtaTrackingRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM cta_tracking WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return CtaTrackingRecord(
            conversation_id=str(row["conversation_id"]),
            demo_id=str(row["demo_id"]),
            cta_url=row["cta_url"],
            cta_shown_at=str(row["cta_shown_at"]),
        )


def _row_to_showcase(row: sqlite3.Row) -> VideoShowcaseRecord:
    return VideoShowcaseRecord(
        conversation_id=str(row["conversation_id"]),
        demo_id=str(row["demo_id"]),
        objective_name=str(row["objective_name"]),
        videos_shown=_load_titles(row["videos_shown_json"]),
        received_at=str(row["received_at"]),
        updated_at=str(row["updated_at"]),
    )


def _load_titles(raw: object) -> list[str]:
    if not isinstance(raw, str):
        return []
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(decoded, list):
        return []
    return [item for item in decoded if isinstance(item, str)]
