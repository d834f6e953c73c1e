"""
Postgres-backed feedback store.

Reads candidate feedback for the context pipeline and writes model
enrichment back as partial updates. Tags live alongside the analysis row;
comment counts are derived from the comments table.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import psycopg

from app.db.helpers import DatabaseError, fetch_all
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

from ..domain.models import FeedbackRecord

logger = get_logger(__name__)

ANALYSIS_COLUMNS = {
    "sentiment": "sentiment",
    "urgency": "urgency_level",
    "department": "department_assigned",
    "feedback_type": "feedback_type",
}


class FeedbackRepositoryError(DatabaseError):
    """More specific exception for feedback store failures."""


class FeedbackRepository:
    SELECT_COLUMNS = """
        f.id, f.title, f.body, f.sentiment, f.urgency_level, f.department_assigned,
        f.location, f.created_at,
        COALESCE(a.suggested_tags, ARRAY[]::text[]) AS tags,
        (SELECT COUNT(*) FROM feedback_comments c WHERE c.feedback_id = f.id) AS comment_count
    """
    FROM_CLAUSE = "FROM feedback f LEFT JOIN ai_analyses a ON a.feedback_id = f.id"

    URGENCY_ORDER = """
        CASE f.urgency_level
            WHEN 'critical' THEN 1
            WHEN 'high' THEN 2
            WHEN 'medium' THEN 3
            WHEN 'low' THEN 4
            ELSE 5
        END
    """

    @staticmethod
    def _row_to_record(row: dict[str, Any]) -> FeedbackRecord:
        return FeedbackRecord(
            id=row["id"],
            title=row.get("title") or "",
            body=row.get("body") or "",
            sentiment=row.get("sentiment"),
            urgency=row.get("urgency_level"),
            department=row.get("department_assigned"),
            tags=frozenset(row.get("tags") or ()),
            location=row.get("location"),
            comment_count=row.get("comment_count") or 0,
            created_at=row["created_at"],
        )

    async def find_relevant(
        self,
        keywords: Sequence[str],
        *,
        location: str | None = None,
        issue_category: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
        urgent_first: bool = True,
    ) -> list[FeedbackRecord]:
        """Feedback matching any keyword in title, body, department or location."""
        clauses: list[str] = []
        params: list[Any] = []

        if keywords:
            keyword_clauses = []
            for keyword in keywords:
                pattern = f"%{keyword}%"
                keyword_clauses.append(
                    "(f.title ILIKE %s OR f.body ILIKE %s "
                    "OR f.department_assigned ILIKE %s OR f.location ILIKE %s)"
                )
                params.extend([pattern] * 4)
            clauses.append("(" + " OR ".join(keyword_clauses) + ")")

        if location:
            clauses.append("f.location ILIKE %s")
            params.append(f"%{location}%")

        if issue_category:
            clauses.append("(f.body ILIKE %s OR f.title ILIKE %s)")
            params.extend([f"%{issue_category}%"] * 2)

        if since is not None:
            clauses.append("f.created_at >= %s")
            params.append(since)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = (
            f"ORDER BY {self.URGENCY_ORDER}, f.created_at DESC"
            if urgent_first
            else "ORDER BY f.created_at DESC"
        )
        query = f"SELECT {self.SELECT_COLUMNS} {self.FROM_CLAUSE} {where} {order} LIMIT %s"
        params.append(limit)

        try:
            rows = await fetch_all(query, tuple(params))
        except DatabaseError as e:
            raise FeedbackRepositoryError(
                f"Feedback lookup failed: {e}", operation="find_relevant"
            ) from e

        return [self._row_to_record(row) for row in rows]

    async def get_many(self, feedback_ids: Sequence[int]) -> list[FeedbackRecord]:
        if not feedback_ids:
            return []
        query = f"SELECT {self.SELECT_COLUMNS} {self.FROM_CLAUSE} WHERE f.id = ANY(%s) ORDER BY f.id"
        try:
            rows = await fetch_all(query, (list(feedback_ids),))
        except DatabaseError as e:
            raise FeedbackRepositoryError(f"Feedback fetch failed: {e}", operation="get_many") from e
        return [self._row_to_record(row) for row in rows]

    async def find_unanalyzed(self, limit: int = 100) -> list[FeedbackRecord]:
        query = (
            f"SELECT {self.SELECT_COLUMNS} {self.FROM_CLAUSE} "
            "WHERE f.sentiment IS NULL ORDER BY f.created_at ASC LIMIT %s"
        )
        try:
            rows = await fetch_all(query, (limit,))
        except DatabaseError as e:
            raise FeedbackRepositoryError(
                f"Unanalyzed feedback lookup failed: {e}", operation="find_unanalyzed"
            ) from e
        return [self._row_to_record(row) for row in rows]

    async def apply_analysis(self, feedback_id: int, fields: dict[str, Any]) -> None:
        """
        Partial update: fields that are absent or None are left untouched.
        The feedback row and its tags and summary are written in one transaction.
        """
        assignments: list[str] = []
        params: list[Any] = []
        for field_name, column in ANALYSIS_COLUMNS.items():
            value = fields.get(field_name)
            if value is None:
                continue
            assignments.append(f"{column} = %s")
            params.append(str(value))
        tags = fields.get("tags")
        summary = fields.get("summary")

        try:
            async with db_pool.transaction() as conn:
                if assignments:
                    assignments.append("updated_at = NOW()")
                    await conn.execute(
                        f"UPDATE feedback SET {', '.join(assignments)} WHERE id = %s",
                        (*params, feedback_id),
                    )
                if tags is not None or summary is not None:
                    await conn.execute(
                        """
                        INSERT INTO ai_analyses (feedback_id, suggested_tags, summary, created_at, updated_at)
                        VALUES (%s, %s, %s, NOW(), NOW())
                        ON CONFLICT (feedback_id)
                        DO UPDATE SET
                            suggested_tags = COALESCE(EXCLUDED.suggested_tags, ai_analyses.suggested_tags),
                            summary = COALESCE(EXCLUDED.summary, ai_analyses.summary),
                            updated_at = NOW()
                        """,
                        (feedback_id, sorted(tags) if tags is not None else None, summary),
                    )
        except psycopg.Error as e:
            logger.error("Applying feedback analysis failed", feedback_id=feedback_id, error=str(e))
            raise FeedbackRepositoryError(
                f"Applying analysis failed: {e}", operation="apply_analysis"
            ) from e

        logger.info(
            "Feedback analysis applied",
            feedback_id=feedback_id,
            fields=sorted(k for k, v in fields.items() if v is not None),
        )


feedback_repository = FeedbackRepository()
