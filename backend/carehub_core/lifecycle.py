from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import Any

from healthstore.database import SQLiteHealthDB
from healthstore.recommendation_store import RecommendationStore
from healthstore.time_utils import to_iso, utc_now

from .errors import ConflictError, InternalError, InvalidActionError, NotFoundError
from .interaction_metadata import parse_interaction_metadata
from .models import (
    InteractionAction,
    InteractionOutcome,
    RecommendationInteraction,
    RecommendationStatus,
)

logger = logging.getLogger(__name__)

_S = RecommendationStatus
_A = InteractionAction


class RecommendationLifecycle:
    # Pairs absent from this table leave the status unchanged.
    _TRANSITIONS: dict[RecommendationStatus, dict[InteractionAction, RecommendationStatus]] = {
        _S.ACTIVE: {_A.VIEW: _S.VIEWED, _A.CLICK: _S.CLICKED, _A.PURCHASE: _S.PURCHASED, _A.DISMISS: _S.DISMISSED},
        _S.VIEWED: {_A.CLICK: _S.CLICKED, _A.PURCHASE: _S.PURCHASED, _A.DISMISS: _S.DISMISSED},
        _S.CLICKED: {_A.PURCHASE: _S.PURCHASED},
        _S.PURCHASED: {},
        _S.DISMISSED: {},
    }

    def __init__(self, db: SQLiteHealthDB, *, max_attempts: int = 3) -> None:
        self._db = db
        self._store = RecommendationStore(db)
        self._max_attempts = max(1, int(max_attempts))

    @classmethod
    def next_status(cls, current: RecommendationStatus, action: InteractionAction) -> RecommendationStatus:
        return cls._TRANSITIONS[current].get(action, current)

    @staticmethod
    def parse_action(action: Any) -> InteractionAction:
        if isinstance(action, InteractionAction):
            return action
        try:
            return InteractionAction(str(action).strip().lower())
        except ValueError:
            raise InvalidActionError(f"Unsupported interaction action: {action!r}") from None

    def record_interaction(
        self,
        recommendation_id: str,
        caller_id: str,
        action: Any,
        metadata: dict[str, Any] | None = None,
    ) -> InteractionOutcome:
        act = self.parse_action(action)
        clean_metadata = parse_interaction_metadata(act, metadata)
        now = to_iso(utc_now())
        interaction = RecommendationInteraction(
            id=uuid.uuid4().hex,
            recommendation_id=recommendation_id,
            action=act,
            metadata=clean_metadata,
            created_at=now,
        )

        try:
            with self._db.connection() as conn:
                row = conn.execute(
                    "SELECT status FROM recommendations WHERE id = ? AND user_id = ?",
                    (recommendation_id, caller_id),
                ).fetchone()
                if not row:
                    raise NotFoundError("Recommendation not found.")

                conn.execute(
                    """
                    INSERT INTO recommendation_interactions (id, recommendation_id, action, metadata_json, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        interaction.id,
                        recommendation_id,
                        act.value,
                        json.dumps(clean_metadata, sort_keys=True) if clean_metadata is not None else None,
                        now,
                    ),
                )

                current = RecommendationStatus(row["status"])
                conflict: ConflictError | None = None
                for attempt in range(1, self._max_attempts + 1):
                    target = self.next_status(current, act)
                    if target == current:
                        break
                    if self._compare_and_set(conn, recommendation_id, current, target, now):
                        break
                    conflict = ConflictError(f"Recommendation left {current.value} before the update landed.")
                    logger.warning(
                        "status conflict on recommendation %s (attempt %d/%d, expected %s)",
                        recommendation_id,
                        attempt,
                        self._max_attempts,
                        current.value,
                    )
                    fresh = conn.execute(
                        "SELECT status FROM recommendations WHERE id = ?",
                        (recommendation_id,),
                    ).fetchone()
                    if not fresh:
                        raise NotFoundError("Recommendation not found.")
                    current = RecommendationStatus(fresh["status"])
                else:
                    raise InternalError("Recommendation status kept changing underneath the update.") from conflict
        except sqlite3.Error as exc:
            raise InternalError("Storage failure while recording interaction.") from exc

        return InteractionOutcome(interaction=interaction, previous_status=current, new_status=target)

    def _compare_and_set(
        self,
        conn: sqlite3.Connection,
        recommendation_id: str,
        expected: RecommendationStatus,
        new_status: RecommendationStatus,
        now: str,
    ) -> bool:
        updated = conn.execute(
            """
            UPDATE recommendations
            SET status = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (new_status.value, now, recommendation_id, expected.value),
        ).rowcount
        return updated == 1

    def list_interactions(self, recommendation_id: str, caller_id: str) -> list[RecommendationInteraction]:
        if not self._store.get_for_user(recommendation_id, caller_id):
            raise NotFoundError("Recommendation not found.")
        return [RecommendationInteraction.from_row(row) for row in self._store.list_interactions(recommendation_id)]
