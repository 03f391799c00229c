"""
Bridgewell Matching — Human decisions on stored matches.

  accept  status → accepted, analytics row, ``match_accepted`` notification
  reject  status → rejected, analytics row
  view    analytics row only

The decision is committed before the notification is published; a
notification that cannot be queued is logged and reported back as
``notified=False`` without undoing the decision.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from app.exceptions import InvalidInputError, NotFoundError, TransientInfraError
from app.services.profiles import ACTION_STATUS, MatchAction

logger = structlog.get_logger("bridgewell.action_service")


@dataclass(frozen=True)
class ActionOutcome:
    match_id: uuid.UUID
    action: str
    status: str
    notified: bool


def parse_action(action: Any) -> MatchAction:
    try:
        return MatchAction(str(action).strip().lower())
    except ValueError:
        raise InvalidInputError(
            f"Invalid action {action!r}; expected one of: "
            + ", ".join(a.value for a in MatchAction)
        ) from None


class ActionService:
    def __init__(self, result_store: Any, notifier: Any | None = None) -> None:
        self.result_store = result_store
        self.notifier = notifier

    async def record_action(self, match_id: uuid.UUID, action: Any) -> ActionOutcome:
        match_action = parse_action(action)
        log = logger.bind(match_id=str(match_id), action=match_action.value)

        match = await self.result_store.get_match(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")

        status = match.status
        new_status = ACTION_STATUS.get(match_action)
        if new_status is not None:
            await self.result_store.set_status(match_id, new_status)
            status = new_status.value

        await self.result_store.append_analytics(match, match_action)
        await self.result_store.commit()
        log.info("match_action_recorded", status=status)

        notified = False
        if match_action is MatchAction.ACCEPT and self.notifier is not None:
            try:
                await self.notifier.match_accepted(
                    match_id=match.id,
                    user_id=match.user_id,
                    task_id=match.task_id,
                    score=match.total_score,
                )
                notified = True
            except TransientInfraError:
                log.exception("match_accepted_notification_failed")

        return ActionOutcome(
            match_id=match.id,
            action=match_action.value,
            status=status,
            notified=notified,
        )
