from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import json
import logging

import redis

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_STATUS_CHANGED = "tournament.status_changed"
    STAGE_ADVANCED = "tournament.stage_advanced"

    # Match events
    MATCH_STARTED = "match.started"
    MATCH_COMPLETED = "match.completed"

    # Team events
    TEAM_ELIMINATED = "team.eliminated"
    TEAM_CROWNED = "team.crowned"

    # Prediction groups
    MEMBER_JOINED = "group.member_joined"
    MEMBER_LEFT = "group.member_left"
    GROUP_DELETED = "group.deleted"


@dataclass
class Event:
    type: EventType
    tournament_id: int
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    @property
    def channel(self) -> str:
        return f"tournament:{self.tournament_id}:events"

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def stage_advanced_event(tournament_id: int, from_stage: str, to_stage: str) -> Event:
    return Event(
        type=EventType.STAGE_ADVANCED,
        tournament_id=tournament_id,
        data={
            "from_stage": from_stage,
            "to_stage": to_stage
        }
    )


def tournament_status_event(tournament_id: int, from_status: str, to_status: str) -> Event:
    return Event(
        type=EventType.TOURNAMENT_STATUS_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_status": from_status,
            "to_status": to_status
        }
    )


def match_started_event(tournament_id: int, match_id: int) -> Event:
    return Event(
        type=EventType.MATCH_STARTED,
        tournament_id=tournament_id,
        data={"match_id": match_id}
    )


def match_completed_event(tournament_id: int, match_id: int, team_a_score: int,
                          team_b_score: int, users_rescored: int) -> Event:
    return Event(
        type=EventType.MATCH_COMPLETED,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "team_a_score": team_a_score,
            "team_b_score": team_b_score,
            "users_rescored": users_rescored
        }
    )


def team_resolved_event(tournament_id: int, team_id: int, status: str) -> Event:
    event_type = EventType.TEAM_CROWNED if status == "winner" else EventType.TEAM_ELIMINATED
    return Event(
        type=event_type,
        tournament_id=tournament_id,
        data={"team_id": team_id, "status": status}
    )


def membership_event(event_type: EventType, tournament_id: int, group_id: int, user_id: int) -> Event:
    return Event(
        type=event_type,
        tournament_id=tournament_id,
        data={"group_id": group_id, "user_id": user_id}
    )


def publish(redis_client, event: Event):
    """Publish an event on its tournament channel. No-op without redis."""
    if redis_client is None:
        return
    try:
        redis_client.publish(event.channel, event.to_json())
    except redis.RedisError as e:
        # The state change is already committed; the announcement is best effort.
        logger.warning(f"Failed to publish {event.to_dict()['type']} on {event.channel}: {e}")
