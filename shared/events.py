from enum import Enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import json


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_STARTED = "tournament.started"
    TOURNAMENT_COMPLETED = "tournament.completed"
    STATE_CHANGED = "state.changed"

    # Rounds and matches
    ROUND_STARTED = "round.started"
    MATCH_RESULT = "match.result"

    # Snapshots
    SNAPSHOT_CREATED = "snapshot.created"
    SNAPSHOT_LOCKED = "snapshot.locked"

    # Custom cards
    CUSTOM_CARD_UPDATED = "custom_card.updated"
    CUSTOM_CARD_DELETED = "custom_card.deleted"


@dataclass
class Event:
    type: EventType
    tournament_id: Optional[int] = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def state_changed_event(tournament_id: int, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def tournament_started_event(tournament_id: int, player_count: int, total_rounds: int) -> Event:
    return Event(
        type=EventType.TOURNAMENT_STARTED,
        tournament_id=tournament_id,
        data={
            "player_count": player_count,
            "total_rounds": total_rounds
        }
    )


def match_result_event(tournament_id: int, match_id: int, winner_team_id: int, round_num: int) -> Event:
    return Event(
        type=EventType.MATCH_RESULT,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "winner_team_id": winner_team_id,
            "round": round_num
        }
    )


def round_started_event(tournament_id: int, round_num: int, matches_count: int) -> Event:
    return Event(
        type=EventType.ROUND_STARTED,
        tournament_id=tournament_id,
        data={
            "round": round_num,
            "matches_count": matches_count
        }
    )


def tournament_completed_event(tournament_id: int, rounds_played: int) -> Event:
    return Event(
        type=EventType.TOURNAMENT_COMPLETED,
        tournament_id=tournament_id,
        data={
            "rounds_played": rounds_played
        }
    )


def snapshot_created_event(tournament_id: Optional[int], snapshot_id: int, version: int, custom: bool) -> Event:
    return Event(
        type=EventType.SNAPSHOT_CREATED,
        tournament_id=tournament_id,
        data={
            "snapshot_id": snapshot_id,
            "version": version,
            "custom": custom
        }
    )


def snapshot_locked_event(tournament_id: Optional[int], snapshot_id: int) -> Event:
    return Event(
        type=EventType.SNAPSHOT_LOCKED,
        tournament_id=tournament_id,
        data={"snapshot_id": snapshot_id}
    )


def custom_card_updated_event(card_id: int, version: int, propagated_to: int) -> Event:
    return Event(
        type=EventType.CUSTOM_CARD_UPDATED,
        data={
            "card_id": card_id,
            "version": version,
            "propagated_to": propagated_to
        }
    )


def custom_card_deleted_event(card_id: int, delete_type: str) -> Event:
    return Event(
        type=EventType.CUSTOM_CARD_DELETED,
        data={
            "card_id": card_id,
            "type": delete_type
        }
    )
