import json
import logging

from sqlalchemy.orm import Session

from db.models import Episode, Trigger

logger = logging.getLogger(__name__)


def normalize_trigger_name(name: str) -> str:
    return " ".join((name or "").strip().split()).lower()


def _normalized_names(raw) -> set[str]:
    if not isinstance(raw, list):
        return set()
    return {normalize_trigger_name(str(n)) for n in raw if normalize_trigger_name(str(n))}


def _episode_trigger_names(episode: Episode) -> set[str]:
    try:
        raw = json.loads(episode.triggers or "[]")
    except json.JSONDecodeError:
        return set()
    return _normalized_names(raw)


def _bump_triggers(db: Session, episode: Episode, names: set[str]) -> int:
    if not names:
        return 0

    touched = 0
    rows = db.query(Trigger).filter(Trigger.user_id == episode.user_id).all()
    for trigger in rows:
        if normalize_trigger_name(trigger.name) not in names:
            continue
        trigger.frequency = int(trigger.frequency or 0) + 1
        if trigger.last_occurrence is None or trigger.last_occurrence < episode.start_time:
            trigger.last_occurrence = episode.start_time
        touched += 1

    if touched:
        logger.debug("Recorded %s trigger occurrence(s) for episode %s", touched, episode.id)
    return touched


def record_trigger_occurrences(db: Session, episode: Episode) -> int:
    """Bump the stored counter of every owned trigger named by the episode.

    Runs inside the episode's create transaction. Names with no matching
    trigger are ignored. Returns the number of triggers touched.
    """
    return _bump_triggers(db, episode, _episode_trigger_names(episode))


def record_added_trigger_occurrences(db: Session, episode: Episode, previous: dict) -> int:
    """Count only the trigger names a patch added; removed names keep their counts."""
    added = _episode_trigger_names(episode) - _normalized_names(previous.get("triggers") or [])
    return _bump_triggers(db, episode, added)
