"""
Wire codec: nested local records <-> flat server rows.

Encoding stamps every live record with the push time (a push is a fresh
write intent; timestamps received from the server are never forwarded).
Tombstones carry their deletion time as both ``deleted_at`` and
``updated_at`` so they compete in the same last-write-wins comparison.
Decoding drops ``deleted_at`` and rebuilds nested shapes.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List

from pydantic import ValidationError

from sync_client.exceptions import CodecError
from sync_client.models import (
    ENTITY_MODELS,
    TABLES,
    Exercise,
    PersonalRecord,
    Preferences,
    Session,
    Workout,
)
from sync_client.tombstones import PendingDeletion


def _ms_to_iso(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _exercise_to_wire(e: Exercise) -> Dict[str, Any]:
    return {
        "id": e.id,
        "name": e.name,
        "category": e.category,
        "primary_muscle": e.primary_muscle,
        "secondary_muscles": list(e.secondary_muscles),
        "equipment": e.equipment,
        "is_custom": 1 if e.is_custom else 0,
    }


def _workout_to_wire(w: Workout) -> Dict[str, Any]:
    return {
        "id": w.id,
        "name": w.name,
        "exercises": [routine.model_dump(mode="json") for routine in w.exercises],
        "notes": w.notes or None,
        "created_at": w.created_at,
    }


def _session_to_wire(s: Session) -> Dict[str, Any]:
    return {
        "id": s.id,
        "workout_id": s.workout_id,
        "workout_name": s.workout_name,
        "exercises": [exercise.model_dump(mode="json") for exercise in s.exercises],
        "date": s.date,
        "duration": s.duration,
        "notes": s.notes or None,
        "created_at": s.created_at,
    }


def _personal_record_to_wire(pr: PersonalRecord) -> Dict[str, Any]:
    return pr.model_dump(mode="json")


def _preferences_to_wire(p: Preferences) -> Dict[str, Any]:
    return p.model_dump(mode="json")


def _exercise_from_wire(row: Dict[str, Any]) -> Exercise:
    return Exercise(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        primary_muscle=row["primary_muscle"],
        secondary_muscles=row.get("secondary_muscles") or [],
        equipment=row.get("equipment") or "",
        is_custom=bool(row.get("is_custom")),
    )


def _workout_from_wire(row: Dict[str, Any]) -> Workout:
    return Workout(
        id=row["id"],
        name=row["name"],
        exercises=row.get("exercises") or [],
        notes=row.get("notes") or None,
        created_at=row["created_at"],
        updated_at=_ms_to_iso(row["updated_at"]),
    )


def _session_from_wire(row: Dict[str, Any]) -> Session:
    return Session(
        id=row["id"],
        workout_id=row["workout_id"],
        workout_name=row["workout_name"],
        exercises=row.get("exercises") or [],
        date=row["date"],
        duration=row["duration"],
        notes=row.get("notes") or None,
        created_at=row["created_at"],
    )


TO_WIRE: Dict[str, Callable[[Any], Dict[str, Any]]] = {
    "exercises": _exercise_to_wire,
    "workouts": _workout_to_wire,
    "sessions": _session_to_wire,
    "personal_records": _personal_record_to_wire,
    "preferences": _preferences_to_wire,
}

FROM_WIRE: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "exercises": _exercise_from_wire,
    "workouts": _workout_from_wire,
    "sessions": _session_from_wire,
    "personal_records": PersonalRecord.model_validate,
    "preferences": Preferences.model_validate,
}


def encode_record(table: str, record: Dict[str, Any], updated_at: int) -> Dict[str, Any]:
    """Flatten one local record for the wire, stamped with ``updated_at``."""
    try:
        model = ENTITY_MODELS[table].model_validate(record)
    except KeyError:
        raise CodecError(f"Unknown table: {table}") from None
    except ValidationError as e:
        raise CodecError(f"Cannot encode {table}/{record.get('id')}: {e}") from e
    row = TO_WIRE[table](model)
    row["updated_at"] = updated_at
    return row


def encode_tombstone(deletion: PendingDeletion) -> Dict[str, Any]:
    row = encode_record(deletion.table, deletion.record, updated_at=deletion.deleted_at)
    row["deleted_at"] = deletion.deleted_at
    return row


def encode_push(
    records_by_table: Dict[str, Iterable[Dict[str, Any]]],
    tombstones: Iterable[PendingDeletion],
    now: int,
    last_sync: int = 0,
) -> Dict[str, Any]:
    """Build the push request body: live records, then queued deletions, per table."""
    payload: Dict[str, Any] = {table: [] for table in TABLES}
    for table, records in records_by_table.items():
        for record in records:
            payload[table].append(encode_record(table, record, updated_at=now))
    for deletion in tombstones:
        payload[deletion.table].append(encode_tombstone(deletion))
    payload["lastSync"] = last_sync
    return payload


def decode_record(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild one local record from a server row (``deleted_at`` is dropped)."""
    row = {k: v for k, v in row.items() if k != "deleted_at"}
    try:
        model = FROM_WIRE[table](row)
    except KeyError as e:
        raise CodecError(f"Cannot decode {table} row: missing {e}") from e
    except (ValidationError, TypeError, ValueError) as e:
        raise CodecError(f"Cannot decode {table}/{row.get('id')}: {e}") from e
    return model.model_dump(mode="json")


def decode_pull(data: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """Local records per table from a push/pull response's ``data``."""
    return {
        table: [decode_record(table, row) for row in data.get(table) or []]
        for table in TABLES
    }
