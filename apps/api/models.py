from sqlalchemy import Column, BigInteger, Integer, Float, Text, JSON
from core.database import Base
from typing import Any, Dict


class SyncRowMixin:
    """Columns and helpers shared by every synchronized table."""

    # Epoch milliseconds written by the client at push time; the LWW key.
    updated_at = Column(BigInteger, nullable=False)
    # Tombstone marker. Rows are flagged, never physically erased.
    deleted_at = Column(BigInteger, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


class Exercise(SyncRowMixin, Base):
    __tablename__ = "exercises"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    category = Column(Text, nullable=False)  # compound | isolation | cardio | mobility
    primary_muscle = Column(Text, nullable=False)
    secondary_muscles = Column(JSON, nullable=True)
    equipment = Column(Text, nullable=True)
    is_custom = Column(Integer, default=1)


class Workout(SyncRowMixin, Base):
    __tablename__ = "workouts"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    # [{exercise_id, exercise_name, target_sets, target_reps, target_weight, notes}]
    exercises = Column(JSON, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(Text, nullable=False)


class TrainingSession(SyncRowMixin, Base):
    __tablename__ = "sessions"

    id = Column(Text, primary_key=True)
    workout_id = Column(Text, nullable=False)
    workout_name = Column(Text, nullable=False)
    # [{exercise_id, exercise_name, sets: [{reps, weight, completed}], notes}]
    exercises = Column(JSON, nullable=False)
    date = Column(Text, nullable=False)
    duration = Column(Integer, nullable=False)  # seconds
    notes = Column(Text, nullable=True)
    created_at = Column(Text, nullable=False)


class PersonalRecord(SyncRowMixin, Base):
    __tablename__ = "personal_records"

    id = Column(Text, primary_key=True)
    exercise_id = Column(Text, nullable=False)
    exercise_name = Column(Text, nullable=False)
    reps = Column(Integer, nullable=False)
    weight = Column(Float, nullable=False)
    achieved_date = Column(Text, nullable=False)
    session_id = Column(Text, nullable=False)


class Preferences(SyncRowMixin, Base):
    __tablename__ = "preferences"

    id = Column(Text, primary_key=True)
    theme = Column(Text, nullable=True)  # light | dark | system
    weight_unit = Column(Text, nullable=True)  # kg | lb
    distance_unit = Column(Text, nullable=True)  # km | mi
    decimal_places = Column(Integer, nullable=True)


class SyncMeta(Base):
    """Per-tenant key/value metadata (``last_sync``, ``created_at``)."""
    __tablename__ = "sync_meta"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=True)


# Wire table name -> model, in push/pull order
SYNC_TABLES = {
    "exercises": Exercise,
    "workouts": Workout,
    "sessions": TrainingSession,
    "personal_records": PersonalRecord,
    "preferences": Preferences,
}
