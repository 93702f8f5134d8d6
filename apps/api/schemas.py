from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class WireRecord(BaseModel):
    """A flat row as it travels between client and server.

    ``updated_at`` is the writer's epoch-ms timestamp; a non-null
    ``deleted_at`` marks the row as a tombstone.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    updated_at: int
    deleted_at: Optional[int] = None


class ExerciseRecord(WireRecord):
    name: str
    category: str
    primary_muscle: str
    secondary_muscles: Optional[List[str]] = None
    equipment: Optional[str] = None
    is_custom: int = 1


class WorkoutRecord(WireRecord):
    name: str
    exercises: List[Dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: str


class SessionRecord(WireRecord):
    workout_id: str
    workout_name: str
    exercises: List[Dict[str, Any]] = Field(default_factory=list)
    date: str
    duration: int
    notes: Optional[str] = None
    created_at: str


class PersonalRecordRecord(WireRecord):
    exercise_id: str
    exercise_name: str
    reps: int
    weight: float
    achieved_date: str
    session_id: str


class PreferencesRecord(WireRecord):
    theme: Optional[str] = None
    weight_unit: Optional[str] = None
    distance_unit: Optional[str] = None
    decimal_places: Optional[int] = None


class SyncPushRequest(BaseModel):
    """Push body: every live row and tombstone the client holds, per table."""
    model_config = ConfigDict(populate_by_name=True)

    exercises: List[ExerciseRecord] = Field(default_factory=list)
    workouts: List[WorkoutRecord] = Field(default_factory=list)
    sessions: List[SessionRecord] = Field(default_factory=list)
    personal_records: List[PersonalRecordRecord] = Field(default_factory=list)
    preferences: List[PreferencesRecord] = Field(default_factory=list)
    # Advisory only; per-row timestamps decide every conflict
    last_sync: int = Field(default=0, alias="lastSync")

    def rows_by_table(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "exercises": [r.model_dump() for r in self.exercises],
            "workouts": [r.model_dump() for r in self.workouts],
            "sessions": [r.model_dump() for r in self.sessions],
            "personal_records": [r.model_dump() for r in self.personal_records],
            "preferences": [r.model_dump() for r in self.preferences],
        }


class SyncData(BaseModel):
    """Authoritative live state of one tenant."""
    model_config = ConfigDict(populate_by_name=True)

    exercises: List[Dict[str, Any]] = Field(default_factory=list)
    workouts: List[Dict[str, Any]] = Field(default_factory=list)
    sessions: List[Dict[str, Any]] = Field(default_factory=list)
    personal_records: List[Dict[str, Any]] = Field(default_factory=list)
    preferences: List[Dict[str, Any]] = Field(default_factory=list)
    sync_timestamp: int = Field(default=0, alias="syncTimestamp")


class SyncResponse(BaseModel):
    success: bool = True
    data: SyncData


class CreateTenantResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    sync_key: str = Field(alias="syncKey")
