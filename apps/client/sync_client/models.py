"""
Local (device-side) domain shapes.

These are the nested records the app reads and writes through the local
store. The wire codec flattens them for the server and rebuilds them from
its answer.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class DomainModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Exercise(DomainModel):
    id: str
    name: str
    category: str  # compound | isolation | cardio | mobility
    primary_muscle: str  # chest | back | legs | shoulders | arms | core | full-body
    secondary_muscles: List[str] = Field(default_factory=list)
    equipment: str = ""
    is_custom: bool = True


class ExerciseRoutine(DomainModel):
    """One planned exercise inside a workout template."""
    exercise_id: str
    exercise_name: str
    target_sets: int
    target_reps: int
    target_weight: float
    notes: Optional[str] = None


class Workout(DomainModel):
    id: str
    name: str
    exercises: List[ExerciseRoutine] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: str
    # ISO-8601, rebuilt from the server's updated_at on every pull
    updated_at: Optional[str] = None


class SetRecord(DomainModel):
    reps: int
    weight: float
    completed: bool = True


class SessionExercise(DomainModel):
    exercise_id: str
    exercise_name: str
    sets: List[SetRecord] = Field(default_factory=list)
    notes: Optional[str] = None


class Session(DomainModel):
    """A performed workout."""
    id: str
    workout_id: str
    workout_name: str
    exercises: List[SessionExercise] = Field(default_factory=list)
    date: str
    duration: int  # seconds
    notes: Optional[str] = None
    created_at: str


class PersonalRecord(DomainModel):
    id: str
    exercise_id: str
    exercise_name: str
    reps: int
    weight: float
    achieved_date: str
    session_id: str


class Preferences(DomainModel):
    id: str = "default"
    theme: str = "system"  # light | dark | system
    weight_unit: str = "lb"  # kg | lb
    distance_unit: str = "km"  # km | mi
    decimal_places: int = 1


ENTITY_MODELS = {
    "exercises": Exercise,
    "workouts": Workout,
    "sessions": Session,
    "personal_records": PersonalRecord,
    "preferences": Preferences,
}

TABLES = tuple(ENTITY_MODELS)
