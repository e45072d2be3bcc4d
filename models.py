from datetime import date as date_type, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class HabitType(str, Enum):
    TIME_ANCHORED = "time_anchored"
    EVENT_ANCHORED = "event_anchored"
    REACTIVE = "reactive"


class CheckInState(str, Enum):
    NO_TRIGGER = "no_trigger"
    MISSED = "missed"
    RECOVERED = "recovered"
    COMPLETED = "completed"


class DifficultyTrend(str, Enum):
    DECREASING = "decreasing"
    STABLE = "stable"
    INCREASING = "increasing"


class InsightType(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    WARNING = "warning"


class ActionType(str, Enum):
    ANCHOR = "anchor"
    TINY_VERSION = "tiny_version"
    ENVIRONMENT = "environment"
    TIMING = "timing"
    GENERAL = "general"


def parse_day(value: str) -> date_type:
    """Calendar day of a YYYY-MM-DD string or a full ISO timestamp."""
    return datetime.fromisoformat(value).date()


class CheckIn(BaseModel):
    id: Optional[str] = None
    date: str
    checkedInAt: Optional[str] = None
    triggerOccurred: bool
    actionTaken: bool
    recoveryCompleted: Optional[bool] = None
    difficultyRating: Optional[int] = Field(default=None, ge=1, le=5)
    missReason: Optional[str] = None
    outcomeSuccess: Optional[bool] = None
    note: Optional[str] = None

    # Older records stored the rating under "difficulty"
    @model_validator(mode="before")
    @classmethod
    def fold_legacy_difficulty(cls, data):
        if isinstance(data, dict) and "difficulty" in data:
            data = dict(data)
            legacy = data.pop("difficulty")
            if data.get("difficultyRating") is None:
                data["difficultyRating"] = legacy
        return data

    @field_validator("date")
    @classmethod
    def date_must_parse(cls, value: str) -> str:
        parse_day(value)
        return value


def get_check_in_state(check_in: CheckIn) -> CheckInState:
    if not check_in.triggerOccurred:
        return CheckInState.NO_TRIGGER
    if not check_in.actionTaken:
        if check_in.recoveryCompleted:
            return CheckInState.RECOVERED
        return CheckInState.MISSED
    return CheckInState.COMPLETED


class HabitSystem(BaseModel):
    anchor: str
    action: str
    recovery: str
    then: List[str] = []
    whyItFits: List[str] = []
    habitType: Optional[HabitType] = None
    anchorTime: Optional[str] = None
    checkInTime: Optional[str] = None
    identity: Optional[str] = None
    tinyVersion: Optional[str] = None
    environmentPrime: Optional[str] = None
    frictionReduced: Optional[str] = None
    tunedAt: Optional[str] = None
    tuneCount: int = 0


# Pattern analysis output

class DayOfWeekStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed: int = 0
    missed: int = 0
    total: int = 0


class PatternTrends(BaseModel):
    model_config = ConfigDict(frozen=True)

    responseRateImproving: bool = False
    triggerOccurrenceDecreasing: bool = False
    difficultyDecreasing: bool = False


class CheckInPatterns(BaseModel):
    model_config = ConfigDict(frozen=True)

    totalCheckIns: int
    completedCount: int
    missedCount: int
    noTriggerCount: int
    recoveredCount: int

    triggerOccurrenceRate: float
    responseRateWhenTriggered: float
    recoveryRate: float
    outcomeSuccessRate: float

    currentStreak: int
    currentNoTriggerStreak: int
    longestStreak: int

    dayOfWeekStats: Dict[str, DayOfWeekStats]
    strongDays: List[str]
    weakDays: List[str]

    missReasonCounts: Dict[str, int]
    repeatedMissReason: Optional[str] = None

    averageDifficulty: float
    difficultyTrend: DifficultyTrend

    trends: PatternTrends

    isFirstRep: bool
    isFirstMiss: bool
    isFirstRecovery: bool
    justCompletedWeek1: bool


class PatternInsight(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: InsightType
    icon: str
    content: str


class PatternSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    actionType: ActionType
    actionLabel: str


class PatternAnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    insights: List[PatternInsight] = []
    suggestion: Optional[PatternSuggestion] = None
    generatedAt: str


# Pattern agent (LLM) structured output

class AgentInsight(BaseModel):
    type: InsightType
    content: str


class AgentSuggestion(BaseModel):
    content: str
    actionType: ActionType
    appliesTo: Optional[str] = None
    newValue: Optional[str] = None


class PatternAgentResponse(BaseModel):
    insights: List[AgentInsight]
    suggestion: Optional[AgentSuggestion] = None


# Cached AI analyses

class SnapshotSuggestion(BaseModel):
    content: str
    actionType: ActionType


class PatternSnapshot(BaseModel):
    id: str
    generatedAt: str
    insights: List[AgentInsight] = []
    suggestion: Optional[SnapshotSuggestion] = None
    checkInCount: int


class HabitData(BaseModel):
    userId: str
    createdAt: str
    updatedAt: Optional[str] = None
    system: Optional[HabitSystem] = None
    checkIns: List[CheckIn] = []
    patternHistory: List[PatternSnapshot] = []
    latestPatternGeneratedAt: Optional[str] = None
    repsCount: int = 0
    lastDoneDate: Optional[str] = None
    missedDate: Optional[str] = None
    state: str = "active"

    @property
    def habit_type(self) -> HabitType:
        if self.system and self.system.habitType:
            return self.system.habitType
        return HabitType.TIME_ANCHORED


# Request bodies

class AnalyzePatternsRequest(BaseModel):
    checkIns: List[CheckIn] = []
    habitType: HabitType = HabitType.TIME_ANCHORED


class GenerateInsightsRequest(BaseModel):
    checkIns: List[CheckIn] = []
    system: Optional[HabitSystem] = None
    habitType: Optional[HabitType] = None


class HabitUpdate(BaseModel):
    system: Optional[HabitSystem] = None
    createdAt: Optional[str] = None


class CheckInCreate(BaseModel):
    date: Optional[str] = None
    triggerOccurred: bool
    actionTaken: bool
    recoveryCompleted: Optional[bool] = None
    difficultyRating: Optional[int] = Field(default=None, ge=1, le=5)
    difficulty: Optional[int] = Field(default=None, ge=1, le=5)
    missReason: Optional[str] = None
    outcomeSuccess: Optional[bool] = None
    note: Optional[str] = None

    @field_validator("date")
    @classmethod
    def date_must_parse(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_day(value)
        return value


class PatternsProgress(BaseModel):
    current: int
    required: int
    percentage: int


class PatternSummaryResponse(BaseModel):
    summary: List[str]
    unlocked: bool
    progress: PatternsProgress
