import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

import certifi
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from openai import AsyncOpenAI

from analytics import generate_ai_patterns, get_openai_client, result_from_snapshot, should_regenerate_patterns
from config import get_settings, setup_logging
from insight_generator import generate_pattern_analysis, get_patterns_progress, is_patterns_unlocked
from models import (
    AnalyzePatternsRequest,
    CheckIn,
    CheckInCreate,
    CheckInPatterns,
    GenerateInsightsRequest,
    HabitData,
    HabitType,
    HabitUpdate,
    PatternAnalysisResult,
    PatternSummaryResponse,
)
from pattern_finder import analyze_patterns, get_pattern_summary
from repository import HabitRepository, MongoHabitRepository, utc_now
from scheduler import init_scheduler

logger = logging.getLogger(__name__)


@lru_cache
def get_repository() -> HabitRepository:
    settings = get_settings()
    # SRV connection strings are always TLS
    client_options = {"tlsCAFile": certifi.where()} if settings.mongo_uri.startswith("mongodb+srv://") else {}
    client = AsyncIOMotorClient(settings.mongo_uri, **client_options)
    db = client[settings.mongo_database_name]
    return MongoHabitRepository(db[settings.mongo_habit_collection_name])


def get_pattern_agent_client() -> Optional[AsyncOpenAI]:
    return get_openai_client()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings = get_settings()
    setup_logging(settings.log_level)
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = init_scheduler(get_repository())
    yield
    # Shutdown
    if scheduler:
        scheduler.shutdown(wait=False)


app = FastAPI(title="Habit Patterns API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "https://localhost",       # Local development
        "capacitor://localhost",   # Capacitor local
        "http://localhost",        # Local development
        "http://localhost:3000",   # Next.js development server
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _require_habit(repository: HabitRepository, user_id: str) -> HabitData:
    habit = await repository.get_habit(user_id)
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")
    return habit


@app.get("/")
async def read_root():
    return {"message": "Welcome to the Habit Patterns API"}


# Stateless analysis endpoints
@app.post("/patterns/analyze", response_model=CheckInPatterns)
async def analyze(request: AnalyzePatternsRequest):
    return analyze_patterns(request.checkIns, request.habitType)


@app.post("/patterns/insights", response_model=PatternAnalysisResult)
async def insights(request: GenerateInsightsRequest):
    habit_type = request.habitType
    if habit_type is None:
        habit_type = request.system.habitType if request.system and request.system.habitType else HabitType.TIME_ANCHORED
    patterns = analyze_patterns(request.checkIns, habit_type)
    return generate_pattern_analysis(patterns, request.system, habit_type)


# Habit endpoints
@app.get("/users/{user_id}/habit", response_model=HabitData)
async def get_habit(user_id: str, repository: HabitRepository = Depends(get_repository)):
    return await _require_habit(repository, user_id)


@app.put("/users/{user_id}/habit", response_model=HabitData)
async def save_habit(user_id: str, update: HabitUpdate, repository: HabitRepository = Depends(get_repository)):
    now = utc_now().isoformat()
    # Only apply the fields that were sent
    changes = update.model_dump(mode="json", include=update.model_fields_set)
    changes["updatedAt"] = now

    habit = await repository.set_fields(user_id, changes)
    if not habit:
        habit = await repository.save_habit(
            HabitData.model_validate({"userId": user_id, "createdAt": now, **changes})
        )
    return habit


@app.post("/users/{user_id}/habit/checkins", response_model=HabitData)
async def log_check_in(user_id: str, check_in: CheckInCreate, repository: HabitRepository = Depends(get_repository)):
    payload = check_in.model_dump(exclude_unset=True)
    payload.setdefault("date", datetime.now(timezone.utc).date().isoformat())
    habit = await repository.log_check_in(user_id, CheckIn.model_validate(payload))
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")
    return habit


@app.get("/users/{user_id}/habit/checkins", response_model=List[CheckIn])
async def get_check_ins(
    user_id: str,
    days: Optional[int] = Query(default=None, ge=1),
    repository: HabitRepository = Depends(get_repository),
):
    await _require_habit(repository, user_id)
    return list(await repository.get_check_ins(user_id, days))


# Pattern endpoints
@app.get("/users/{user_id}/habit/patterns", response_model=CheckInPatterns)
async def get_patterns(user_id: str, repository: HabitRepository = Depends(get_repository)):
    habit = await _require_habit(repository, user_id)
    return analyze_patterns(habit.checkIns, habit.habit_type)


@app.get("/users/{user_id}/habit/patterns/summary", response_model=PatternSummaryResponse)
async def get_patterns_summary(user_id: str, repository: HabitRepository = Depends(get_repository)):
    habit = await _require_habit(repository, user_id)
    patterns = analyze_patterns(habit.checkIns, habit.habit_type)
    return PatternSummaryResponse(
        summary=get_pattern_summary(patterns),
        unlocked=is_patterns_unlocked(patterns),
        progress=get_patterns_progress(patterns.totalCheckIns),
    )


@app.get("/users/{user_id}/habit/insights", response_model=PatternAnalysisResult)
async def get_insights(
    user_id: str,
    refresh: bool = False,
    repository: HabitRepository = Depends(get_repository),
    client: Optional[AsyncOpenAI] = Depends(get_pattern_agent_client),
):
    habit = await _require_habit(repository, user_id)
    if not refresh and not should_regenerate_patterns(habit):
        return result_from_snapshot(habit.patternHistory[-1])
    return await generate_ai_patterns(habit, client, repository=repository)
