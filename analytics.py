import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from openai import AsyncOpenAI

from config import Settings, get_settings
from insight_generator import ACTION_LABELS, INSIGHT_ICONS, MAX_INSIGHTS, generate_pattern_analysis
from models import (
    CheckIn,
    CheckInState,
    HabitData,
    PatternAgentResponse,
    PatternAnalysisResult,
    PatternInsight,
    PatternSnapshot,
    PatternSuggestion,
    SnapshotSuggestion,
    get_check_in_state,
    parse_day,
)
from pattern_finder import DAY_NAMES, analyze_patterns, percent
from prompts import PATTERN_AGENT_PROMPT, PATTERN_AGENT_SYSTEM_PROMPT
from repository import HabitRepository

logger = logging.getLogger(__name__)

AGENT_CHECK_IN_WINDOW = 14
REGENERATE_AFTER_DAYS = 7
REGENERATE_AFTER_NEW_CHECK_INS = 3


class PatternAgentError(Exception):
    """The pattern agent could not produce a usable analysis."""


def get_openai_client(settings: Optional[Settings] = None) -> Optional[AsyncOpenAI]:
    settings = settings or get_settings()
    if not settings.openai_api_key:
        return None
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.pattern_agent_timeout_seconds,
        max_retries=0,
    )


def get_week_number(habit_data: HabitData, now: datetime) -> int:
    created = datetime.fromisoformat(habit_data.createdAt)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).days // 7 + 1


def build_pattern_agent_prompt(
    habit_data: HabitData,
    check_ins: Sequence[CheckIn],
    previous_snapshot: Optional[PatternSnapshot],
    week_number: int,
) -> str:
    system = habit_data.system
    recent = sorted(check_ins, key=lambda c: parse_day(c.date), reverse=True)[:AGENT_CHECK_IN_WINDOW]
    states = [get_check_in_state(c) for c in recent]

    completed = states.count(CheckInState.COMPLETED)
    missed = sum(1 for c in recent if c.triggerOccurred and not c.actionTaken)
    total = len(recent)

    ratings = [c.difficultyRating for c in recent if c.difficultyRating is not None]
    difficulty_line = f"Avg difficulty: {sum(ratings) / len(ratings):.1f}/5\n" if ratings else ""

    day_stats = {}
    for check_in in recent:
        day = DAY_NAMES[parse_day(check_in.date).isoweekday() % 7]
        stats = day_stats.setdefault(day, {"done": 0, "missed": 0})
        if check_in.actionTaken:
            stats["done"] += 1
        elif check_in.triggerOccurred:
            stats["missed"] += 1
    day_breakdown = "\n".join(
        f"  {day}: {stats['done']} done, {stats['missed']} missed" for day, stats in day_stats.items()
    )

    reasons = [c.missReason for c in recent if c.missReason]
    miss_reasons = f"\nMiss reasons: {', '.join(reasons)}\n" if reasons else ""

    previous_analysis = ""
    if previous_snapshot:
        previous_analysis = f"\nPrevious analysis ({previous_snapshot.generatedAt.split('T')[0]}):\n"
        previous_analysis += "".join(
            f"  - [{i.type.value}] {i.content}\n" for i in previous_snapshot.insights
        )

    tiny_version = ""
    if system and system.tinyVersion:
        tiny_version = f'\nTiny version: "{system.tinyVersion}"\n'

    return PATTERN_AGENT_PROMPT.format(
        anchor=system.anchor if system else "",
        action=system.action if system else "",
        recovery=system.recovery if system else "",
        week_number=week_number,
        total=total,
        completed=completed,
        missed=missed,
        response_rate=percent(completed / total) if total else 0,
        difficulty_line=difficulty_line,
        day_breakdown=day_breakdown,
        miss_reasons=miss_reasons,
        previous_analysis=previous_analysis,
        tiny_version=tiny_version,
    )


async def request_pattern_agent(
    client: Optional[AsyncOpenAI],
    prompt: str,
    settings: Optional[Settings] = None,
) -> PatternAgentResponse:
    settings = settings or get_settings()
    if client is None:
        raise PatternAgentError("pattern agent is not configured")

    completion = await asyncio.wait_for(
        client.chat.completions.parse(
            model=settings.openai_pattern_model,
            messages=[
                {"role": "system", "content": PATTERN_AGENT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format=PatternAgentResponse,
            max_tokens=1024,
        ),
        timeout=settings.pattern_agent_timeout_seconds,
    )

    if not completion.choices:
        raise PatternAgentError("pattern agent returned no choices")
    parsed = completion.choices[0].message.parsed
    if parsed is None:
        raise PatternAgentError("pattern agent returned no parsed content")
    if not isinstance(parsed, PatternAgentResponse):
        raise PatternAgentError(f"unexpected pattern agent payload: {type(parsed).__name__}")
    return parsed


def to_analysis_result(response: PatternAgentResponse, generated_at: str) -> PatternAnalysisResult:
    insights = [
        PatternInsight(
            id=f"ai-{idx}",
            type=insight.type,
            icon=INSIGHT_ICONS[insight.type],
            content=insight.content,
        )
        for idx, insight in enumerate(response.insights[:MAX_INSIGHTS])
    ]

    suggestion = None
    if response.suggestion:
        suggestion = PatternSuggestion(
            id="ai-suggestion",
            content=response.suggestion.content,
            actionType=response.suggestion.actionType,
            actionLabel=ACTION_LABELS[response.suggestion.actionType],
        )

    return PatternAnalysisResult(insights=insights, suggestion=suggestion, generatedAt=generated_at)


def result_from_snapshot(snapshot: PatternSnapshot) -> PatternAnalysisResult:
    response = PatternAgentResponse(
        insights=snapshot.insights,
        suggestion=snapshot.suggestion.model_dump() if snapshot.suggestion else None,
    )
    return to_analysis_result(response, snapshot.generatedAt)


def should_regenerate_patterns(habit_data: HabitData, now: Optional[datetime] = None) -> bool:
    """
    A cached analysis goes stale after a week, or once 3 new check-ins arrive.
    """
    now = now or datetime.now(timezone.utc)
    if not habit_data.latestPatternGeneratedAt or not habit_data.patternHistory:
        return True

    last_generated = datetime.fromisoformat(habit_data.latestPatternGeneratedAt)
    if last_generated.tzinfo is None:
        last_generated = last_generated.replace(tzinfo=timezone.utc)
    if (now - last_generated).days >= REGENERATE_AFTER_DAYS:
        return True

    latest = habit_data.patternHistory[-1]
    return len(habit_data.checkIns) - latest.checkInCount >= REGENERATE_AFTER_NEW_CHECK_INS


def build_pattern_snapshot(habit_data: HabitData, response: PatternAgentResponse, now: datetime) -> PatternSnapshot:
    return PatternSnapshot(
        id=f"pattern-{int(now.timestamp() * 1000)}",
        generatedAt=now.isoformat(),
        insights=response.insights,
        suggestion=SnapshotSuggestion(
            content=response.suggestion.content,
            actionType=response.suggestion.actionType,
        ) if response.suggestion else None,
        checkInCount=len(habit_data.checkIns),
    )


async def request_pattern_analysis(
    habit_data: HabitData,
    client: Optional[AsyncOpenAI],
    now: datetime,
    settings: Optional[Settings] = None,
) -> Optional[PatternAgentResponse]:
    """The pattern agent's analysis of a habit, or None when the agent path failed."""
    previous = habit_data.patternHistory[-1] if habit_data.patternHistory else None
    try:
        prompt = build_pattern_agent_prompt(
            habit_data, habit_data.checkIns, previous, get_week_number(habit_data, now)
        )
        return await request_pattern_agent(client, prompt, settings)
    except Exception as e:
        logger.warning("Pattern agent failed for user %s: %s", habit_data.userId, e)
        return None


async def generate_ai_patterns(
    habit_data: HabitData,
    client: Optional[AsyncOpenAI],
    repository: Optional[HabitRepository] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> PatternAnalysisResult:
    """
    Ask the pattern agent for an analysis, falling back to the rule-based one.

    Any failure on the agent path (no client, timeout, API error, unusable
    payload) returns the rule-based result unchanged. Successful analyses are
    cached on the habit through `repository` when one is given; a failed
    cache write is logged and the agent's analysis is still returned.
    """
    now = now or datetime.now(timezone.utc)

    response = await request_pattern_analysis(habit_data, client, now, settings)
    if response is None:
        logger.info("Using rule-based pattern analysis for user %s", habit_data.userId)
        habit_type = habit_data.habit_type
        patterns = analyze_patterns(habit_data.checkIns, habit_type)
        return generate_pattern_analysis(patterns, habit_data.system, habit_type, now=now)

    if repository is not None:
        try:
            await repository.save_pattern_snapshot(
                habit_data.userId, build_pattern_snapshot(habit_data, response, now)
            )
        except Exception as e:
            logger.warning("Could not cache pattern analysis for user %s: %s", habit_data.userId, e)

    return to_analysis_result(response, now.isoformat())


async def refresh_all_pattern_snapshots(
    repository: HabitRepository,
    client: Optional[AsyncOpenAI],
) -> List[str]:
    """Regenerate stale pattern analyses for every stored habit. Returns the user ids whose analysis was cached."""
    if client is None:
        logger.info("Pattern agent is not configured, skipping pattern refresh")
        return []

    refreshed = []
    for user_id in await repository.list_user_ids():
        try:
            habit = await repository.get_habit(user_id)
            if not habit or not habit.checkIns or not should_regenerate_patterns(habit):
                continue
            now = datetime.now(timezone.utc)
            response = await request_pattern_analysis(habit, client, now)
            if response is None:
                continue
            await repository.save_pattern_snapshot(user_id, build_pattern_snapshot(habit, response, now))
            refreshed.append(user_id)
            logger.info("Generated pattern analysis for user %s", user_id)
        except Exception:
            logger.exception("Failed to refresh pattern analysis for user %s", user_id)
    return refreshed
