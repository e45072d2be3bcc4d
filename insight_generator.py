from datetime import datetime, timezone
from typing import List, Optional

from models import (
    ActionType,
    CheckInPatterns,
    DifficultyTrend,
    HabitSystem,
    HabitType,
    InsightType,
    PatternAnalysisResult,
    PatternInsight,
    PatternsProgress,
    PatternSuggestion,
)
from pattern_finder import percent

MAX_INSIGHTS = 3
PATTERNS_UNLOCK_CHECK_INS = 7

INSIGHT_ICONS = {
    InsightType.POSITIVE: "✓",
    InsightType.WARNING: "⚠",
    InsightType.NEUTRAL: "→",
}

ACTION_LABELS = {
    ActionType.ANCHOR: "Adjust anchor",
    ActionType.TINY_VERSION: "Use tiny version",
    ActionType.ENVIRONMENT: "Update setup",
    ActionType.TIMING: "Adjust timing",
    ActionType.GENERAL: "Start reflection",
}


def _insight(insight_id: str, insight_type: InsightType, content: str) -> PatternInsight:
    return PatternInsight(
        id=insight_id,
        type=insight_type,
        icon=INSIGHT_ICONS[insight_type],
        content=content,
    )


def _tiny_version_hint(system: Optional[HabitSystem]) -> str:
    if system and system.tinyVersion:
        return f' Your tiny version: "{system.tinyVersion}".'
    return ""


def generate_pattern_analysis(
    patterns: CheckInPatterns,
    system: Optional[HabitSystem],
    habit_type: HabitType,
    now: Optional[datetime] = None,
) -> PatternAnalysisResult:
    """
    Turn a CheckInPatterns snapshot into at most 3 insights and one suggestion.

    Candidates are checked in a fixed order: positives, then warnings, then
    neutrals. Only warnings propose a suggestion, and the first one to fire
    keeps it.
    """
    insights: List[PatternInsight] = []
    suggestion: Optional[PatternSuggestion] = None
    total = patterns.totalCheckIns

    # === Positive ===

    if total >= 5 and patterns.responseRateWhenTriggered >= 0.8:
        insights.append(_insight(
            "high_response",
            InsightType.POSITIVE,
            f"{percent(patterns.responseRateWhenTriggered)}% follow-through when triggered. Strong consistency.",
        ))

    if patterns.currentStreak >= 3:
        insights.append(_insight(
            "streak",
            InsightType.POSITIVE,
            f"{patterns.currentStreak} in a row. The habit is taking hold.",
        ))

    if habit_type == HabitType.REACTIVE and patterns.currentNoTriggerStreak >= 3:
        insights.append(_insight(
            "no_trigger_streak",
            InsightType.POSITIVE,
            f"{patterns.currentNoTriggerStreak} nights with no trigger. The habit may be improving your baseline.",
        ))

    if patterns.difficultyTrend == DifficultyTrend.DECREASING and total >= 7:
        insights.append(_insight(
            "easier",
            InsightType.POSITIVE,
            "Getting easier over time. The habit is settling in.",
        ))

    if patterns.missedCount >= 2 and patterns.recoveryRate >= 0.5:
        insights.append(_insight(
            "good_recovery",
            InsightType.POSITIVE,
            f"Recovered {percent(patterns.recoveryRate)}% of the time after misses. Good bounce-back.",
        ))

    if patterns.strongDays and total >= 7:
        insights.append(_insight(
            "strong_days",
            InsightType.POSITIVE,
            f"{' and '.join(patterns.strongDays)} are your best days.",
        ))

    # === Warning ===

    if patterns.weakDays and total >= 7:
        insights.append(_insight(
            "weak_days",
            InsightType.WARNING,
            f"{' and '.join(patterns.weakDays)} tend to be harder.",
        ))
        if suggestion is None:
            suggestion = PatternSuggestion(
                id="weak_days_suggestion",
                content=(
                    f"Your {patterns.weakDays[0]} anchor might need adjustment. "
                    "Consider a different trigger for these days."
                ),
                actionType=ActionType.ANCHOR,
                actionLabel="Adjust anchor",
            )

    reason = patterns.repeatedMissReason
    if reason and patterns.missReasonCounts.get(reason, 0) >= 2:
        insights.append(_insight(
            "repeated_miss",
            InsightType.WARNING,
            f'"{reason}" has come up {patterns.missReasonCounts[reason]} times.',
        ))
        if suggestion is None:
            suggestion = generate_suggestion_for_miss_reason(reason, system)

    if patterns.averageDifficulty >= 4 and total >= 5:
        insights.append(_insight(
            "high_difficulty",
            InsightType.WARNING,
            f"Average difficulty is {patterns.averageDifficulty:.1f}. This might not be sustainable.",
        ))
        if suggestion is None:
            suggestion = PatternSuggestion(
                id="difficulty_suggestion",
                content=(
                    "Consider dropping to your tiny version for a week. Sustainable beats ambitious."
                    + _tiny_version_hint(system)
                ),
                actionType=ActionType.TINY_VERSION,
                actionLabel="Use tiny version",
            )

    if total >= 5 and patterns.responseRateWhenTriggered <= 0.5:
        insights.append(_insight(
            "low_response",
            InsightType.WARNING,
            f"{percent(patterns.responseRateWhenTriggered)}% follow-through. The system may need adjustment.",
        ))
        if suggestion is None:
            suggestion = PatternSuggestion(
                id="response_suggestion",
                content="Something is blocking you. Let's look at your anchor and environment setup.",
                actionType=ActionType.ENVIRONMENT,
                actionLabel="Update setup",
            )

    if patterns.difficultyTrend == DifficultyTrend.INCREASING and total >= 7:
        insights.append(_insight(
            "harder",
            InsightType.WARNING,
            "Getting harder over time. The habit may need adjustment.",
        ))
        if suggestion is None:
            suggestion = PatternSuggestion(
                id="increasing_difficulty_suggestion",
                content=(
                    "The habit is feeling harder. This is a signal to simplify. Try your tiny version."
                    + _tiny_version_hint(system)
                ),
                actionType=ActionType.TINY_VERSION,
                actionLabel="Simplify habit",
            )

    # === Neutral ===

    if patterns.justCompletedWeek1:
        insights.append(_insight(
            "week1_complete",
            InsightType.NEUTRAL,
            "Week 1 complete. The hardest part is done.",
        ))

    if total >= 5 and patterns.missedCount == 0:
        insights.append(_insight(
            "no_misses",
            InsightType.NEUTRAL,
            "No misses yet. When one happens, recovery is ready.",
        ))

    generated_at = now or datetime.now(timezone.utc)
    return PatternAnalysisResult(
        insights=insights[:MAX_INSIGHTS],
        suggestion=suggestion,
        generatedAt=generated_at.isoformat(),
    )


def generate_suggestion_for_miss_reason(reason: str, system: Optional[HabitSystem]) -> PatternSuggestion:
    lower = reason.lower()

    if "tired" in lower or "energy" in lower:
        return PatternSuggestion(
            id="tired_suggestion",
            content="Tiredness keeps showing up. Consider: is the anchor fighting your energy levels?",
            actionType=ActionType.TIMING,
            actionLabel="Adjust timing",
        )

    if "forgot" in lower:
        return PatternSuggestion(
            id="forgot_suggestion",
            content="Forgetting suggests the anchor isn't visible enough. Add a physical cue to your environment.",
            actionType=ActionType.ENVIRONMENT,
            actionLabel="Update setup",
        )

    if "time" in lower or "busy" in lower:
        return PatternSuggestion(
            id="time_suggestion",
            content=(
                "When time is tight, your tiny version should kick in automatically. Is it small enough?"
                + _tiny_version_hint(system)
            ),
            actionType=ActionType.TINY_VERSION,
            actionLabel="Shrink tiny version",
        )

    return PatternSuggestion(
        id="general_suggestion",
        content="This barrier keeps appearing. Let's address it in your weekly reflection.",
        actionType=ActionType.GENERAL,
        actionLabel="Start reflection",
    )


def is_patterns_unlocked(patterns: Optional[CheckInPatterns]) -> bool:
    return patterns is not None and patterns.totalCheckIns >= PATTERNS_UNLOCK_CHECK_INS


def get_patterns_progress(check_in_count: int) -> PatternsProgress:
    current = min(check_in_count, PATTERNS_UNLOCK_CHECK_INS)
    return PatternsProgress(
        current=current,
        required=PATTERNS_UNLOCK_CHECK_INS,
        percentage=percent(current / PATTERNS_UNLOCK_CHECK_INS),
    )
