"""
Tests for rule-based insight and suggestion generation.
"""
from datetime import datetime, timezone

import pytest

from insight_generator import (
    generate_pattern_analysis,
    generate_suggestion_for_miss_reason,
    get_patterns_progress,
    is_patterns_unlocked,
)
from models import ActionType, CheckIn, DifficultyTrend, HabitSystem, HabitType, InsightType
from pattern_finder import analyze_patterns

NOW = datetime(2024, 1, 14, 12, 0, tzinfo=timezone.utc)

SYSTEM = HabitSystem(anchor="After I pour my coffee", action="Stretch for 2 minutes", recovery="Stretch before bed")


def patterns_with(**fields):
    """An empty-history snapshot with selected fields overridden."""
    return analyze_patterns([], HabitType.TIME_ANCHORED).model_copy(update=fields)


def ids(result):
    return [insight.id for insight in result.insights]


class TestInsightSelection:
    def test_empty_history_has_nothing_to_say(self):
        result = generate_pattern_analysis(patterns_with(), SYSTEM, HabitType.TIME_ANCHORED, now=NOW)
        assert result.insights == []
        assert result.suggestion is None
        assert result.generatedAt == NOW.isoformat()

    def test_cap_and_first_warning_wins_suggestion(self):
        patterns = patterns_with(
            totalCheckIns=10,
            responseRateWhenTriggered=0.9,
            currentStreak=4,
            missedCount=1,
            weakDays=["Mon"],
            repeatedMissReason="too tired",
            missReasonCounts={"too tired": 2},
            averageDifficulty=4.2,
        )
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert ids(result) == ["high_response", "streak", "weak_days"]
        assert result.suggestion.id == "weak_days_suggestion"
        assert result.suggestion.actionType == ActionType.ANCHOR
        assert "Mon" in result.suggestion.content

    def test_repeated_reason_beats_later_warnings(self):
        patterns = patterns_with(
            totalCheckIns=6,
            missedCount=3,
            responseRateWhenTriggered=0.4,
            repeatedMissReason="forgot",
            missReasonCounts={"forgot": 3},
            averageDifficulty=4.5,
        )
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert ids(result) == ["repeated_miss", "high_difficulty", "low_response"]
        assert result.suggestion.id == "forgot_suggestion"
        assert result.suggestion.actionType == ActionType.ENVIRONMENT

    def test_weak_days_need_a_week_of_data(self):
        patterns = patterns_with(totalCheckIns=6, weakDays=["Mon"], missedCount=1, responseRateWhenTriggered=0.6)
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)
        assert "weak_days" not in ids(result)
        assert result.suggestion is None

    def test_high_difficulty_suggests_tiny_version(self):
        system = SYSTEM.model_copy(update={"tinyVersion": "One stretch"})
        patterns = patterns_with(totalCheckIns=5, missedCount=1, responseRateWhenTriggered=0.75, averageDifficulty=4.0)
        result = generate_pattern_analysis(patterns, system, HabitType.TIME_ANCHORED, now=NOW)

        assert ids(result) == ["high_difficulty"]
        assert result.suggestion.actionType == ActionType.TINY_VERSION
        assert result.suggestion.actionLabel == "Use tiny version"
        assert '"One stretch"' in result.suggestion.content

    def test_increasing_difficulty_suggests_simplifying(self):
        patterns = patterns_with(
            totalCheckIns=8, missedCount=1, responseRateWhenTriggered=0.7, difficultyTrend=DifficultyTrend.INCREASING
        )
        result = generate_pattern_analysis(patterns, None, HabitType.TIME_ANCHORED, now=NOW)

        assert ids(result) == ["harder"]
        assert result.suggestion.id == "increasing_difficulty_suggestion"
        assert result.suggestion.actionLabel == "Simplify habit"

    def test_positive_insights_never_suggest(self):
        patterns = patterns_with(
            totalCheckIns=9,
            missedCount=2,
            recoveryRate=0.5,
            responseRateWhenTriggered=0.8,
            difficultyTrend=DifficultyTrend.DECREASING,
            strongDays=["Tue", "Thu"],
        )
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert ids(result) == ["high_response", "easier", "good_recovery"]
        assert result.insights[0].content.startswith("80% follow-through")
        assert all(insight.type == InsightType.POSITIVE for insight in result.insights)
        assert result.suggestion is None

    def test_strong_days_joined(self):
        patterns = patterns_with(totalCheckIns=7, missedCount=1, responseRateWhenTriggered=0.7, strongDays=["Tue", "Thu"])
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)
        assert result.insights[0].content == "Tue and Thu are your best days."

    def test_no_trigger_streak_only_for_reactive(self):
        patterns = patterns_with(currentNoTriggerStreak=4)

        reactive = generate_pattern_analysis(patterns, SYSTEM, HabitType.REACTIVE, now=NOW)
        anchored = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert ids(reactive) == ["no_trigger_streak"]
        assert reactive.insights[0].content.startswith("4 nights with no trigger")
        assert ids(anchored) == []

    def test_icons_follow_insight_type(self):
        patterns = patterns_with(
            totalCheckIns=7, currentStreak=3, responseRateWhenTriggered=0.5, justCompletedWeek1=True, missedCount=1
        )
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert [(i.id, i.type, i.icon) for i in result.insights] == [
            ("streak", InsightType.POSITIVE, "✓"),
            ("low_response", InsightType.WARNING, "⚠"),
            ("week1_complete", InsightType.NEUTRAL, "→"),
        ]


class TestScenarios:
    def test_first_week_all_completed(self, make_history):
        patterns = analyze_patterns(make_history("CCCCCCC"), HabitType.TIME_ANCHORED)
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert patterns.justCompletedWeek1
        assert ids(result) == ["high_response", "streak", "week1_complete"]
        assert result.suggestion is None

    def test_repeated_tiredness_suggests_timing(self):
        check_ins = [
            CheckIn(date="2024-01-06", triggerOccurred=True, actionTaken=True),
            CheckIn(date="2024-01-05", triggerOccurred=True, actionTaken=False, missReason="too tired"),
            CheckIn(date="2024-01-04", triggerOccurred=True, actionTaken=True),
            CheckIn(date="2024-01-03", triggerOccurred=True, actionTaken=True),
            CheckIn(date="2024-01-02", triggerOccurred=True, actionTaken=False, missReason="Too tired"),
            CheckIn(date="2024-01-01", triggerOccurred=True, actionTaken=True),
        ]
        patterns = analyze_patterns(check_ins, HabitType.TIME_ANCHORED)
        result = generate_pattern_analysis(patterns, SYSTEM, HabitType.TIME_ANCHORED, now=NOW)

        assert patterns.repeatedMissReason == "too tired"
        assert "repeated_miss" in ids(result)
        assert result.insights[0].content == '"too tired" has come up 2 times.'
        assert result.suggestion.actionType == ActionType.TIMING

    def test_same_snapshot_same_result(self, make_history):
        patterns = analyze_patterns(make_history("CCMCCNCCM"), HabitType.EVENT_ANCHORED)
        first = generate_pattern_analysis(patterns, SYSTEM, HabitType.EVENT_ANCHORED, now=NOW)
        second = generate_pattern_analysis(patterns, SYSTEM, HabitType.EVENT_ANCHORED, now=NOW)
        assert first == second


class TestMissReasonSuggestions:
    @pytest.mark.parametrize(
        "reason,action_type,suggestion_id",
        [
            ("too tired", ActionType.TIMING, "tired_suggestion"),
            ("low energy", ActionType.TIMING, "tired_suggestion"),
            ("forgot again", ActionType.ENVIRONMENT, "forgot_suggestion"),
            ("no time", ActionType.TINY_VERSION, "time_suggestion"),
            ("Busy day", ActionType.TINY_VERSION, "time_suggestion"),
            ("sick", ActionType.GENERAL, "general_suggestion"),
        ],
    )
    def test_keyword_mapping(self, reason, action_type, suggestion_id):
        suggestion = generate_suggestion_for_miss_reason(reason, SYSTEM)
        assert suggestion.actionType == action_type
        assert suggestion.id == suggestion_id


class TestUnlock:
    def test_unlocked_after_a_week(self, make_history):
        assert not is_patterns_unlocked(None)
        assert not is_patterns_unlocked(analyze_patterns(make_history("CCCCCC"), HabitType.TIME_ANCHORED))
        assert is_patterns_unlocked(analyze_patterns(make_history("CCCCCCC"), HabitType.TIME_ANCHORED))

    def test_progress(self):
        progress = get_patterns_progress(3)
        assert (progress.current, progress.required, progress.percentage) == (3, 7, 43)

        progress = get_patterns_progress(12)
        assert (progress.current, progress.required, progress.percentage) == (7, 7, 100)
