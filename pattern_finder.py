import math
from typing import Dict, List, Optional, Sequence, Tuple

from models import (
    CheckIn,
    CheckInPatterns,
    CheckInState,
    DayOfWeekStats,
    DifficultyTrend,
    HabitType,
    PatternTrends,
    get_check_in_state,
    parse_day,
)

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

DEFAULT_DIFFICULTY = 3.0

STREAK_STATES = (CheckInState.COMPLETED, CheckInState.RECOVERED)


def analyze_patterns(check_ins: Sequence[CheckIn], habit_type: HabitType) -> CheckInPatterns:
    """
    Analyze a check-in history and return a fresh CheckInPatterns snapshot.

    The input is never mutated. Records are ordered by calendar day; records
    sharing a day keep the order they were supplied in.
    """
    # Most recent first
    newest_first = sorted(check_ins, key=lambda c: parse_day(c.date), reverse=True)
    total = len(newest_first)
    states = [get_check_in_state(c) for c in newest_first]

    completed_count = sum(1 for c in newest_first if c.triggerOccurred and c.actionTaken)
    missed_count = sum(1 for c in newest_first if c.triggerOccurred and not c.actionTaken)
    no_trigger_count = states.count(CheckInState.NO_TRIGGER)
    recovered_count = states.count(CheckInState.RECOVERED)

    triggered = [c for c in newest_first if c.triggerOccurred]
    trigger_occurrence_rate = len(triggered) / total if total else 0.0
    response_rate = _response_rate(triggered)

    day_of_week_stats = analyze_day_of_week(newest_first)
    strong_days, weak_days = identify_strong_weak_days(day_of_week_stats)

    miss_reason_counts = count_miss_reasons(newest_first)

    return CheckInPatterns(
        totalCheckIns=total,
        completedCount=completed_count,
        missedCount=missed_count,
        noTriggerCount=no_trigger_count,
        recoveredCount=recovered_count,
        triggerOccurrenceRate=trigger_occurrence_rate,
        responseRateWhenTriggered=response_rate,
        recoveryRate=recovered_count / missed_count if missed_count else 0.0,
        outcomeSuccessRate=calculate_outcome_success_rate(newest_first),
        currentStreak=calculate_current_streak(newest_first, habit_type),
        currentNoTriggerStreak=calculate_no_trigger_streak(newest_first),
        longestStreak=calculate_longest_streak(newest_first, habit_type),
        dayOfWeekStats=day_of_week_stats,
        strongDays=strong_days,
        weakDays=weak_days,
        missReasonCounts=miss_reason_counts,
        repeatedMissReason=find_repeated_reason(miss_reason_counts),
        averageDifficulty=calculate_average_difficulty(newest_first),
        difficultyTrend=calculate_difficulty_trend(newest_first),
        trends=analyze_trends(newest_first),
        isFirstRep=completed_count == 1,
        isFirstMiss=missed_count == 1,
        isFirstRecovery=recovered_count == 1,
        justCompletedWeek1=total == 7,
    )


def calculate_current_streak(newest_first: Sequence[CheckIn], habit_type: HabitType) -> int:
    """Walk back from the latest check-in; reactive habits skip over no-trigger days."""
    streak = 0
    for check_in in newest_first:
        state = get_check_in_state(check_in)
        if state in STREAK_STATES:
            streak += 1
        elif state == CheckInState.MISSED:
            break
        elif habit_type != HabitType.REACTIVE:
            break
    return streak


def calculate_no_trigger_streak(newest_first: Sequence[CheckIn]) -> int:
    streak = 0
    for check_in in newest_first:
        if check_in.triggerOccurred:
            break
        streak += 1
    return streak


def calculate_longest_streak(check_ins: Sequence[CheckIn], habit_type: HabitType) -> int:
    chronological = sorted(check_ins, key=lambda c: parse_day(c.date))

    longest = 0
    current = 0
    for check_in in chronological:
        state = get_check_in_state(check_in)
        if state in STREAK_STATES:
            current += 1
            longest = max(longest, current)
        elif state == CheckInState.MISSED:
            current = 0
        elif habit_type != HabitType.REACTIVE:
            current = 0
        # a reactive no-trigger day neither extends nor resets the run
    return longest


def analyze_day_of_week(check_ins: Sequence[CheckIn]) -> Dict[str, DayOfWeekStats]:
    counts = {day: {"completed": 0, "missed": 0, "total": 0} for day in DAY_NAMES}

    for check_in in check_ins:
        # isoweekday() is Mon=1..Sun=7; modulo 7 gives Sun=0..Sat=6
        day_name = DAY_NAMES[parse_day(check_in.date).isoweekday() % 7]
        state = get_check_in_state(check_in)

        counts[day_name]["total"] += 1
        if state in STREAK_STATES:
            counts[day_name]["completed"] += 1
        elif state == CheckInState.MISSED:
            counts[day_name]["missed"] += 1

    return {day: DayOfWeekStats(**stats) for day, stats in counts.items()}


def identify_strong_weak_days(stats: Dict[str, DayOfWeekStats]) -> Tuple[List[str], List[str]]:
    """
    Strong days complete at least 80% of the time, weak days at most 40%
    with at least one real miss. Days with fewer than 2 records are skipped.
    """
    strong_days = []
    weak_days = []

    for day in DAY_NAMES:
        data = stats[day]
        if data.total < 2:
            continue

        completion_rate = data.completed / data.total
        if completion_rate >= 0.8:
            strong_days.append(day)
        elif completion_rate <= 0.4 and data.missed >= 1:
            weak_days.append(day)

    return strong_days, weak_days


def count_miss_reasons(check_ins: Sequence[CheckIn]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for check_in in check_ins:
        if check_in.missReason:
            reason = check_in.missReason.lower()
            counts[reason] = counts.get(reason, 0) + 1
    return counts


def find_repeated_reason(counts: Dict[str, int]) -> Optional[str]:
    """Most frequent reason seen at least twice; the first one wins a tie."""
    max_reason = None
    max_count = 1
    for reason, count in counts.items():
        if count > max_count:
            max_count = count
            max_reason = reason
    return max_reason


def calculate_average_difficulty(check_ins: Sequence[CheckIn]) -> float:
    ratings = [c.difficultyRating for c in check_ins if c.difficultyRating is not None]
    return _mean(ratings)


def calculate_difficulty_trend(newest_first: Sequence[CheckIn]) -> DifficultyTrend:
    ratings = [c.difficultyRating for c in newest_first if c.difficultyRating is not None]
    if len(ratings) < 4:
        return DifficultyTrend.STABLE

    midpoint = len(ratings) // 2
    difference = _mean(ratings[:midpoint]) - _mean(ratings[midpoint:])

    if difference <= -0.5:
        return DifficultyTrend.DECREASING
    if difference >= 0.5:
        return DifficultyTrend.INCREASING
    return DifficultyTrend.STABLE


def analyze_trends(newest_first: Sequence[CheckIn]) -> PatternTrends:
    """Compare the latest 7 check-ins against the 7 before them."""
    if len(newest_first) < 8:
        return PatternTrends()

    recent = newest_first[:7]
    previous = newest_first[7:14]
    if len(previous) < 3:
        return PatternTrends()

    recent_response = _response_rate([c for c in recent if c.triggerOccurred])
    previous_response = _response_rate([c for c in previous if c.triggerOccurred])

    recent_trigger_rate = sum(1 for c in recent if c.triggerOccurred) / len(recent)
    previous_trigger_rate = sum(1 for c in previous if c.triggerOccurred) / len(previous)

    recent_difficulty = calculate_average_difficulty(recent)
    previous_difficulty = calculate_average_difficulty(previous)

    return PatternTrends(
        responseRateImproving=recent_response > previous_response + 0.1,
        triggerOccurrenceDecreasing=recent_trigger_rate < previous_trigger_rate - 0.1,
        difficultyDecreasing=recent_difficulty < previous_difficulty - 0.3,
    )


def calculate_outcome_success_rate(check_ins: Sequence[CheckIn]) -> float:
    outcomes = [c.outcomeSuccess for c in check_ins if c.outcomeSuccess is not None]
    if not outcomes:
        return 0.0
    return sum(1 for o in outcomes if o) / len(outcomes)


def get_pattern_summary(patterns: CheckInPatterns) -> List[str]:
    summaries = []

    if patterns.currentStreak >= 3:
        summaries.append(f"{patterns.currentStreak} in a row")

    if patterns.responseRateWhenTriggered >= 0.8 and patterns.totalCheckIns >= 5:
        summaries.append(f"{percent(patterns.responseRateWhenTriggered)}% follow-through")

    if patterns.weakDays:
        summaries.append(f"{', '.join(patterns.weakDays)} need attention")

    if patterns.difficultyTrend == DifficultyTrend.DECREASING:
        summaries.append("Getting easier")

    return summaries


def _response_rate(triggered: Sequence[CheckIn]) -> float:
    if not triggered:
        return 0.0
    return sum(1 for c in triggered if c.actionTaken) / len(triggered)


def _mean(ratings: Sequence[int]) -> float:
    if not ratings:
        return DEFAULT_DIFFICULTY
    return sum(ratings) / len(ratings)


def percent(rate: float) -> int:
    """Whole-number percentage, halves rounded up."""
    return math.floor(rate * 100 + 0.5)
