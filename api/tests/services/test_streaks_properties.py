"""Property-based tests for streaks_service using Hypothesis.

These tests verify properties that must hold for any sequence of activity
days, complementing the example-based tests in
unit/services/test_streaks_service.py.
"""

from datetime import UTC, date, datetime, timedelta

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from services.streaks_service import (
    INITIAL_ACTIVITY_SCORE,
    StaleEventRejectedError,
    calculate_activity_score,
    transition,
)

# Mark all tests in this module as unit tests (no database required)
pytestmark = pytest.mark.unit

BASE_DATE = date(2026, 1, 1)
NOW = datetime(2026, 6, 1, tzinfo=UTC)

# =============================================================================
# Custom Strategies
# =============================================================================


@st.composite
def day_sequences(draw, min_size: int = 1, max_size: int = 40) -> list[date]:
    """Non-decreasing activity days, with repeats and gaps of varying size."""
    gaps = draw(
        st.lists(
            st.integers(min_value=0, max_value=4),
            min_size=min_size,
            max_size=max_size,
        )
    )
    days = []
    current = BASE_DATE
    for gap in gaps:
        current += timedelta(days=gap)
        days.append(current)
    return days


hypothesis_settings = settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)


def _replay(days: list[date]):
    state = None
    history = []
    for day in days:
        state = transition(state, day, workspace_id="ws", user_id="u", now=NOW)
        history.append(state)
    return history


# =============================================================================
# Invariants
# =============================================================================


@pytest.mark.unit
class TestTransitionInvariants:
    @hypothesis_settings
    @given(days=day_sequences())
    def test_longest_streak_never_decreases(self, days: list[date]):
        history = _replay(days)
        longest = [s.longest_streak for s in history]
        assert longest == sorted(longest)

    @hypothesis_settings
    @given(days=day_sequences())
    def test_counters_are_ordered(self, days: list[date]):
        """0 <= current <= longest <= total_active_days."""
        for state in _replay(days):
            assert 0 <= state.current_streak <= state.longest_streak
            assert state.longest_streak <= state.total_active_days

    @hypothesis_settings
    @given(days=day_sequences())
    def test_total_active_days_counts_distinct_days(self, days: list[date]):
        history = _replay(days)
        assert history[-1].total_active_days == len(set(days))

    @hypothesis_settings
    @given(days=day_sequences())
    def test_score_matches_formula_after_first_day(self, days: list[date]):
        for state in _replay(days):
            if state.total_active_days == 1:
                assert state.activity_score == INITIAL_ACTIVITY_SCORE
            else:
                assert state.activity_score == calculate_activity_score(
                    state.total_active_days, state.current_streak
                )
            assert state.activity_score >= 0

    @hypothesis_settings
    @given(days=day_sequences())
    def test_last_active_date_is_latest_day(self, days: list[date]):
        assert _replay(days)[-1].last_active_date == max(days)

    @hypothesis_settings
    @given(days=day_sequences())
    def test_current_streak_is_trailing_run(self, days: list[date]):
        """current_streak equals the run of consecutive days ending last."""
        distinct = sorted(set(days))
        run = 1
        for earlier, later in zip(distinct, distinct[1:]):
            run = run + 1 if later - earlier == timedelta(days=1) else 1
        assert _replay(days)[-1].current_streak == run

    @hypothesis_settings
    @given(days=day_sequences())
    def test_replaying_last_day_is_a_no_op(self, days: list[date]):
        final = _replay(days)[-1]
        assert transition(final, final.last_active_date, now=NOW) is final

    @hypothesis_settings
    @given(
        days=day_sequences(),
        back=st.integers(min_value=1, max_value=30),
    )
    def test_earlier_day_always_rejected(self, days: list[date], back: int):
        final = _replay(days)[-1]
        with pytest.raises(StaleEventRejectedError):
            transition(final, final.last_active_date - timedelta(days=back))
