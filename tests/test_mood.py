"""Tests for ai_meetings/mood.py."""

import pytest

from ai_meetings.mood import (
    AgentStatus,
    KeywordMoodStrategy,
    Mood,
    MoodRules,
    MoodTrigger,
    MoodUpdate,
    neutral_state,
)


@pytest.fixture
def rules() -> MoodRules:
    return MoodRules()


def test_neutral_state_defaults():
    state = neutral_state("m1", "agent-1")
    assert state.mood is Mood.NEUTRAL
    assert state.status is AgentStatus.IDLE
    assert state.intensity == 0.5


def test_trigger_sets_mood_status_and_intensity(rules):
    state = rules.apply("m1", None, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.CHALLENGE_PRESENTED))
    assert state.mood is Mood.FOCUSED
    assert state.status is AgentStatus.THINKING
    assert state.intensity == 0.8
    assert state.trigger is MoodTrigger.CHALLENGE_PRESENTED


def test_intensity_clamped_to_max(rules):
    state = neutral_state("m1", "agent-1")
    for _ in range(3):
        state = rules.apply("m1", state, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.IDEA_BREAKTHROUGH))
    assert state.intensity == 1.0


def test_intensity_clamped_to_min(rules):
    state = rules.apply(
        "m1", None, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.DISAGREEMENT, intensity=0.0)
    )
    assert state.intensity == 0.1


def test_explicit_fields_override_trigger_defaults(rules):
    update = MoodUpdate(
        agent_id="agent-1",
        trigger=MoodTrigger.CHALLENGE_PRESENTED,
        mood=Mood.CURIOUS,
        status=AgentStatus.TYPING,
    )
    state = rules.apply("m1", None, update)
    assert state.mood is Mood.CURIOUS
    assert state.status is AgentStatus.TYPING


def test_reset_returns_to_neutral(rules):
    excited = rules.apply("m1", None, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.IDEA_BREAKTHROUGH))
    state = rules.apply("m1", excited, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.RESET))
    assert state.mood is Mood.NEUTRAL
    assert state.status is AgentStatus.IDLE
    assert state.intensity == 0.5


def test_timeout_keeps_mood_and_status(rules):
    focused = rules.apply("m1", None, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.CHALLENGE_PRESENTED))
    state = rules.apply("m1", focused, MoodUpdate(agent_id="agent-1", trigger=MoodTrigger.TIMEOUT))
    assert state.mood is Mood.FOCUSED
    assert state.status is AgentStatus.THINKING
    assert state.intensity == 0.75


@pytest.mark.parametrize(
    "content, mood, trigger",
    [
        ("What a great idea, I'm excited!", Mood.EXCITED, MoodTrigger.POSITIVE_FEEDBACK),
        ("I disagree with the premise.", Mood.ANALYTICAL, MoodTrigger.DISAGREEMENT),
        ("Let me think about the tradeoffs.", Mood.CONTEMPLATIVE, MoodTrigger.CHALLENGE_PRESENTED),
        ("Building on the last point...", Mood.COLLABORATIVE, MoodTrigger.COLLABORATION_START),
        ("Eureka: bundle the tiers.", Mood.CREATIVE, MoodTrigger.IDEA_BREAKTHROUGH),
        ("Happy to help the team.", Mood.SUPPORTIVE, MoodTrigger.SUPPORT_GIVEN),
        ("Plain answer.", Mood.NEUTRAL, MoodTrigger.RESET),
    ],
)
def test_keyword_strategy(content, mood, trigger):
    suggestion = KeywordMoodStrategy().suggest(content)
    assert suggestion.mood is mood
    assert suggestion.trigger is trigger


def test_keyword_strategy_first_cue_wins():
    # "however" (disagreement) is listed before "together" (collaboration)
    suggestion = KeywordMoodStrategy().suggest("Together we could, however, do better.")
    assert suggestion.mood is Mood.ANALYTICAL


def test_keyword_strategy_custom_cues():
    strategy = KeywordMoodStrategy([(("ship",), Mood.CONFIDENT, MoodTrigger.COMPLETION)])
    assert strategy.suggest("Ship it").mood is Mood.CONFIDENT
    assert strategy.suggest("I disagree").mood is Mood.NEUTRAL
