"""Agent mood model: enums, trigger rules and the content-to-mood strategy."""

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol


class Mood(StrEnum):
    FOCUSED = "focused"
    EXCITED = "excited"
    COLLABORATIVE = "collaborative"
    CONTEMPLATIVE = "contemplative"
    ENERGETIC = "energetic"
    ANALYTICAL = "analytical"
    CREATIVE = "creative"
    SUPPORTIVE = "supportive"
    CURIOUS = "curious"
    CONFIDENT = "confident"
    NEUTRAL = "neutral"


class AgentStatus(StrEnum):
    IDLE = "idle"
    THINKING = "thinking"
    TYPING = "typing"
    LISTENING = "listening"
    RESPONDING = "responding"
    SYNTHESIZING = "synthesizing"
    REVIEWING = "reviewing"
    OFFLINE = "offline"


class MoodTrigger(StrEnum):
    POSITIVE_FEEDBACK = "positive_feedback"
    CHALLENGE_PRESENTED = "challenge_presented"
    COLLABORATION_START = "collaboration_start"
    IDEA_BREAKTHROUGH = "idea_breakthrough"
    DISAGREEMENT = "disagreement"
    COMPLETION = "completion"
    COMPLEXITY_INCREASE = "complexity_increase"
    SUPPORT_GIVEN = "support_given"
    SUPPORT_RECEIVED = "support_received"
    TIMEOUT = "timeout"
    RESET = "reset"


DEFAULT_INTENSITY = 0.5
MIN_INTENSITY = 0.1
MAX_INTENSITY = 1.0


@dataclass(frozen=True)
class MoodState:
    meeting_id: str
    agent_id: str
    mood: Mood
    intensity: float
    status: AgentStatus
    last_updated: float
    trigger: MoodTrigger | None = None


@dataclass(frozen=True)
class MoodUpdate:
    agent_id: str
    trigger: MoodTrigger
    mood: Mood | None = None
    status: AgentStatus | None = None
    intensity: float | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MoodSuggestion:
    mood: Mood
    trigger: MoodTrigger


def neutral_state(meeting_id: str, agent_id: str) -> MoodState:
    return MoodState(
        meeting_id=meeting_id,
        agent_id=agent_id,
        mood=Mood.NEUTRAL,
        intensity=DEFAULT_INTENSITY,
        status=AgentStatus.IDLE,
        last_updated=time.time(),
    )


_INTENSITY_DELTAS: dict[MoodTrigger, float] = {
    MoodTrigger.POSITIVE_FEEDBACK: 0.2,
    MoodTrigger.CHALLENGE_PRESENTED: 0.3,
    MoodTrigger.COLLABORATION_START: 0.1,
    MoodTrigger.IDEA_BREAKTHROUGH: 0.4,
    MoodTrigger.DISAGREEMENT: -0.1,
    MoodTrigger.COMPLETION: 0.3,
    MoodTrigger.COMPLEXITY_INCREASE: 0.2,
    MoodTrigger.SUPPORT_GIVEN: 0.15,
    MoodTrigger.SUPPORT_RECEIVED: 0.1,
    MoodTrigger.TIMEOUT: -0.05,
    MoodTrigger.RESET: -0.5,
}

_TRIGGER_EFFECTS: dict[MoodTrigger, tuple[Mood, AgentStatus]] = {
    MoodTrigger.POSITIVE_FEEDBACK: (Mood.EXCITED, AgentStatus.RESPONDING),
    MoodTrigger.CHALLENGE_PRESENTED: (Mood.FOCUSED, AgentStatus.THINKING),
    MoodTrigger.COLLABORATION_START: (Mood.COLLABORATIVE, AgentStatus.LISTENING),
    MoodTrigger.IDEA_BREAKTHROUGH: (Mood.CREATIVE, AgentStatus.RESPONDING),
    MoodTrigger.DISAGREEMENT: (Mood.ANALYTICAL, AgentStatus.REVIEWING),
    MoodTrigger.COMPLETION: (Mood.CONFIDENT, AgentStatus.IDLE),
    MoodTrigger.COMPLEXITY_INCREASE: (Mood.CONTEMPLATIVE, AgentStatus.THINKING),
    MoodTrigger.SUPPORT_GIVEN: (Mood.SUPPORTIVE, AgentStatus.RESPONDING),
    MoodTrigger.SUPPORT_RECEIVED: (Mood.COLLABORATIVE, AgentStatus.LISTENING),
    MoodTrigger.RESET: (Mood.NEUTRAL, AgentStatus.IDLE),
}


def _clamp(value: float) -> float:
    return max(MIN_INTENSITY, min(MAX_INTENSITY, value))


class MoodRules:
    """Resolve a MoodUpdate against the agent's current state.

    Trigger effects set the defaults; fields given explicitly on the update
    win over them. A reset always lands on neutral / idle / 0.5.
    """

    def apply(self, meeting_id: str, current: MoodState | None, update: MoodUpdate) -> MoodState:
        base = current or neutral_state(meeting_id, update.agent_id)
        mood, status = _TRIGGER_EFFECTS.get(update.trigger, (base.mood, base.status))

        if update.trigger is MoodTrigger.RESET:
            intensity = DEFAULT_INTENSITY
        elif update.intensity is not None:
            intensity = _clamp(update.intensity)
        else:
            intensity = _clamp(base.intensity + _INTENSITY_DELTAS.get(update.trigger, 0.0))

        return MoodState(
            meeting_id=meeting_id,
            agent_id=update.agent_id,
            mood=update.mood or mood,
            intensity=round(intensity, 4),
            status=update.status or status,
            last_updated=time.time(),
            trigger=update.trigger,
        )


class MoodStrategy(Protocol):
    def suggest(self, content: str) -> MoodSuggestion: ...


_KEYWORD_CUES: list[tuple[tuple[str, ...], Mood, MoodTrigger]] = [
    (("excited", "great idea"), Mood.EXCITED, MoodTrigger.POSITIVE_FEEDBACK),
    (("i disagree", "however"), Mood.ANALYTICAL, MoodTrigger.DISAGREEMENT),
    (("let me think", "considering"), Mood.CONTEMPLATIVE, MoodTrigger.CHALLENGE_PRESENTED),
    (("building on", "together"), Mood.COLLABORATIVE, MoodTrigger.COLLABORATION_START),
    (("eureka", "breakthrough"), Mood.CREATIVE, MoodTrigger.IDEA_BREAKTHROUGH),
    (("help", "support"), Mood.SUPPORTIVE, MoodTrigger.SUPPORT_GIVEN),
]


class KeywordMoodStrategy:
    """First matching keyword cue wins; no match means neutral."""

    def __init__(self, cues: list[tuple[tuple[str, ...], Mood, MoodTrigger]] | None = None) -> None:
        self._cues = cues if cues is not None else _KEYWORD_CUES

    def suggest(self, content: str) -> MoodSuggestion:
        lowered = content.lower()
        for keywords, mood, trigger in self._cues:
            if any(k in lowered for k in keywords):
                return MoodSuggestion(mood=mood, trigger=trigger)
        return MoodSuggestion(mood=Mood.NEUTRAL, trigger=MoodTrigger.RESET)
