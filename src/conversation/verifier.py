"""
Goal Verifier - decides whether the autonomous conversation should stop.

One verifier exists per conversation. It extracts the human's intent
(sticky: set on the first successful extraction, cleared only on a new
human turn or reset) and asks the model whether that intent is met.

Strictness is graduated by the number of accepted messages since the
last human turn. The level only biases the instructions in the prompt;
the stop/continue decision is still the model's:

| count | level       | policy bias                                           |
|-------|-------------|-------------------------------------------------------|
| <=3   | lenient     | continue unless intent is clearly and fully satisfied |
| 4-7   | moderate    | stop once intent is reasonably addressed              |
| 8-12  | strict      | stop on any repetition or stalled progress            |
| >12   | very strict | stop unless clear, substantial new progress is evident|

Failures fail open: a call error or unparseable output yields
``should_stop=False`` with the previously known intent.
"""

from __future__ import annotations

from enum import Enum

from src.conversation.models import StickyIntent, VerificationResult
from src.conversation.scheduler import ModelCallScheduler
from src.conversation.structured_output import StructuredOutputError, parse_json_object
from src.core.constants import ModelBudgets
from src.core.logging import get_logger


logger = get_logger(__name__)


class StrictnessLevel(str, Enum):
    """Verifier strictness, selected by accepted-message count."""

    LENIENT = "lenient"
    MODERATE = "moderate"
    STRICT = "strict"
    VERY_STRICT = "very strict"

    @property
    def guidance(self) -> str:
        return _GUIDANCE[self]


_GUIDANCE: dict[StrictnessLevel, str] = {
    StrictnessLevel.LENIENT: (
        "The discussion has just started. Continue the conversation unless the "
        "user's intent is clearly and fully satisfied."
    ),
    StrictnessLevel.MODERATE: (
        "The discussion is under way. Stop once the user's intent has been "
        "reasonably addressed."
    ),
    StrictnessLevel.STRICT: (
        "The discussion is getting long. Stop on any repetition, circular "
        "discussion or stalled progress."
    ),
    StrictnessLevel.VERY_STRICT: (
        "The discussion is very long. Stop unless clear, substantial new "
        "progress toward the user's intent is evident."
    ),
}


def strictness_for(accepted_count: int) -> StrictnessLevel:
    """Map accepted messages since the last human turn to a strictness level."""
    if accepted_count <= 3:
        return StrictnessLevel.LENIENT
    if accepted_count <= 7:
        return StrictnessLevel.MODERATE
    if accepted_count <= 12:
        return StrictnessLevel.STRICT
    return StrictnessLevel.VERY_STRICT


class GoalVerifier:
    """Per-conversation stop/continue verifier.

    Attributes:
        endpoint: Completion endpoint URL.
        model: Model name.
    """

    def __init__(
        self,
        scheduler: ModelCallScheduler,
        endpoint: str,
        model: str,
        max_tokens: int = ModelBudgets.VERIFIER_MAX_TOKENS,
        temperature: float = ModelBudgets.VERIFIER_TEMPERATURE,
    ) -> None:
        self._scheduler = scheduler
        self.endpoint = endpoint
        self.model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._intent = StickyIntent()
        self._epoch = 0

    @property
    def user_intent(self) -> str:
        return self._intent.value

    @property
    def epoch(self) -> int:
        """Incremented on every reset; results from an older epoch never set the intent."""
        return self._epoch

    def reset(self) -> None:
        """Forget the extracted intent (new human turn or conversation reset)."""
        self._intent.clear()
        self._epoch += 1

    def restore(self, user_intent: str) -> None:
        """Re-seed the sticky intent after a warm restart."""
        self.reset()
        self._intent.offer(user_intent)

    async def verify(
        self,
        initial_human_message: str,
        block_summary: str,
        latest_content: str,
        latest_speaker: str,
        accepted_count: int,
        epoch: int | None = None,
    ) -> VerificationResult:
        """Decide whether the conversation should stop.

        Args:
            epoch: Value of ``epoch`` when the verification was requested.
                If a reset happened since, the extracted intent is ignored.
        """
        level = strictness_for(accepted_count)
        prompt = self.build_prompt(
            initial_human_message, block_summary, latest_content, latest_speaker, accepted_count, level
        )

        try:
            response = await self._scheduler.submit(
                self.endpoint,
                self.model,
                [{"role": "user", "content": prompt}],
                self._max_tokens,
                self._temperature,
            )
            parsed = parse_json_object(response)
        except StructuredOutputError as e:
            logger.warning("Verifier output unparseable, continuing", error=str(e))
            return VerificationResult(should_stop=False, stop_reason="", user_intent=self.user_intent)
        except Exception as e:
            logger.warning("Verifier call failed, continuing", error=str(e))
            return VerificationResult(should_stop=False, stop_reason="", user_intent=self.user_intent)

        extracted = parsed.get("user_intent")
        current = epoch is None or epoch == self._epoch
        if current and isinstance(extracted, str) and self._intent.offer(extracted):
            logger.info("User intent identified", user_intent=self.user_intent)

        should_stop = parsed.get("should_stop") is True
        stop_reason = parsed.get("stop_reason") if should_stop else ""
        result = VerificationResult(
            should_stop=should_stop,
            stop_reason=str(stop_reason or ""),
            user_intent=self.user_intent,
        )

        if result.should_stop:
            logger.info("Verifier recommends stop", strictness=level.value, stop_reason=result.stop_reason)
        else:
            logger.debug("Verifier recommends continue", strictness=level.value)
        return result

    def build_prompt(
        self,
        initial_human_message: str,
        block_summary: str,
        latest_content: str,
        latest_speaker: str,
        accepted_count: int,
        level: StrictnessLevel,
    ) -> str:
        known = f" (previously identified: {self.user_intent})" if self.user_intent else ""
        return "\n".join([
            "Below are the user's initial message and the conversation so far.",
            "",
            "Initial user message:",
            initial_human_message or "(none)",
            "",
            "Conversation summary so far:",
            block_summary or "(none)",
            "",
            "Latest message:",
            f"{latest_speaker}: {latest_content}",
            "",
            f"Messages since the user last spoke: {accepted_count}",
            f"Strictness: {level.value.upper()} - {level.guidance}",
            "",
            "Do the following:",
            f"1. Identify the purpose (intent) of the user's initial message{known}.",
            "2. Judge whether the conversation has sufficiently satisfied that purpose.",
            "3. Or judge whether the conversation is no longer making progress toward it.",
            "",
            "Stop the conversation when:",
            "- the user's question has been sufficiently answered",
            "- the requested information, recommendation or opinion has been provided",
            "- the conversation repeats itself or circles without new insight",
            "- the topic has drifted away entirely",
            "",
            "Continue the conversation when:",
            "- the answer to the user's question is still insufficient",
            "- the discussion is active and new ideas are appearing",
            "- more discussion is needed to reach the user's goal",
            "",
            "Respond with JSON only:",
            "{",
            '  "user_intent": "the user\'s purpose, briefly",',
            '  "should_stop": true,',
            '  "stop_reason": "why the conversation should end"',
            "}",
            "",
            "If should_stop is false, set stop_reason to an empty string.",
        ])
