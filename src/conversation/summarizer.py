"""
Block Summarizer - rolling summary and next-speaker recommendation.

One structured-output model call per accepted message folds the new
message into the rolling block summary and recommends who should speak
next from the eligible roster (all agent personas plus the human).

The result is always usable. If the call fails, the output does not
parse, or the recommended speaker is not on the roster, the summarizer
falls back to a deterministic policy:

    summary      = (prior + "\\n\\n" + "speaker: content")[:max_chars]
    next speaker = human sentinel
    rationale    = ""
"""

from __future__ import annotations

from typing import Any

from src.conversation.models import HUMAN, AgentPersona, Message, SpeakerRef, SummaryResult
from src.conversation.scheduler import ModelCallScheduler
from src.conversation.structured_output import StructuredOutputError, parse_json_object
from src.core.constants import DEFAULT_SUMMARY_MAX_CHARS, ModelBudgets
from src.core.logging import get_logger


logger = get_logger(__name__)

_NONE_PLACEHOLDER = "(none)"


def fallback_summary(
    prior_summary: str,
    message: Message,
    max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
) -> SummaryResult:
    """Deterministic result used whenever the model cannot be trusted."""
    summary = f"{prior_summary}\n\n{message.speaker}: {message.content}"[:max_chars]
    return SummaryResult(summary=summary, next_speaker=HUMAN, rationale="", fallback=True)


def eligible_speakers(roster: list[AgentPersona]) -> list[SpeakerRef]:
    """All agent personas followed by the human sentinel."""
    return [persona.speaker for persona in roster] + [HUMAN]


def match_speaker(candidate: Any, speakers: list[SpeakerRef]) -> SpeakerRef | None:
    """Resolve a model-proposed speaker against the roster by id or by name."""
    if isinstance(candidate, str):
        ident, name = candidate, candidate
    elif isinstance(candidate, dict):
        ident, name = candidate.get("id"), candidate.get("name")
    else:
        return None

    for speaker in speakers:
        if (ident and speaker.id == ident) or (name and speaker.name == name):
            return speaker
    return None


class BlockSummarizer:
    """Summarizer / speaker recommender backed by the shared scheduler.

    Attributes:
        endpoint: Completion endpoint URL.
        model: Model name.
        max_chars: Summary length bound (truncation, never re-prompting).
    """

    def __init__(
        self,
        scheduler: ModelCallScheduler,
        endpoint: str,
        model: str,
        max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
        max_tokens: int = ModelBudgets.SUMMARIZER_MAX_TOKENS,
        temperature: float = ModelBudgets.SUMMARIZER_TEMPERATURE,
    ) -> None:
        self._scheduler = scheduler
        self.endpoint = endpoint
        self.model = model
        self.max_chars = max_chars
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def summarize(
        self,
        prior_summary: str,
        initial_human_message: str,
        latest: Message,
        roster: list[AgentPersona],
    ) -> SummaryResult:
        """Fold ``latest`` into the block summary and recommend the next speaker.

        Never raises for model-side problems; see module docstring.
        """
        speakers = eligible_speakers(roster)
        prompt = self.build_prompt(prior_summary, initial_human_message, latest, roster)

        try:
            response = await self._scheduler.submit(
                self.endpoint,
                self.model,
                [{"role": "user", "content": prompt}],
                self._max_tokens,
                self._temperature,
            )
        except Exception as e:
            logger.warning("Summarizer call failed, using fallback", error=str(e))
            return fallback_summary(prior_summary, latest, self.max_chars)

        try:
            parsed = parse_json_object(response)
        except StructuredOutputError as e:
            logger.warning("Summarizer output unparseable, using fallback", error=str(e))
            return fallback_summary(prior_summary, latest, self.max_chars)

        summary = parsed.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            logger.warning("Summarizer output has no summary, using fallback")
            return fallback_summary(prior_summary, latest, self.max_chars)

        next_speaker = match_speaker(parsed.get("next"), speakers)
        if next_speaker is None:
            logger.warning(
                "Summarizer recommended unknown speaker, using fallback",
                proposed=parsed.get("next"),
            )
            return fallback_summary(prior_summary, latest, self.max_chars)

        rationale = parsed.get("recommendation_reason") or parsed.get("rationale") or ""
        return SummaryResult(
            summary=summary.strip()[: self.max_chars],
            next_speaker=next_speaker,
            rationale=str(rationale),
        )

    def build_prompt(
        self,
        prior_summary: str,
        initial_human_message: str,
        latest: Message,
        roster: list[AgentPersona],
    ) -> str:
        agent_lines = [
            f"- ID: {p.name}, Name: {p.name}, Role: {p.role}"
            + (f", Description: {p.description.splitlines()[0]}" if p.description else "")
            for p in roster
        ]
        agent_lines.append(
            f"- ID: {HUMAN.id}, Name: {HUMAN.name}, Role: human participant, "
            "Description: asks questions or gives opinions"
        )
        names = ", ".join(s.name for s in eligible_speakers(roster))

        return "\n".join([
            "Below are the previous block summary and a new message.",
            "",
            "Previous block:",
            prior_summary or _NONE_PLACEHOLDER,
            "",
            "Initial user message:",
            initial_human_message or _NONE_PLACEHOLDER,
            "",
            "Latest message:",
            f"{latest.speaker}: {latest.content}",
            "",
            "Available speakers:",
            *agent_lines,
            "",
            "Do the following:",
            f"1. Merge the previous block and the new message into a summary of at most {self.max_chars} characters.",
            f"2. Considering the conversation, recommend the most suitable next speaker (choose from: {names}).",
            f"3. You must NOT recommend {latest.speaker}, the author of the latest message.",
            "",
            "Respond with JSON only:",
            "{",
            f'  "summary": "summary of at most {self.max_chars} characters",',
            '  "next": {"id": "speaker_id", "name": "speaker_name"},',
            '  "recommendation_reason": "why this speaker"',
            "}",
        ])
