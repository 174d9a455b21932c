"""Text-rewrite oracle — turns a missed todo into a smaller next step via Claude.

Given the original todo text, the reason it was missed and optional
reflection questions, asks the model for a short condition message and a
rewritten todo. The contract is "structured text or nothing": a missing
API key, an SDK/network error or a malformed response all return None.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from cadence.config.settings import ANTHROPIC_API_KEY, REWRITE_MAX_TOKENS, REWRITE_MODEL
from cadence.models.todo import MISSED_REASON_LABELS, MissedReasonType

logger = logging.getLogger(__name__)

MAX_FIELD_LEN = 200


# ── System Prompt ────────────────────────────────────────────────────────

REWRITE_SYSTEM_PROMPT = """\
You help a person restart a todo they missed.

You receive the original todo text, the reason they gave for missing it,
and a few reflection questions they were shown. Rewrite the todo into one
concrete action that is small enough to do today.

## Rules
- Keep the user's intent; do not invent a different goal.
- "HARD_TO_START": shrink the first step until it needs no willpower.
- "NOT_ENOUGH_TIME": cut the scope to what fits in a short slot.
- No moralising, no encouragement filler.

## Response Format
Return ONLY valid JSON (no markdown, no explanation):
{
  "condition_message": "one sentence naming the condition that made it hard",
  "rewritten_todo": "the rewritten todo, under 80 characters"
}
"""


@dataclass(frozen=True)
class RewriteSuggestion:
    condition_message: str
    rewritten_todo: str

    def to_dict(self) -> dict:
        return {
            "condition_message": self.condition_message,
            "rewritten_todo": self.rewritten_todo,
        }


def build_rewrite_prompt(
    original_text: str,
    reason: MissedReasonType,
    context_questions: Optional[Sequence[str]] = None,
) -> str:
    lines = [
        f"Original todo: {original_text}",
        f"Reason code: {reason.value}",
        f"Reason (user's words): {MISSED_REASON_LABELS.get(reason, reason.value)}",
    ]
    if context_questions:
        lines.append("")
        lines.append("Reflection questions shown to the user:")
        lines.extend(f"  - {q}" for q in context_questions)
    return "\n".join(lines)


def parse_rewrite_response(llm_output: str) -> Optional[RewriteSuggestion]:
    """Extract the suggestion from the model's JSON reply.

    Handles markdown fences; returns None if the JSON is malformed or a
    field is missing or blank.
    """
    try:
        text = llm_output.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

        data = json.loads(text)
    except (json.JSONDecodeError, AttributeError) as exc:
        logger.warning("Failed to parse rewrite response: %s", exc)
        return None

    if not isinstance(data, dict):
        logger.warning("Rewrite response is not an object: %r", type(data).__name__)
        return None
    condition = data.get("condition_message")
    rewritten = data.get("rewritten_todo")
    if not isinstance(condition, str) or not isinstance(rewritten, str):
        logger.warning("Rewrite response missing fields: %s", sorted(data))
        return None
    condition, rewritten = condition.strip(), rewritten.strip()
    if not condition or not rewritten:
        logger.warning("Rewrite response has blank fields")
        return None
    return RewriteSuggestion(
        condition_message=condition[:MAX_FIELD_LEN],
        rewritten_todo=rewritten[:MAX_FIELD_LEN],
    )


async def call_claude(system_prompt: str, user_prompt: str) -> Optional[str]:
    """Single Anthropic messages call. Returns the text, or None on failure."""
    import anthropic

    if not ANTHROPIC_API_KEY:
        logger.error("ANTHROPIC_API_KEY not configured — rewrite unavailable")
        return None

    client = anthropic.AsyncAnthropic(api_key=ANTHROPIC_API_KEY)

    try:
        response = await client.messages.create(
            model=REWRITE_MODEL,
            max_tokens=REWRITE_MAX_TOKENS,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return response.content[0].text
    except Exception as exc:
        logger.error("Claude API call failed: %s", exc)
        return None


async def rewrite_todo(
    original_text: str,
    reason: MissedReasonType,
    context_questions: Optional[Sequence[str]] = None,
) -> Optional[RewriteSuggestion]:
    prompt = build_rewrite_prompt(original_text, reason, context_questions)
    output = await call_claude(REWRITE_SYSTEM_PROMPT, prompt)
    if output is None:
        return None
    return parse_rewrite_response(output)
