"""Prompt and request-body builder for session enrichment."""

from typing import Dict, Iterable, List

from enrichment.schema import SUPPORT_CATEGORIES

_CATEGORY_LIST = ", ".join(f"'{category}'" for category in SUPPORT_CATEGORIES)

SYSTEM_PROMPT = f"""\
You are a JSON-generating assistant. Analyze the chat transcript between a
user and an assistant and return structured data.

STRICT RULES:
- Return a single, valid JSON object and nothing else.
- Do NOT wrap the JSON in markdown code fences.
- Do NOT add explanations or comments.

Fields:
"language": ISO 639-1 code of the user's primary language, e.g. "en", "nl"
"sentiment": "positive", "neutral" or "negative"
"escalated": true if the assistant connected or referred the user to a human agent
"forwarded_hr": true if HR contact information was given
"category": one of: {_CATEGORY_LIST}
"questions": a single question or an array of simplified questions asked by the user, in English
"summary": brief summary (1-2 sentences, 10-300 characters) of the conversation
"""


class EnrichmentPromptBuilder:
    """Builds the chat-completion body sent for one session.

    The transcript is rendered as ``Role: content`` lines in turn order.
    """

    def __init__(self, *, model: str, max_tokens: int = 1000, temperature: float = 0.2) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @staticmethod
    def render_transcript(turns: Iterable) -> str:
        lines = []
        for turn in turns:
            role = getattr(turn.role, "value", turn.role)
            lines.append(f"{role}: {turn.content}")
        return "\n".join(lines)

    def build_messages(self, transcript: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": transcript},
        ]

    def build_request_body(self, turns: Iterable) -> Dict:
        return {
            "model": self._model,
            "messages": self.build_messages(self.render_transcript(turns)),
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "response_format": {"type": "json_object"},
        }
