"""Structured payload returned by the enrichment model for one session."""

from typing import List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNRECOGNIZED_CATEGORY = "Unrecognized / Other"

SUPPORT_CATEGORIES = (
    "Schedule & Hours",
    "Leave & Vacation",
    "Sick Leave & Recovery",
    "Salary & Compensation",
    "Contract & Hours",
    "Onboarding",
    "Offboarding",
    "Workwear & Staff Pass",
    "Team & Contacts",
    "Personal Questions",
    "Access & Login",
    "Social questions",
    UNRECOGNIZED_CATEGORY,
)


class EnrichmentPayload(BaseModel):
    """Only accepted output contract for a session enrichment response.

    Unknown extra keys (e.g. token counts some models echo back) are
    ignored; an unknown category collapses to ``UNRECOGNIZED_CATEGORY``.
    """

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        str_strip_whitespace=True,
    )

    language: str = Field(pattern=r"^[a-z]{2}$")
    sentiment: Literal["positive", "neutral", "negative"]
    escalated: bool
    forwarded_hr: bool
    category: str
    questions: Union[str, List[str]] = Field(default_factory=list)
    summary: str = Field(min_length=10, max_length=300)

    @field_validator("language", "sentiment", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, value):
        if isinstance(value, str):
            for category in SUPPORT_CATEGORIES:
                if value.strip().lower() == category.lower():
                    return category
        return UNRECOGNIZED_CATEGORY

    def question_list(self) -> List[str]:
        """Questions as a de-duplicated list, blanks removed, order kept."""
        raw = [self.questions] if isinstance(self.questions, str) else list(self.questions)
        seen = set()
        questions = []
        for item in raw:
            text = item.strip() if isinstance(item, str) else ""
            if text and text not in seen:
                seen.add(text)
                questions.append(text)
        return questions
