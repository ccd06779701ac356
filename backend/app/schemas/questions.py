"""
Tagged question content and student answer payloads.

Question content is a closed set of variants discriminated on `type`; student
answers are a closed set discriminated on `kind`. Each question type accepts
exactly one answer kind (ANSWER_KIND_BY_QUESTION), so grading can be checked
exhaustively per type.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from app.models.models import QuestionKind


class Option(BaseModel):
    """A labelled choice in a multiple-choice question."""

    label: str = Field(..., min_length=1, description="Stable option label (e.g. 'A')")
    text: str = Field(..., description="Option text shown to the student")


class _ContentBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Question prompt")


class _OptionsContent(_ContentBase):
    options: List[Option] = Field(..., min_length=2)

    @field_validator("options")
    @classmethod
    def validate_unique_labels(cls, options: List[Option]) -> List[Option]:
        labels = [option.label for option in options]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Option labels must be unique, got {labels}")
        return options

    @property
    def labels(self) -> List[str]:
        return [option.label for option in self.options]


class McqSingleContent(_OptionsContent):
    type: Literal["mcq_single"] = "mcq_single"
    correct_option: str


class McqMultiContent(_OptionsContent):
    type: Literal["mcq_multi"] = "mcq_multi"
    correct_options: List[str] = Field(..., min_length=1)


class TrueFalseContent(_ContentBase):
    type: Literal["true_false"] = "true_false"
    correct_answer: bool


class NumericContent(_ContentBase):
    type: Literal["numeric"] = "numeric"
    correct_value: float
    tolerance: float = Field(default=0.0, ge=0.0)
    unit: Optional[str] = None


class FillInBlankContent(_ContentBase):
    type: Literal["fill_in_blank"] = "fill_in_blank"
    correct_answer: str
    accepted_answers: List[str] = Field(default_factory=list)
    match_mode: Literal["exact", "regex"] = "exact"
    case_sensitive: bool = False


class MatchTheColumnContent(_ContentBase):
    type: Literal["match_the_column"] = "match_the_column"
    # left item -> correct right item
    pairs: Dict[str, str] = Field(..., min_length=1)


class _SubjectiveContent(_ContentBase):
    model_answer: Optional[str] = None
    word_limit: Optional[int] = Field(default=None, ge=1)


class ShortAnswerContent(_SubjectiveContent):
    type: Literal["short_answer"] = "short_answer"


class LongAnswerContent(_SubjectiveContent):
    type: Literal["long_answer"] = "long_answer"


class EssayContent(_SubjectiveContent):
    type: Literal["essay"] = "essay"


class CreativeWritingContent(_SubjectiveContent):
    type: Literal["creative_writing"] = "creative_writing"


QuestionContent = Annotated[
    Union[
        McqSingleContent,
        McqMultiContent,
        TrueFalseContent,
        NumericContent,
        FillInBlankContent,
        MatchTheColumnContent,
        ShortAnswerContent,
        LongAnswerContent,
        EssayContent,
        CreativeWritingContent,
    ],
    Field(discriminator="type"),
]

question_content_adapter: TypeAdapter[Any] = TypeAdapter(QuestionContent)


class QuestionSnapshot(BaseModel):
    """Immutable question as supplied by the question bank."""

    model_config = ConfigDict(frozen=True)

    id: int
    content: QuestionContent
    max_marks: float = Field(..., ge=0)
    subject: Optional[str] = None
    explanation: Optional[str] = None
    solution: Optional[str] = None

    @property
    def kind(self) -> QuestionKind:
        return QuestionKind(self.content.type)


# ---------------------------------------------------------------------------
# Student answer payloads
# ---------------------------------------------------------------------------


class ChoiceAnswer(BaseModel):
    kind: Literal["choice"] = "choice"
    selected: str


class ChoicesAnswer(BaseModel):
    kind: Literal["choices"] = "choices"
    selected: List[str]


class BooleanAnswer(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool


class NumberAnswer(BaseModel):
    kind: Literal["number"] = "number"
    value: float


class TextAnswer(BaseModel):
    kind: Literal["text"] = "text"
    text: str = Field(..., max_length=50_000)


class MatchesAnswer(BaseModel):
    kind: Literal["matches"] = "matches"
    pairs: Dict[str, str]


AnswerPayload = Annotated[
    Union[
        ChoiceAnswer,
        ChoicesAnswer,
        BooleanAnswer,
        NumberAnswer,
        TextAnswer,
        MatchesAnswer,
    ],
    Field(discriminator="kind"),
]

answer_payload_adapter: TypeAdapter[Any] = TypeAdapter(AnswerPayload)

ANSWER_KIND_BY_QUESTION: Dict[QuestionKind, str] = {
    QuestionKind.MCQ_SINGLE: "choice",
    QuestionKind.MCQ_MULTI: "choices",
    QuestionKind.TRUE_FALSE: "boolean",
    QuestionKind.NUMERIC: "number",
    QuestionKind.FILL_IN_BLANK: "text",
    QuestionKind.MATCH_THE_COLUMN: "matches",
    QuestionKind.SHORT_ANSWER: "text",
    QuestionKind.LONG_ANSWER: "text",
    QuestionKind.ESSAY: "text",
    QuestionKind.CREATIVE_WRITING: "text",
}


# ---------------------------------------------------------------------------
# Student-facing views
# ---------------------------------------------------------------------------


def public_content(
    snapshot: QuestionSnapshot, option_order: Optional[List[str]] = None
) -> Dict[str, Any]:
    """Question content with answer data stripped, options in attempt order."""
    content = snapshot.content
    view: Dict[str, Any] = {"type": content.type, "text": content.text}

    if isinstance(content, (McqSingleContent, McqMultiContent)):
        by_label = {option.label: option for option in content.options}
        order = option_order or content.labels
        view["options"] = [by_label[label].model_dump() for label in order]
    elif isinstance(content, NumericContent):
        view["unit"] = content.unit
    elif isinstance(content, MatchTheColumnContent):
        view["left"] = list(content.pairs.keys())
        view["right"] = sorted(content.pairs.values())
    elif isinstance(
        content,
        (ShortAnswerContent, LongAnswerContent, EssayContent, CreativeWritingContent),
    ):
        view["word_limit"] = content.word_limit

    return view


def correct_answer_view(snapshot: QuestionSnapshot) -> Any:
    """The canonical answer in the same shape a student would submit it."""
    content = snapshot.content
    if isinstance(content, McqSingleContent):
        return content.correct_option
    if isinstance(content, McqMultiContent):
        return sorted(content.correct_options)
    if isinstance(content, TrueFalseContent):
        return content.correct_answer
    if isinstance(content, NumericContent):
        return {"value": content.correct_value, "tolerance": content.tolerance}
    if isinstance(content, FillInBlankContent):
        return content.correct_answer
    if isinstance(content, MatchTheColumnContent):
        return dict(content.pairs)
    return content.model_answer
