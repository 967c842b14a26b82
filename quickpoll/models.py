from __future__ import annotations

from dataclasses import dataclass, field

MODULE_TYPES = ("question", "text", "title", "randomQuestion", "pageBreak")
ANSWERABLE_TYPES = ("question", "randomQuestion")


@dataclass
class QuizModule:
    id: str
    type: str  # question | text | title | randomQuestion | pageBreak
    data: dict = field(default_factory=dict)
    position: int = 0

    @property
    def answerable(self) -> bool:
        return self.type in ANSWERABLE_TYPES

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type, "order": self.position, "data": self.data}


@dataclass
class StackQuestion:
    id: str
    stack_id: str
    question: str
    answers: list[str]
    correct_answers: list[str]  # option labels, not indices
    question_type: str = "single"
    position: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stackId": self.stack_id,
            "question": self.question,
            "answers": self.answers,
            "correctAnswers": self.correct_answers,
            "questionType": self.question_type,
        }


@dataclass
class Page:
    number: int
    modules: list[QuizModule]


# ── Submitted answers ─────────────────────────────────────────────────────


@dataclass
class SingleChoice:
    index: object = None

    @property
    def selection(self) -> object:
        return self.index


@dataclass
class MultipleChoice:
    indices: list = field(default_factory=list)

    @property
    def selection(self) -> object:
        return self.indices


@dataclass
class RandomQuestionAnswer:
    """Answer to a randomQuestion module.

    The question kind is unknown until the stack question is resolved, so
    the raw selection (an index or a list of indices) is kept as submitted.
    """

    choice: object = None
    used_question_id: str | None = None

    @property
    def selection(self) -> object:
        return self.choice


SubmittedAnswer = SingleChoice | MultipleChoice | RandomQuestionAnswer


# ── Scoring output ────────────────────────────────────────────────────────


@dataclass
class ScoredAnswer:
    module_id: str
    selected_choices: list[int]
    correct_choices: list[int]
    is_correct: bool
    points: float
    used_question_id: str | None = None

    def to_dict(self) -> dict:
        d = {
            "moduleId": self.module_id,
            "selectedChoices": self.selected_choices,
            "correctChoices": self.correct_choices,
            "isCorrect": self.is_correct,
            "points": self.points,
        }
        if self.used_question_id is not None:
            d["usedQuestionId"] = self.used_question_id
        return d


@dataclass
class AttemptResult:
    total_questions: int
    correct_answers: int
    score: float  # percentage 0-100

    @property
    def percentage(self) -> str:
        return f"{self.score:.1f}%"

    def to_dict(self) -> dict:
        return {
            "totalQuestions": self.total_questions,
            "correctAnswers": self.correct_answers,
            "score": self.score,
            "percentage": self.percentage,
        }
