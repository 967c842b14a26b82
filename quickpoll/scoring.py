"""Answer scoring: normalization, correct-label resolution, partial credit, aggregation.

Everything here is pure and never raises on malformed input. Missing
answers, undecodable option lists and unknown labels all degrade to
"nothing selected" or "nothing correct" and score zero.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from quickpoll.decoding import decode_list
from quickpoll.models import (
    AttemptResult,
    MultipleChoice,
    QuizModule,
    RandomQuestionAnswer,
    ScoredAnswer,
    SingleChoice,
    SubmittedAnswer,
)
from quickpoll.random_questions import StackLookup, resolve_stack_question

_log = logging.getLogger("quickpoll.scoring")


def question_kind(value: object) -> str:
    """Map a stored questionType to ``single`` or ``multiple``.

    A missing type means single choice; any other value than ``single``
    is graded as multiple choice.
    """
    if value in (None, "", "single"):
        return "single"
    return "multiple"


def _as_index(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_answer(raw: object) -> SubmittedAnswer | None:
    """Turn one entry of a submitted answer map into a typed answer.

    Objects (``{selectedIndex | selectedIndices, usedQuestionId}``) are
    random-question answers, lists are multiple choice, anything else is a
    single choice. ``None`` means the module was not answered.
    """
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        choice = raw.get("selectedIndices")
        if choice is None:
            choice = raw.get("selectedIndex")
        used = raw.get("usedQuestionId")
        return RandomQuestionAnswer(choice=choice, used_question_id=str(used) if used else None)
    if isinstance(raw, (list, tuple)):
        return MultipleChoice(indices=list(raw))
    return SingleChoice(index=raw)


def normalize_selection(raw: object, kind: str) -> list[int]:
    """Canonical list of selected option indices for one module.

    Single choice keeps only a scalar index; multiple choice accepts a list
    and also wraps a lone scalar. Anything else is an empty selection.
    """
    if isinstance(raw, (SingleChoice, MultipleChoice, RandomQuestionAnswer)):
        raw = raw.selection
    index = _as_index(raw)
    if index is not None:
        return [index]
    if kind == "multiple" and isinstance(raw, (list, tuple)):
        return [i for i in (_as_index(v) for v in raw) if i is not None]
    return []


def resolve_correct_indices(answer_options: object, correct_labels: object) -> list[int]:
    """Map correct option labels to indices in the displayed option list.

    Matching is by exact label text, first occurrence wins. Labels no
    longer present among the options are dropped, so editing an option's
    text after the fact makes it unresolvable.
    """
    options = decode_list(answer_options)
    labels = decode_list(correct_labels)
    indices = []
    for label in labels:
        try:
            indices.append(options.index(label))
        except ValueError:
            _log.debug("Correct label %r not among options %r", label, options)
    return indices


def score_selection(selected: list[int], correct: list[int], kind: str) -> tuple[bool, float]:
    """Return ``(is_correct, points)`` with points in [0, 1].

    Single choice: one selected index that is correct earns 1, anything
    else 0. Multiple choice: ``(hits - misses) / len(correct)`` clamped at
    0; only a full score counts as correct.
    """
    if kind == "single":
        is_correct = len(selected) == 1 and selected[0] in correct
        return is_correct, 1.0 if is_correct else 0.0

    total_correct = len(correct)
    if total_correct == 0:
        return False, 0.0
    correct_set = set(correct)
    chosen = set(selected)
    hits = len(chosen & correct_set)
    misses = len(chosen - correct_set)
    points = max(0.0, (hits - misses) / total_correct)
    return points == 1.0, points


def score_question(
    module_id: str,
    answer: object,
    answer_options: object,
    correct_labels: object,
    question_type: object,
    used_question_id: str | None = None,
) -> ScoredAnswer:
    """Score one answerable module against its options and correct labels."""
    kind = question_kind(question_type)
    selected = normalize_selection(answer, kind)
    correct = resolve_correct_indices(answer_options, correct_labels)
    is_correct, points = score_selection(selected, correct, kind)
    return ScoredAnswer(
        module_id=module_id,
        selected_choices=selected,
        correct_choices=correct,
        is_correct=is_correct,
        points=points,
        used_question_id=used_question_id,
    )


def _raw_choices(answer: object) -> list[int]:
    # Selection reported for a random question that could not be resolved.
    if isinstance(answer, (SingleChoice, MultipleChoice, RandomQuestionAnswer)):
        answer = answer.selection
    if isinstance(answer, (list, tuple)):
        return normalize_selection(answer, "multiple")
    return normalize_selection(answer, "single")


def score_module(
    module: QuizModule,
    answer: object,
    stack_lookup: StackLookup | None = None,
    allow_fallback: bool = True,
) -> ScoredAnswer | None:
    """Score a single module; returns ``None`` for non-answerable modules."""
    if not module.answerable:
        return None
    data = module.data or {}

    if module.type == "question":
        return score_question(
            module.id,
            answer,
            data.get("answers"),
            data.get("correctAnswers"),
            data.get("questionType"),
        )

    used_id = None
    if isinstance(answer, RandomQuestionAnswer):
        used_id = answer.used_question_id
    used_id = used_id or data.get("usedQuestionId")

    stack_id = data.get("stackId")
    questions = stack_lookup(stack_id) if (stack_lookup and stack_id) else []
    question = resolve_stack_question(questions, used_id, allow_fallback=allow_fallback)
    if question is None:
        _log.warning("No question to score random module %s (stack %s)", module.id, stack_id)
        return ScoredAnswer(
            module_id=module.id,
            selected_choices=_raw_choices(answer),
            correct_choices=[],
            is_correct=False,
            points=0.0,
            used_question_id=used_id,
        )
    return score_question(
        module.id,
        answer,
        question.answers,
        question.correct_answers,
        question.question_type,
        used_question_id=question.id,
    )


def aggregate(scored: Iterable[ScoredAnswer]) -> AttemptResult:
    """Fold per-module results into the attempt total.

    The score is the mean of per-question points as a percentage, so
    partial credit counts even though only full marks add to
    ``correct_answers``.
    """
    total = 0
    correct = 0
    points = 0.0
    for s in scored:
        total += 1
        if s.is_correct:
            correct += 1
        points += s.points
    score = (points / total) * 100 if total > 0 else 0.0
    return AttemptResult(total_questions=total, correct_answers=correct, score=score)


def score_attempt(
    modules: Iterable[QuizModule],
    answers: Mapping[str, object],
    stack_lookup: StackLookup | None = None,
    allow_fallback: bool = True,
) -> tuple[AttemptResult, list[ScoredAnswer]]:
    """Score a full submission.

    *answers* maps module id to either a raw submitted value or an already
    parsed answer. *stack_lookup* returns the ordered questions of a stack
    and is only consulted for randomQuestion modules.
    """
    scored: list[ScoredAnswer] = []
    for m in modules:
        if not m.answerable:
            continue
        answer = answers.get(m.id)
        if not isinstance(answer, (SingleChoice, MultipleChoice, RandomQuestionAnswer)):
            answer = parse_answer(answer)
        result = score_module(m, answer, stack_lookup, allow_fallback)
        if result is not None:
            scored.append(result)
    return aggregate(scored), scored
