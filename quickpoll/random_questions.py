"""Random question draws from stacks and resolution of the drawn question at scoring time."""
from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable

from quickpoll.models import QuizModule, StackQuestion

_log = logging.getLogger("quickpoll.random")

StackLookup = Callable[[str], list[StackQuestion]]


def draw_questions(
    questions: list[StackQuestion],
    count: int = 1,
    rng: random.Random | None = None,
) -> list[StackQuestion]:
    """Pick up to *count* distinct questions from a stack, in random order."""
    rng = rng or random
    if not questions or count < 1:
        return []
    if count == 1:
        return [rng.choice(questions)]
    return rng.sample(questions, min(count, len(questions)))


def assign_random_questions(
    modules: Iterable[QuizModule],
    stack_lookup: StackLookup,
    rng: random.Random | None = None,
) -> dict[str, StackQuestion]:
    """Draw the question shown for every randomQuestion module of a quiz.

    Modules sharing a stack get distinct questions while the stack lasts;
    modules beyond the stack size get nothing. Returns module id -> question.
    """
    by_stack: dict[str, list[QuizModule]] = {}
    for m in modules:
        if m.type != "randomQuestion":
            continue
        stack_id = (m.data or {}).get("stackId")
        if not stack_id:
            continue
        by_stack.setdefault(stack_id, []).append(m)

    assigned: dict[str, StackQuestion] = {}
    for stack_id, stack_modules in by_stack.items():
        drawn = draw_questions(stack_lookup(stack_id), len(stack_modules), rng)
        for m, q in zip(stack_modules, drawn):
            assigned[m.id] = q
        if len(drawn) < len(stack_modules):
            _log.warning(
                "Stack %s has %d questions for %d modules",
                stack_id, len(drawn), len(stack_modules),
            )
    return assigned


def resolve_stack_question(
    questions: list[StackQuestion],
    used_question_id: str | None,
    allow_fallback: bool = True,
) -> StackQuestion | None:
    """Find the question a participant was shown.

    *questions* is the stack in stored order. When *used_question_id* is
    missing or unknown, the first question of the stack is used instead.
    That question may differ from the one displayed; pass
    ``allow_fallback=False`` to get ``None`` rather than guess.
    """
    if used_question_id:
        for q in questions:
            if q.id == used_question_id:
                return q
        _log.warning("Used question %s not found in stack", used_question_id)
    if not allow_fallback or not questions:
        return None
    _log.info("Falling back to first stack question %s", questions[0].id)
    return questions[0]
