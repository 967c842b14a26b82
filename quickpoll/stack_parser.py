"""Parse question stack seed files into StackQuestion objects.

File shape:
  {"name": "General knowledge",
   "questions": [{"question": "...", "answers": [...],
                  "correctAnswers": [...], "questionType": "single"}]}

Questions without text or without answer options are skipped.
"""
from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from quickpoll.decoding import decode_list
from quickpoll.models import StackQuestion

if TYPE_CHECKING:
    from quickpoll.db import Database

_log = logging.getLogger("quickpoll.import")


def question_from_dict(item: object, default_type: str = "single") -> StackQuestion | None:
    """Build an unsaved StackQuestion from an editor or seed-file payload.

    Returns ``None`` when the question text or the answer options are missing.
    """
    if not isinstance(item, dict):
        return None
    text = str(item.get("question") or "").strip()
    answers = [str(a) for a in decode_list(item.get("answers"))]
    if not text or not answers:
        return None
    return StackQuestion(
        id="",
        stack_id="",
        question=text,
        answers=answers,
        correct_answers=[str(c) for c in decode_list(item.get("correctAnswers"))],
        question_type=item.get("questionType") or default_type,
    )


def parse_stack_file(path: Path) -> tuple[str, list[StackQuestion]]:
    raw = json.loads(path.read_text())
    if not isinstance(raw, dict) or not isinstance(raw.get("questions"), list):
        raise ValueError(f"{path.name}: expected an object with a 'questions' list")

    name = str(raw.get("name") or path.stem)
    questions: list[StackQuestion] = []
    for i, item in enumerate(raw["questions"]):
        q = question_from_dict(item)
        if q is None:
            _log.warning("%s: skipping question %d (no text or answers)", path.name, i)
            continue
        q.id = str(uuid.uuid4())
        q.position = len(questions)
        questions.append(q)

    return name, questions


def import_stack_file(db: Database, path: Path, replace: bool = True) -> tuple[str, int]:
    """Load *path* into the stack of the same name, creating it if needed.

    With ``replace=False`` an existing stack is left untouched. Replacing
    gives questions new ids, so stored answers no longer resolve to them.
    Returns (stack name, number of questions written).
    """
    name, questions = parse_stack_file(path)
    stack = db.get_stack_by_name(name)
    if stack is not None and not replace:
        return name, 0
    if stack is None:
        stack = db.create_stack(name)
    n = db.replace_stack_questions(stack["id"], questions)
    _log.info("Imported %d questions into stack '%s' from %s", n, name, path.name)
    return name, n
