"""Shared test fixtures."""
from __future__ import annotations

import json

import pytest

from quickpoll.db import Database
from quickpoll.models import QuizModule, StackQuestion


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def single_module():
    return QuizModule(
        id="m-single",
        type="question",
        data={
            "question": "Pick B",
            "answers": ["A", "B", "C"],
            "correctAnswers": ["B"],
            "questionType": "single",
        },
    )


@pytest.fixture
def multiple_module():
    return QuizModule(
        id="m-multi",
        type="question",
        data={
            "question": "Pick A and B",
            "answers": ["A", "B", "C", "D"],
            "correctAnswers": ["A", "B"],
            "questionType": "multiple",
        },
    )


@pytest.fixture
def stack_questions():
    """An ordered stack: first question single choice, second multiple."""
    return [
        StackQuestion(
            id="sq-1",
            stack_id="stack-1",
            question="What is the capital of France?",
            answers=["Paris", "Lyon", "Nice"],
            correct_answers=["Paris"],
            question_type="single",
            position=0,
        ),
        StackQuestion(
            id="sq-2",
            stack_id="stack-1",
            question="Pick prime numbers.",
            answers=["2", "3", "4", "9"],
            correct_answers=["2", "3"],
            question_type="multiple",
            position=1,
        ),
    ]


@pytest.fixture
def quiz_module_dicts():
    """Module payloads as posted by the quiz editor."""
    return [
        {"id": "m-title", "type": "title", "data": {"text": "Welcome"}},
        {
            "id": "m-q1",
            "type": "question",
            "data": {
                "question": "Which planet is known as the Red Planet?",
                "answers": ["Mars", "Venus", "Jupiter"],
                "correctAnswers": ["Mars"],
                "questionType": "single",
            },
        },
        {"id": "m-break", "type": "pageBreak", "data": {}},
        {
            "id": "m-q2",
            "type": "question",
            "data": {
                "question": "Which languages run in browsers?",
                "answers": ["HTML", "CSS", "JavaScript", "Python"],
                "correctAnswers": ["HTML", "CSS", "JavaScript"],
                "questionType": "multiple",
            },
        },
        {"id": "m-text", "type": "text", "data": {"text": "Almost done"}},
    ]


@pytest.fixture
def stack_file(tmp_path):
    path = tmp_path / "geo.json"
    path.write_text(json.dumps({
        "name": "Geography",
        "questions": [
            {
                "question": "Which ocean is the largest?",
                "answers": ["Atlantic", "Pacific", "Arctic"],
                "correctAnswers": ["Pacific"],
                "questionType": "single",
            },
            {
                "question": "Which are continents?",
                "answers": ["Asia", "Europe", "Greenland"],
                "correctAnswers": ["Asia", "Europe"],
                "questionType": "multiple",
            },
        ],
    }))
    return path


@pytest.fixture
def populated_db(tmp_db, quiz_module_dicts, stack_file):
    """A database with one quiz and one imported stack."""
    from quickpoll.stack_parser import import_stack_file

    quiz = tmp_db.create_quiz("Space Quiz", slug="space")
    tmp_db.save_modules(quiz["id"], quiz_module_dicts)
    import_stack_file(tmp_db, stack_file)
    return tmp_db
