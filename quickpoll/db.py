from __future__ import annotations

import json
import re
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from quickpoll.decoding import decode_list
from quickpoll.models import (
    AttemptResult,
    QuizModule,
    ScoredAnswer,
    StackQuestion,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS quizzes (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    is_active INTEGER DEFAULT 1,
    participations INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quiz_modules (
    id TEXT PRIMARY KEY,
    quiz_id TEXT NOT NULL REFERENCES quizzes(id),
    type TEXT NOT NULL,
    position INTEGER NOT NULL,
    data_json TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS question_stacks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stack_questions (
    id TEXT PRIMARY KEY,
    stack_id TEXT NOT NULL REFERENCES question_stacks(id),
    position INTEGER NOT NULL,
    question TEXT NOT NULL,
    answers_json TEXT NOT NULL,
    correct_answers_json TEXT NOT NULL,
    question_type TEXT NOT NULL DEFAULT 'single'
);

CREATE TABLE IF NOT EXISTS attempts (
    id TEXT PRIMARY KEY,
    quiz_id TEXT NOT NULL REFERENCES quizzes(id),
    started_at TEXT NOT NULL,
    finished_at TEXT,
    total_questions INTEGER DEFAULT 0,
    correct_answers INTEGER DEFAULT 0,
    score REAL DEFAULT 0,
    question_order_json TEXT DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS answers (
    id TEXT PRIMARY KEY,
    attempt_id TEXT NOT NULL REFERENCES attempts(id),
    module_id TEXT NOT NULL,
    selected_choices_json TEXT NOT NULL,
    correct_choices_json TEXT NOT NULL,
    is_correct INTEGER NOT NULL,
    points REAL NOT NULL,
    used_question_id TEXT,
    created_at TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def slugify(title: str) -> str:
    """URL slug for a quiz title: lowercase ASCII words joined by hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or _new_id()[:8]


def _row_to_module(row: sqlite3.Row) -> QuizModule:
    try:
        data = json.loads(row["data_json"] or "{}")
    except ValueError:
        data = {}
    return QuizModule(
        id=row["id"],
        type=row["type"],
        data=data if isinstance(data, dict) else {},
        position=row["position"],
    )


def _row_to_stack_question(row: sqlite3.Row) -> StackQuestion:
    # Legacy rows may be JSON-encoded twice.
    return StackQuestion(
        id=row["id"],
        stack_id=row["stack_id"],
        question=row["question"],
        answers=decode_list(row["answers_json"]),
        correct_answers=decode_list(row["correct_answers_json"]),
        question_type=row["question_type"] or "single",
        position=row["position"],
    )


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Quizzes ───────────────────────────────────────────────────────────

    def create_quiz(self, title: str, slug: str | None = None, is_active: bool = True) -> dict:
        """Create a quiz. Raises sqlite3.IntegrityError if the slug is taken."""
        quiz_id = _new_id()
        with self.conn:
            self.conn.execute(
                "INSERT INTO quizzes (id, slug, title, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (quiz_id, slug or slugify(title), title, 1 if is_active else 0, _now()),
            )
        return self.get_quiz(quiz_id)

    def get_quiz(self, quiz_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM quizzes WHERE id = ?", (quiz_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_quiz_by_slug(self, slug: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM quizzes WHERE slug = ?", (slug,)
        ).fetchone()
        return dict(row) if row else None

    def list_quizzes(self, active_only: bool = True) -> list[dict]:
        """Quizzes newest first, with answerable-module and attempt counts."""
        rows = self.conn.execute(f"""
            SELECT q.*,
                (SELECT COUNT(*) FROM quiz_modules m
                 WHERE m.quiz_id = q.id
                   AND m.type IN ('question', 'randomQuestion')) AS question_count,
                (SELECT COUNT(*) FROM attempts a WHERE a.quiz_id = q.id) AS attempt_count
            FROM quizzes q
            {"WHERE q.is_active = 1" if active_only else ""}
            ORDER BY q.created_at DESC
        """).fetchall()
        return [dict(r) for r in rows]

    def get_quiz_count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM quizzes").fetchone()
        return row[0]

    def increment_participations(self, quiz_id: str) -> int:
        self.conn.execute(
            "UPDATE quizzes SET participations = participations + 1 WHERE id = ?",
            (quiz_id,),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT participations FROM quizzes WHERE id = ?", (quiz_id,)
        ).fetchone()
        return row[0] if row else 0

    def delete_quiz(self, quiz_id: str) -> bool:
        """Delete a quiz with its modules, attempts and answer records."""
        with self.conn:
            self.conn.execute(
                "DELETE FROM answers WHERE attempt_id IN "
                "(SELECT id FROM attempts WHERE quiz_id = ?)",
                (quiz_id,),
            )
            self.conn.execute("DELETE FROM attempts WHERE quiz_id = ?", (quiz_id,))
            self.conn.execute("DELETE FROM quiz_modules WHERE quiz_id = ?", (quiz_id,))
            cur = self.conn.execute("DELETE FROM quizzes WHERE id = ?", (quiz_id,))
        return cur.rowcount > 0

    # ── Modules ───────────────────────────────────────────────────────────

    def save_modules(self, quiz_id: str, modules: list[dict]) -> list[QuizModule]:
        """Replace the module list of a quiz; list order becomes display order.

        Modules keep their ``id`` when one is given so stored answers stay
        attached to them. Raises sqlite3.IntegrityError, leaving the old list
        in place, if an id is repeated or belongs to another quiz.
        """
        with self.conn:
            self.conn.execute("DELETE FROM quiz_modules WHERE quiz_id = ?", (quiz_id,))
            for position, m in enumerate(modules):
                self.conn.execute(
                    "INSERT INTO quiz_modules (id, quiz_id, type, position, data_json) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        str(m.get("id") or _new_id()),
                        quiz_id,
                        m["type"],
                        position,
                        json.dumps(m.get("data") or {}),
                    ),
                )
        return self.get_modules(quiz_id)

    def get_modules(self, quiz_id: str) -> list[QuizModule]:
        rows = self.conn.execute(
            "SELECT * FROM quiz_modules WHERE quiz_id = ? ORDER BY position ASC",
            (quiz_id,),
        ).fetchall()
        return [_row_to_module(r) for r in rows]

    # ── Question stacks ───────────────────────────────────────────────────

    def create_stack(self, name: str) -> dict:
        stack_id = _new_id()
        with self.conn:
            self.conn.execute(
                "INSERT INTO question_stacks (id, name, created_at) VALUES (?, ?, ?)",
                (stack_id, name, _now()),
            )
        return self.get_stack(stack_id)

    def get_stack(self, stack_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM question_stacks WHERE id = ?", (stack_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_stack_by_name(self, name: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM question_stacks WHERE name = ?", (name,)
        ).fetchone()
        return dict(row) if row else None

    def list_stacks(self) -> list[dict]:
        rows = self.conn.execute("""
            SELECT s.*, COUNT(q.id) AS question_count
            FROM question_stacks s
            LEFT JOIN stack_questions q ON q.stack_id = s.id
            GROUP BY s.id
            ORDER BY s.name
        """).fetchall()
        return [dict(r) for r in rows]

    def rename_stack(self, stack_id: str, name: str) -> dict | None:
        """Raises sqlite3.IntegrityError if another stack has *name*."""
        with self.conn:
            self.conn.execute(
                "UPDATE question_stacks SET name = ? WHERE id = ?", (name, stack_id)
            )
        return self.get_stack(stack_id)

    def delete_stack(self, stack_id: str) -> bool:
        """Delete a stack and its questions.

        Random modules pointing at it are left alone and score as an empty
        stack from then on.
        """
        with self.conn:
            self.conn.execute("DELETE FROM stack_questions WHERE stack_id = ?", (stack_id,))
            cur = self.conn.execute("DELETE FROM question_stacks WHERE id = ?", (stack_id,))
        return cur.rowcount > 0

    def save_stack(self, stack_id: str, name: str, questions: list[StackQuestion]) -> int:
        """Rename a stack and replace its questions in one transaction."""
        with self.conn:
            self.conn.execute(
                "UPDATE question_stacks SET name = ? WHERE id = ?", (name, stack_id)
            )
            self._replace_questions(stack_id, questions)
        return len(questions)

    def get_stack_count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM question_stacks").fetchone()
        return row[0]

    def _insert_stack_question(self, stack_id: str, q: StackQuestion, position: int) -> str:
        qid = q.id or _new_id()
        self.conn.execute(
            "INSERT INTO stack_questions (id, stack_id, position, question, answers_json, "
            "correct_answers_json, question_type) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                qid,
                stack_id,
                position,
                q.question,
                json.dumps(q.answers),
                json.dumps(q.correct_answers),
                q.question_type,
            ),
        )
        return qid

    def add_stack_question(self, stack_id: str, q: StackQuestion) -> StackQuestion:
        """Append a question at the end of a stack."""
        row = self.conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM stack_questions WHERE stack_id = ?",
            (stack_id,),
        ).fetchone()
        qid = self._insert_stack_question(stack_id, q, row[0])
        self.conn.commit()
        return self.get_stack_question(qid)

    def _replace_questions(self, stack_id: str, questions: list[StackQuestion]) -> None:
        self.conn.execute("DELETE FROM stack_questions WHERE stack_id = ?", (stack_id,))
        for position, q in enumerate(questions):
            self._insert_stack_question(stack_id, q, position)

    def replace_stack_questions(self, stack_id: str, questions: list[StackQuestion]) -> int:
        with self.conn:
            self._replace_questions(stack_id, questions)
        return len(questions)

    def get_stack_questions(self, stack_id: str) -> list[StackQuestion]:
        """Questions of a stack in stored order."""
        rows = self.conn.execute(
            "SELECT * FROM stack_questions WHERE stack_id = ? ORDER BY position ASC",
            (stack_id,),
        ).fetchall()
        return [_row_to_stack_question(r) for r in rows]

    def get_stack_question(self, question_id: str) -> StackQuestion | None:
        row = self.conn.execute(
            "SELECT * FROM stack_questions WHERE id = ?", (question_id,)
        ).fetchone()
        return _row_to_stack_question(row) if row else None

    # ── Attempts ──────────────────────────────────────────────────────────

    def start_attempt(self, quiz_id: str) -> str:
        """Open an attempt; it counts towards completion rate until finished."""
        attempt_id = _new_id()
        self.conn.execute(
            "INSERT INTO attempts (id, quiz_id, started_at) VALUES (?, ?, ?)",
            (attempt_id, quiz_id, _now()),
        )
        self.conn.commit()
        return attempt_id

    def record_attempt(
        self,
        quiz_id: str,
        result: AttemptResult,
        scored: list[ScoredAnswer],
        question_order: list[str],
        attempt_id: str | None = None,
    ) -> str:
        """Store a finished attempt and its answer records in one transaction.

        An open attempt with *attempt_id* is finished in place; otherwise a
        new one is created.
        """
        now = _now()
        existing = None
        if attempt_id:
            existing = self.conn.execute(
                "SELECT id FROM attempts WHERE id = ? AND quiz_id = ? AND finished_at IS NULL",
                (attempt_id, quiz_id),
            ).fetchone()
        with self.conn:
            if existing:
                self.conn.execute(
                    "UPDATE attempts SET finished_at=?, total_questions=?, correct_answers=?, "
                    "score=?, question_order_json=? WHERE id=?",
                    (now, result.total_questions, result.correct_answers, result.score,
                     json.dumps(question_order), attempt_id),
                )
            else:
                attempt_id = _new_id()
                self.conn.execute(
                    "INSERT INTO attempts (id, quiz_id, started_at, finished_at, total_questions, "
                    "correct_answers, score, question_order_json) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (attempt_id, quiz_id, now, now, result.total_questions,
                     result.correct_answers, result.score, json.dumps(question_order)),
                )
            for s in scored:
                self.conn.execute(
                    "INSERT INTO answers (id, attempt_id, module_id, selected_choices_json, "
                    "correct_choices_json, is_correct, points, used_question_id, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        _new_id(),
                        attempt_id,
                        s.module_id,
                        json.dumps(s.selected_choices),
                        json.dumps(s.correct_choices),
                        1 if s.is_correct else 0,
                        s.points,
                        s.used_question_id,
                        now,
                    ),
                )
        return attempt_id

    def get_attempt(self, attempt_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM attempts WHERE id = ?", (attempt_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_attempt_answers(self, attempt_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM answers WHERE attempt_id = ? ORDER BY created_at ASC, rowid ASC",
            (attempt_id,),
        ).fetchall()
        return [self._answer_dict(r) for r in rows]

    def get_quiz_answers(self, quiz_id: str) -> list[dict]:
        """Answer records of all finished attempts of a quiz."""
        rows = self.conn.execute("""
            SELECT ans.*
            FROM answers ans
            JOIN attempts a ON a.id = ans.attempt_id
            WHERE a.quiz_id = ? AND a.finished_at IS NOT NULL
            ORDER BY ans.rowid ASC
        """, (quiz_id,)).fetchall()
        return [self._answer_dict(r) for r in rows]

    @staticmethod
    def _answer_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        d["selected_choices"] = decode_list(d.pop("selected_choices_json"))
        d["correct_choices"] = decode_list(d.pop("correct_choices_json"))
        d["is_correct"] = bool(d["is_correct"])
        return d

    # ── Statistics ────────────────────────────────────────────────────────

    def get_quiz_stats(self, quiz_id: str, recent_days: int = 7) -> dict:
        finished = self.conn.execute(
            "SELECT COUNT(*) AS cnt, COALESCE(AVG(score), 0) AS avg_score "
            "FROM attempts WHERE quiz_id = ? AND finished_at IS NOT NULL",
            (quiz_id,),
        ).fetchone()
        all_attempts = self.conn.execute(
            "SELECT COUNT(*) FROM attempts WHERE quiz_id = ?", (quiz_id,)
        ).fetchone()[0]
        since = (datetime.now(timezone.utc) - timedelta(days=recent_days)).isoformat()
        recent = self.conn.execute(
            "SELECT COUNT(*) FROM attempts "
            "WHERE quiz_id = ? AND finished_at IS NOT NULL AND finished_at >= ?",
            (quiz_id, since),
        ).fetchone()[0]
        questions = self.conn.execute(
            "SELECT COUNT(*) FROM quiz_modules "
            "WHERE quiz_id = ? AND type IN ('question', 'randomQuestion')",
            (quiz_id,),
        ).fetchone()[0]

        total = finished["cnt"]
        return {
            "totalAttempts": total,
            "averageScore": finished["avg_score"] if total > 0 else 0,
            "completionRate": (total / all_attempts * 100) if all_attempts > 0 else 0,
            "recentAttempts": recent,
            "totalQuestions": questions,
            "allAttempts": all_attempts,
        }

    def get_stats(self) -> dict:
        row = self.conn.execute(
            "SELECT COUNT(*) AS cnt, COALESCE(AVG(score), 0) AS avg_score "
            "FROM attempts WHERE finished_at IS NOT NULL"
        ).fetchone()
        question_count = self.conn.execute(
            "SELECT COUNT(*) FROM stack_questions"
        ).fetchone()[0]
        return {
            "total_quizzes": self.get_quiz_count(),
            "total_stacks": self.get_stack_count(),
            "total_stack_questions": question_count,
            "finished_attempts": row["cnt"],
            "average_score": round(row["avg_score"], 1) if row["cnt"] > 0 else 0,
        }
