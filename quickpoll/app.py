"""FastAPI application with all routes."""
from __future__ import annotations

import logging
import os
import sqlite3

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request

from quickpoll.config import Settings, load_settings, save_settings
from quickpoll.db import Database
from quickpoll.decoding import decode_list
from quickpoll.models import MODULE_TYPES, QuizModule, RandomQuestionAnswer, StackQuestion
from quickpoll.pages import split_pages
from quickpoll.random_questions import assign_random_questions, draw_questions, resolve_stack_question
from quickpoll.scoring import parse_answer, question_kind, score_attempt
from quickpoll.stack_parser import import_stack_file, question_from_dict

app = FastAPI(title="Quickpoll")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None

_submit_log = logging.getLogger("quickpoll.submit")


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _import_missing_stacks(db: Database, settings: Settings) -> None:
    """Import stack files whose stack does not exist yet."""
    log = logging.getLogger("auto-import")
    for sf in settings.resolved_stack_files():
        if not sf.exists():
            continue
        try:
            name, n = import_stack_file(db, sf, replace=False)
        except ValueError as e:
            log.warning("Skipping %s: %s", sf.name, e)
            continue
        if n:
            log.info("%s: %d questions imported into '%s'", sf.name, n, name)


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    if not os.environ.get("QUICKPOLL_NO_AUTO_IMPORT"):
        _import_missing_stacks(_db, _settings)


@app.on_event("shutdown")
async def shutdown():
    if _db:
        _db.close()


async def _json_body(request: Request) -> dict:
    if not await request.body():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(400, "Expected a JSON object")
    return body


def _quiz_or_404(slug: str) -> dict:
    quiz = get_db().get_quiz_by_slug(slug)
    if quiz is None:
        raise HTTPException(404, "Quiz not found")
    return quiz


def _text(value: object, default: str = "Unknown question") -> str:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        for v in value.values():
            if isinstance(v, str) and v:
                return v
    return default


def _quiz_dict(quiz: dict) -> dict:
    return {
        "id": quiz["id"],
        "slug": quiz["slug"],
        "title": quiz["title"],
        "isActive": bool(quiz["is_active"]),
        "participations": quiz["participations"],
        "createdAt": quiz["created_at"],
    }


def _public_question(q: StackQuestion) -> dict:
    """Stack question as shown to participants (no correct answers)."""
    d = q.to_dict()
    d.pop("correctAnswers")
    return d


def _public_module(m: QuizModule, drawn: StackQuestion | None) -> dict:
    d = m.to_dict()
    data = dict(m.data)
    data.pop("correctAnswers", None)
    if m.type == "randomQuestion":
        data.pop("usedQuestionId", None)
        if drawn is not None:
            data["usedQuestionId"] = drawn.id
            data["preloadedQuestion"] = _public_question(drawn)
    d["data"] = data
    return d


def _module_display(m: QuizModule, question: StackQuestion | None) -> tuple[str, list, str]:
    """(question text, option labels, question type) for review and stats."""
    if m.type == "question":
        data = m.data or {}
        return (
            _text(data.get("question")),
            decode_list(data.get("answers")),
            question_kind(data.get("questionType")),
        )
    if question is None:
        return "Random question", [], "single"
    return question.question, question.answers, question_kind(question.question_type)


# ── API: Quizzes ──────────────────────────────────────────────────────────

@app.get("/api/quizzes")
async def api_quizzes():
    quizzes = []
    for q in get_db().list_quizzes(active_only=True):
        d = _quiz_dict(q)
        d["questionCount"] = q["question_count"]
        d["attemptCount"] = q["attempt_count"]
        quizzes.append(d)
    return {"quizzes": quizzes}


@app.post("/api/quizzes")
async def api_create_quiz(request: Request):
    body = await _json_body(request)
    title = str(body.get("title") or "").strip()
    if not title:
        raise HTTPException(400, "No title provided")
    try:
        quiz = get_db().create_quiz(title, slug=body.get("slug") or None)
    except sqlite3.IntegrityError:
        raise HTTPException(400, "Slug already in use")
    return _quiz_dict(quiz)


@app.get("/api/quizzes/slug/{slug}")
async def api_quiz_by_slug(slug: str):
    return _quiz_dict(_quiz_or_404(slug))


@app.get("/api/quizzes/{quiz_id}")
async def api_quiz(quiz_id: str):
    """Quiz with its modules as stored, for the editor."""
    db = get_db()
    quiz = db.get_quiz(quiz_id)
    if quiz is None:
        raise HTTPException(404, "Quiz not found")
    d = _quiz_dict(quiz)
    d["modules"] = [m.to_dict() for m in db.get_modules(quiz_id)]
    return d


@app.delete("/api/quizzes/{quiz_id}")
async def api_delete_quiz(quiz_id: str):
    db = get_db()
    quiz = db.get_quiz(quiz_id)
    if quiz is None:
        raise HTTPException(404, "Quiz not found")
    db.delete_quiz(quiz_id)
    logging.getLogger("quickpoll.admin").info("Deleted quiz %s (%s)", quiz["slug"], quiz_id)
    return {"success": True}


@app.get("/api/quizzes/slug/{slug}/modules")
async def api_quiz_play(slug: str):
    """Modules for taking a quiz, split into pages, random questions drawn."""
    db = get_db()
    quiz = _quiz_or_404(slug)
    modules = db.get_modules(quiz["id"])
    drawn = assign_random_questions(modules, db.get_stack_questions)
    pages = split_pages(modules)
    return {
        "quizId": quiz["id"],
        "title": quiz["title"],
        "pages": [
            {
                "pageNumber": p.number,
                "modules": [_public_module(m, drawn.get(m.id)) for m in p.modules],
            }
            for p in pages
        ],
    }


@app.post("/api/quizzes/start/{slug}")
async def api_quiz_start(slug: str):
    quiz = _quiz_or_404(slug)
    return {"attemptId": get_db().start_attempt(quiz["id"])}


# ── API: Submission ───────────────────────────────────────────────────────

@app.post("/api/quizzes/submit/{slug}")
async def api_quiz_submit(slug: str, request: Request):
    db = get_db()
    s = get_settings()
    quiz = _quiz_or_404(slug)
    body = await _json_body(request)
    answers = body.get("answers")
    if not isinstance(answers, dict):
        raise HTTPException(400, "No answers provided")
    attempt_id = body.get("attemptId")
    if attempt_id is not None and not isinstance(attempt_id, str):
        raise HTTPException(400, "attemptId must be a string")

    modules = db.get_modules(quiz["id"])
    parsed = {str(k): parse_answer(v) for k, v in answers.items()}

    if s.require_used_question_id:
        for m in modules:
            if m.type != "randomQuestion" or parsed.get(m.id) is None:
                continue
            a = parsed[m.id]
            used = a.used_question_id if isinstance(a, RandomQuestionAnswer) else None
            if not (used or m.data.get("usedQuestionId")):
                raise HTTPException(400, f"Missing usedQuestionId for module {m.id}")

    result, scored = score_attempt(
        modules,
        parsed,
        stack_lookup=db.get_stack_questions,
        allow_fallback=not s.require_used_question_id,
    )
    attempt_id = db.record_attempt(
        quiz["id"], result, scored, list(parsed.keys()), attempt_id=attempt_id,
    )
    participations = db.increment_participations(quiz["id"])
    _submit_log.info(
        "Quiz %s attempt %s: %d/%d correct, score %s",
        slug, attempt_id, result.correct_answers, result.total_questions, result.percentage,
    )
    return {
        "success": True,
        "participations": participations,
        "attemptId": attempt_id,
        "results": result.to_dict(),
    }


@app.get("/api/quizzes/results/{attempt_id}")
async def api_quiz_results(attempt_id: str):
    db = get_db()
    attempt = db.get_attempt(attempt_id)
    if attempt is None:
        raise HTTPException(404, "Attempt not found")
    quiz = db.get_quiz(attempt["quiz_id"])
    modules = {m.id: m for m in db.get_modules(attempt["quiz_id"]) if m.answerable}

    entries = []
    for ans in db.get_attempt_answers(attempt_id):
        m = modules.get(ans["module_id"])
        question = None
        if m is not None and m.type == "randomQuestion":
            used_id = ans["used_question_id"] or m.data.get("usedQuestionId")
            question = db.get_stack_question(used_id) if used_id else None
            if question is None:
                question = resolve_stack_question(
                    db.get_stack_questions(m.data.get("stackId") or ""), None,
                )
        if m is None:
            text, options, kind = "Unknown question", [], "single"
        else:
            text, options, kind = _module_display(m, question)
        entries.append({
            "moduleId": ans["module_id"],
            "questionText": text,
            "questionAnswers": options,
            "questionType": kind,
            "selectedChoices": ans["selected_choices"],
            "correctChoices": ans["correct_choices"],
            "isCorrect": ans["is_correct"],
            "points": ans["points"],
        })

    score = attempt["score"] or 0
    return {
        "attemptId": attempt["id"],
        "quizTitle": quiz["title"] if quiz else "",
        "finishedAt": attempt["finished_at"],
        "score": {
            "totalQuestions": attempt["total_questions"],
            "correctAnswers": attempt["correct_answers"],
            "score": score,
            "percentage": f"{score:.1f}%",
        },
        "answers": entries,
    }


# ── API: Modules ──────────────────────────────────────────────────────────

@app.get("/api/quiz-modules")
async def api_get_modules(quizId: str | None = None):
    if not quizId:
        raise HTTPException(400, "Quiz ID required")
    return [m.to_dict() for m in get_db().get_modules(quizId)]


@app.post("/api/quiz-modules")
async def api_save_modules(request: Request):
    body = await _json_body(request)
    quiz_id = body.get("quizId")
    modules = body.get("modules")
    if not quiz_id or not isinstance(modules, list):
        raise HTTPException(400, "Invalid request data")
    for m in modules:
        if not isinstance(m, dict) or m.get("type") not in MODULE_TYPES:
            raise HTTPException(400, f"Invalid module: {m!r}")
    db = get_db()
    if db.get_quiz(quiz_id) is None:
        raise HTTPException(404, "Quiz not found")
    try:
        saved = db.save_modules(quiz_id, modules)
    except sqlite3.IntegrityError:
        raise HTTPException(400, "Module ids must be unique across quizzes")
    return {"success": True, "modules": [m.to_dict() for m in saved]}


# ── API: Question stacks ──────────────────────────────────────────────────

@app.get("/api/question-stacks")
async def api_stacks():
    return [
        {"id": s["id"], "name": s["name"], "questionCount": s["question_count"]}
        for s in get_db().list_stacks()
    ]


def _stack_or_404(stack_id: str) -> dict:
    stack = get_db().get_stack(stack_id)
    if stack is None:
        raise HTTPException(404, "Stack not found")
    return stack


def _stack_name(body: dict) -> str:
    name = str(body.get("name") or "").strip()
    if not name:
        raise HTTPException(400, "No name provided")
    return name


@app.post("/api/question-stacks")
async def api_create_stack(request: Request):
    name = _stack_name(await _json_body(request))
    try:
        stack = get_db().create_stack(name)
    except sqlite3.IntegrityError:
        raise HTTPException(400, "Stack name already in use")
    return {"id": stack["id"], "name": stack["name"]}


def _stack_dict(stack: dict) -> dict:
    return {
        "id": stack["id"],
        "name": stack["name"],
        "questions": [q.to_dict() for q in get_db().get_stack_questions(stack["id"])],
    }


@app.get("/api/question-stacks/{stack_id}")
async def api_stack(stack_id: str):
    return _stack_dict(_stack_or_404(stack_id))


@app.put("/api/question-stacks/{stack_id}")
async def api_rename_stack(stack_id: str, request: Request):
    _stack_or_404(stack_id)
    name = _stack_name(await _json_body(request))
    try:
        stack = get_db().rename_stack(stack_id, name)
    except sqlite3.IntegrityError:
        raise HTTPException(400, "Stack name already in use")
    return _stack_dict(stack)


@app.delete("/api/question-stacks/{stack_id}")
async def api_delete_stack(stack_id: str):
    _stack_or_404(stack_id)
    get_db().delete_stack(stack_id)
    return {"success": True}


@app.post("/api/question-stacks/{stack_id}/save")
async def api_save_stack(stack_id: str, request: Request):
    """Rename a stack and replace all of its questions."""
    _stack_or_404(stack_id)
    body = await _json_body(request)
    name = _stack_name(body)
    items = body.get("questions")
    if not isinstance(items, list):
        raise HTTPException(400, "Questions array is required")
    default_type = get_settings().default_question_type
    questions = []
    for i, item in enumerate(items):
        q = question_from_dict(item, default_type=default_type)
        if q is None:
            raise HTTPException(400, f"Question {i + 1} needs text and answers")
        questions.append(q)
    try:
        get_db().save_stack(stack_id, name, questions)
    except sqlite3.IntegrityError:
        raise HTTPException(400, "Stack name already in use")
    return _stack_dict(get_db().get_stack(stack_id))


@app.get("/api/question-stacks/{stack_id}/questions")
async def api_stack_questions(stack_id: str):
    _stack_or_404(stack_id)
    return [q.to_dict() for q in get_db().get_stack_questions(stack_id)]


@app.post("/api/question-stacks/{stack_id}/questions")
async def api_add_stack_question(stack_id: str, request: Request):
    _stack_or_404(stack_id)
    body = await _json_body(request)
    q = question_from_dict(body, default_type=get_settings().default_question_type)
    if q is None:
        raise HTTPException(400, "Question text and answers are required")
    return get_db().add_stack_question(stack_id, q).to_dict()


@app.get("/api/random-question")
async def api_random_question(stackId: str | None = None, count: int = 1):
    if not stackId:
        raise HTTPException(400, "Stack ID is required")
    questions = get_db().get_stack_questions(stackId)
    if not questions:
        raise HTTPException(404, "No questions found in this stack")
    drawn = draw_questions(questions, max(1, count))
    if count <= 1:
        return {"success": True, "question": drawn[0].to_dict()}
    return {"success": True, "questions": [q.to_dict() for q in drawn]}


@app.post("/api/import")
async def api_import():
    db = get_db()
    imported = {}
    for sf in get_settings().resolved_stack_files():
        if not sf.exists():
            continue
        try:
            name, n = import_stack_file(db, sf)
        except ValueError as e:
            raise HTTPException(400, str(e))
        imported[name] = n
    return {"imported": imported, "total_stacks": db.get_stack_count()}


# ── API: Statistics ───────────────────────────────────────────────────────

@app.get("/api/admin/quiz-stats/{quiz_id}")
async def api_quiz_stats(quiz_id: str):
    db = get_db()
    if db.get_quiz(quiz_id) is None:
        raise HTTPException(404, "Quiz not found")
    return db.get_quiz_stats(quiz_id, recent_days=get_settings().recent_days)


@app.get("/api/admin/quiz-detailed-stats/{quiz_id}")
async def api_quiz_detailed_stats(quiz_id: str):
    db = get_db()
    if db.get_quiz(quiz_id) is None:
        raise HTTPException(404, "Quiz not found")
    stats = db.get_quiz_stats(quiz_id, recent_days=get_settings().recent_days)

    by_module: dict[str, list[dict]] = {}
    for ans in db.get_quiz_answers(quiz_id):
        by_module.setdefault(ans["module_id"], []).append(ans)

    question_stats = []
    for m in db.get_modules(quiz_id):
        if not m.answerable:
            continue
        # Random modules are labelled with the first stack question
        question = None
        if m.type == "randomQuestion":
            question = resolve_stack_question(
                db.get_stack_questions(m.data.get("stackId") or ""), None,
            )
        text, options, kind = _module_display(m, question)

        counts: dict[str, int] = {}
        total_selections = 0
        correct = 0
        module_answers = by_module.get(m.id, [])
        for ans in module_answers:
            for idx in ans["selected_choices"]:
                if isinstance(idx, int) and 0 <= idx < len(options):
                    label = str(options[idx])
                else:
                    label = f"Answer {idx + 1 if isinstance(idx, int) else idx}"
                counts[label] = counts.get(label, 0) + 1
                total_selections += 1
            if ans["is_correct"]:
                correct += 1

        question_stats.append({
            "moduleId": m.id,
            "questionText": text,
            "questionType": kind,
            "answerCounts": counts,
            "totalAnswers": total_selections,
            "correctCount": correct,
            "averageScore": (correct / len(module_answers) * 100) if module_answers else 0,
        })

    stats["questionStats"] = question_stats
    return stats


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    global _settings
    body = await _json_body(request)
    current = get_settings().to_dict()
    for key, value in body.items():
        if key in current:
            current[key] = value
    _settings = Settings(**current)
    save_settings(_settings)
    return _settings.to_dict()
