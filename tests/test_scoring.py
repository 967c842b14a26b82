"""Tests for the answer scoring engine."""
from __future__ import annotations

import json

import pytest

from quickpoll.models import (
    MultipleChoice,
    QuizModule,
    RandomQuestionAnswer,
    ScoredAnswer,
    SingleChoice,
)
from quickpoll.scoring import (
    aggregate,
    normalize_selection,
    parse_answer,
    question_kind,
    resolve_correct_indices,
    score_attempt,
    score_module,
    score_selection,
)


def _scored(points: float) -> ScoredAnswer:
    return ScoredAnswer("m", [], [], points == 1.0, points)


class TestQuestionKind:
    def test_missing_is_single(self):
        assert question_kind(None) == "single"
        assert question_kind("") == "single"

    def test_single(self):
        assert question_kind("single") == "single"

    def test_multiple(self):
        assert question_kind("multiple") == "multiple"

    def test_unknown_graded_as_multiple(self):
        assert question_kind("checkbox") == "multiple"


class TestParseAnswer:
    def test_none_is_unanswered(self):
        assert parse_answer(None) is None

    def test_scalar_is_single_choice(self):
        assert parse_answer(2) == SingleChoice(index=2)

    def test_list_is_multiple_choice(self):
        assert parse_answer([0, 2]) == MultipleChoice(indices=[0, 2])

    def test_object_with_single_index(self):
        a = parse_answer({"selectedIndex": 1, "usedQuestionId": "sq-1"})
        assert a == RandomQuestionAnswer(choice=1, used_question_id="sq-1")

    def test_object_with_indices(self):
        a = parse_answer({"selectedIndices": [0, 1]})
        assert a.choice == [0, 1]
        assert a.used_question_id is None

    def test_object_prefers_indices(self):
        a = parse_answer({"selectedIndex": 3, "selectedIndices": [0]})
        assert a.choice == [0]


class TestNormalizeSelection:
    def test_single_scalar(self):
        assert normalize_selection(1, "single") == [1]

    def test_single_absent(self):
        assert normalize_selection(None, "single") == []

    def test_single_non_number(self):
        assert normalize_selection("1", "single") == []

    def test_single_list_rejected(self):
        assert normalize_selection([1], "single") == []

    def test_single_bool_rejected(self):
        assert normalize_selection(True, "single") == []

    def test_integral_float_accepted(self):
        assert normalize_selection(2.0, "single") == [2]

    def test_multiple_list(self):
        assert normalize_selection([0, 2], "multiple") == [0, 2]

    def test_multiple_scalar_wrapped(self):
        assert normalize_selection(3, "multiple") == [3]

    def test_multiple_drops_non_indices(self):
        assert normalize_selection([0, "x", None, 2], "multiple") == [0, 2]

    def test_multiple_absent(self):
        assert normalize_selection(None, "multiple") == []

    def test_unwraps_parsed_answers(self):
        assert normalize_selection(SingleChoice(1), "single") == [1]
        assert normalize_selection(MultipleChoice([0, 1]), "multiple") == [0, 1]
        assert normalize_selection(RandomQuestionAnswer([2], "sq"), "multiple") == [2]


class TestResolveCorrectIndices:
    def test_raw_lists(self):
        assert resolve_correct_indices(["A", "B", "C"], ["B"]) == [1]

    def test_json_encoded_labels(self):
        assert resolve_correct_indices(["A", "B", "C"], json.dumps(["A", "C"])) == [0, 2]

    def test_double_encoded_labels(self):
        labels = json.dumps(json.dumps(["C"]))
        assert resolve_correct_indices(["A", "B", "C"], labels) == [2]

    def test_encoded_options(self):
        assert resolve_correct_indices(json.dumps(["X", "Y"]), ["Y"]) == [1]

    def test_malformed_labels(self):
        assert resolve_correct_indices(["A", "B"], "[not json") == []

    def test_stale_label_dropped(self):
        assert resolve_correct_indices(["X", "Y"], ["Z"]) == []

    def test_partially_stale(self):
        assert resolve_correct_indices(["X", "Y"], ["Z", "Y"]) == [1]

    def test_first_match_wins(self):
        assert resolve_correct_indices(["A", "B", "A"], ["A"]) == [0]

    def test_exact_match_only(self):
        assert resolve_correct_indices(["Paris", "Lyon"], ["paris"]) == []
        assert resolve_correct_indices(["1", "2"], [1]) == []

    def test_none_inputs(self):
        assert resolve_correct_indices(None, None) == []


class TestScoreSelection:
    def test_single_exact_match(self):
        assert score_selection([1], [1], "single") == (True, 1.0)

    def test_single_miss(self):
        assert score_selection([0], [1], "single") == (False, 0.0)

    def test_single_unanswered(self):
        assert score_selection([], [1], "single") == (False, 0.0)

    def test_single_no_correct(self):
        assert score_selection([0], [], "single") == (False, 0.0)

    def test_multiple_full_credit(self):
        assert score_selection([0, 1], [0, 1], "multiple") == (True, 1.0)

    def test_multiple_order_irrelevant(self):
        assert score_selection([1, 0], [0, 1], "multiple") == (True, 1.0)

    def test_multiple_half_credit(self):
        assert score_selection([0], [0, 1], "multiple") == (False, 0.5)

    def test_multiple_wrong_cancels_right(self):
        assert score_selection([0, 2], [0, 1], "multiple") == (False, 0.0)

    def test_multiple_over_selection(self):
        assert score_selection([0, 1, 2, 3], [0, 1], "multiple") == (False, 0.0)

    def test_multiple_clamped_at_zero(self):
        is_correct, points = score_selection([2, 3], [0, 1], "multiple")
        assert points == 0.0
        assert not is_correct

    def test_multiple_no_correct_answers(self):
        assert score_selection([0, 1], [], "multiple") == (False, 0.0)
        assert score_selection([], [], "multiple") == (False, 0.0)

    def test_multiple_unanswered(self):
        assert score_selection([], [0, 1], "multiple") == (False, 0.0)

    def test_multiple_duplicates_counted_once(self):
        assert score_selection([0, 0, 1], [0, 1], "multiple") == (True, 1.0)

    def test_three_correct_partial(self):
        _, points = score_selection([0, 1, 3], [0, 1, 2], "multiple")
        assert points == pytest.approx(1 / 3)


class TestScoreModule:
    def test_single_exact_match(self, single_module):
        s = score_module(single_module, SingleChoice(1))
        assert s.is_correct is True
        assert s.points == 1.0
        assert s.selected_choices == [1]
        assert s.correct_choices == [1]

    def test_single_miss(self, single_module):
        s = score_module(single_module, SingleChoice(0))
        assert s.is_correct is False
        assert s.points == 0.0

    def test_unanswered_single(self, single_module):
        s = score_module(single_module, None)
        assert s.selected_choices == []
        assert s.points == 0.0
        assert not s.is_correct

    def test_unanswered_multiple(self, multiple_module):
        s = score_module(multiple_module, None)
        assert s.points == 0.0
        assert not s.is_correct

    def test_multiple_partial(self, multiple_module):
        s = score_module(multiple_module, MultipleChoice([0, 2]))
        assert s.points == 0.0
        assert s.is_correct is False

    def test_non_answerable_skipped(self):
        assert score_module(QuizModule("t", "text", {"text": "hi"}), None) is None

    def test_missing_data(self):
        s = score_module(QuizModule("q", "question", {}), SingleChoice(0))
        assert s.points == 0.0
        assert s.correct_choices == []

    def test_double_encoded_correct_answers(self):
        m = QuizModule("q", "question", {
            "answers": ["A", "B"],
            "correctAnswers": json.dumps(json.dumps(["B"])),
        })
        s = score_module(m, SingleChoice(1))
        assert s.is_correct

    def test_missing_question_type_is_single(self):
        m = QuizModule("q", "question", {"answers": ["A", "B"], "correctAnswers": ["A"]})
        s = score_module(m, MultipleChoice([0]))
        assert s.selected_choices == []
        assert not s.is_correct


class TestRandomQuestionScoring:
    def _module(self, **extra):
        return QuizModule("m-rand", "randomQuestion", {"stackId": "stack-1", "stackName": "S", **extra})

    def test_scores_against_used_question(self, stack_questions):
        lookup = {"stack-1": stack_questions}.get
        s = score_module(self._module(), RandomQuestionAnswer([0, 1], "sq-2"), lookup)
        assert s.used_question_id == "sq-2"
        assert s.correct_choices == [0, 1]
        assert s.points == 1.0
        assert s.is_correct

    def test_used_id_from_module_data(self, stack_questions):
        lookup = {"stack-1": stack_questions}.get
        s = score_module(self._module(usedQuestionId="sq-2"), SingleChoice(0), lookup)
        assert s.used_question_id == "sq-2"
        # multiple-choice question: a lone index is wrapped
        assert s.selected_choices == [0]
        assert s.points == 0.5

    def test_answer_id_wins_over_module_data(self, stack_questions):
        lookup = {"stack-1": stack_questions}.get
        s = score_module(self._module(usedQuestionId="sq-2"), RandomQuestionAnswer(0, "sq-1"), lookup)
        assert s.used_question_id == "sq-1"
        assert s.is_correct

    def test_missing_id_falls_back_to_first(self, stack_questions):
        lookup = {"stack-1": stack_questions}.get
        s = score_module(self._module(), SingleChoice(0), lookup)
        assert s.used_question_id == "sq-1"
        assert s.is_correct

    def test_unknown_id_falls_back_to_first(self, stack_questions):
        lookup = {"stack-1": stack_questions}.get
        s = score_module(self._module(), RandomQuestionAnswer(0, "gone"), lookup)
        assert s.used_question_id == "sq-1"

    def test_no_fallback(self, stack_questions):
        lookup = {"stack-1": stack_questions}.get
        s = score_module(self._module(), SingleChoice(0), lookup, allow_fallback=False)
        assert s.correct_choices == []
        assert s.points == 0.0
        assert not s.is_correct

    def test_empty_stack(self):
        s = score_module(self._module(), RandomQuestionAnswer([1, 2], "sq-9"), lambda _: [])
        assert s.selected_choices == [1, 2]
        assert s.correct_choices == []
        assert s.is_correct is False
        assert s.points == 0.0
        assert s.used_question_id == "sq-9"

    def test_no_lookup(self):
        s = score_module(self._module(), SingleChoice(1))
        assert s.selected_choices == [1]
        assert s.points == 0.0


class TestAggregate:
    def test_empty(self):
        r = aggregate([])
        assert r.total_questions == 0
        assert r.correct_answers == 0
        assert r.score == 0

    def test_points_average(self):
        r = aggregate([_scored(1.0), _scored(0.5), _scored(0.0), _scored(1.0)])
        assert r.total_questions == 4
        assert r.correct_answers == 2
        assert r.score == pytest.approx(62.5)
        assert r.percentage == "62.5%"

    def test_partial_credit_not_counted_correct(self):
        r = aggregate([_scored(0.5), _scored(0.5)])
        assert r.correct_answers == 0
        assert r.score == pytest.approx(50.0)


class TestScoreAttempt:
    def _quiz(self, single_module, multiple_module):
        return [
            QuizModule("t", "title", {"text": "Quiz"}),
            single_module,
            QuizModule("b", "pageBreak", {}),
            multiple_module,
            QuizModule("x", "text", {"text": "Bye"}),
        ]

    def test_zero_module_quiz(self):
        result, scored = score_attempt([], {})
        assert result.total_questions == 0
        assert result.correct_answers == 0
        assert result.score == 0
        assert scored == []

    def test_only_structural_modules(self):
        modules = [QuizModule("b", "pageBreak", {}), QuizModule("t", "text", {})]
        result, _ = score_attempt(modules, {"b": 1})
        assert result.total_questions == 0
        assert result.score == 0

    def test_non_answerable_excluded(self, single_module, multiple_module):
        result, scored = score_attempt(self._quiz(single_module, multiple_module), {})
        assert result.total_questions == 2
        assert [s.module_id for s in scored] == ["m-single", "m-multi"]

    def test_raw_answers(self, single_module, multiple_module):
        answers = {"m-single": 1, "m-multi": [0]}
        result, scored = score_attempt(self._quiz(single_module, multiple_module), answers)
        assert result.correct_answers == 1
        assert result.score == pytest.approx(75.0)
        assert scored[1].points == 0.5

    def test_parsed_answers(self, single_module, multiple_module):
        answers = {"m-single": SingleChoice(1), "m-multi": MultipleChoice([0, 1])}
        result, _ = score_attempt(self._quiz(single_module, multiple_module), answers)
        assert result.correct_answers == 2
        assert result.score == pytest.approx(100.0)

    def test_idempotent(self, single_module, multiple_module, stack_questions):
        modules = self._quiz(single_module, multiple_module) + [
            QuizModule("r", "randomQuestion", {"stackId": "stack-1"}),
        ]
        answers = {"m-single": 0, "m-multi": [0, 3], "r": {"selectedIndex": 0, "usedQuestionId": "sq-1"}}
        lookup = {"stack-1": stack_questions}.get
        first = score_attempt(modules, answers, lookup)
        second = score_attempt(modules, answers, lookup)
        assert first == second

    def test_unknown_answer_keys_ignored(self, single_module):
        result, scored = score_attempt([single_module], {"m-single": 1, "other": 3})
        assert result.total_questions == 1
        assert len(scored) == 1

    def test_malformed_answers_never_raise(self, single_module, multiple_module):
        answers = {"m-single": "abc", "m-multi": {"selectedIndices": "nope"}}
        result, _ = score_attempt(self._quiz(single_module, multiple_module), answers)
        assert result.score == 0
