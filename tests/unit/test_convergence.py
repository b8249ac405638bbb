"""Unit tests for convergence detection."""

from __future__ import annotations

import pytest

from flowloop.core.convergence import (
    ConvergenceDetector,
    ConvergenceInfo,
    change_rate,
    check_convergence,
    extract_numeric_value,
    has_numeric_converged,
    is_oscillating,
    levenshtein_distance,
    string_similarity,
    window_similarity,
)


class TestStringSimilarity:
    """Tests for the Levenshtein-based similarity."""

    def test_identical_strings(self) -> None:
        assert string_similarity("draft", "draft") == 1.0

    def test_two_empty_strings_are_identical(self) -> None:
        assert string_similarity("", "") == 1.0

    def test_one_empty_string(self) -> None:
        assert string_similarity("", "text") == 0.0
        assert string_similarity("text", "") == 0.0

    def test_completely_different(self) -> None:
        assert string_similarity("abc", "xyz") == 0.0

    def test_partial_similarity(self) -> None:
        # one substitution over four characters
        assert string_similarity("abcd", "abcx") == pytest.approx(0.75)

    def test_symmetric(self) -> None:
        assert string_similarity("kitten", "sitting") == string_similarity("sitting", "kitten")

    def test_levenshtein_distance(self) -> None:
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0


class TestCheckConvergence:
    """Tests for check_convergence."""

    def test_fewer_than_two_entries_is_undetermined(self) -> None:
        assert check_convergence([]) == ConvergenceInfo.undetermined()
        info = check_convergence(["only"])
        assert info.converged is False
        assert info.similarity == 0.0

    @pytest.mark.parametrize(
        "history",
        [
            ["X", "X"],
            ["first", "second", "second"],
            ["", ""],
            ["a long paragraph of text", "a long paragraph of text"],
        ],
    )
    def test_identical_consecutive_outputs_converge(self, history: list[str]) -> None:
        info = check_convergence(history)

        assert info.similarity == 1.0
        assert info.converged is True
        assert info.change_rate == 0.0

    def test_different_outputs_do_not_converge(self) -> None:
        info = check_convergence(["first draft", "completely rewritten text"])

        assert info.converged is False
        assert info.similarity < 0.95

    def test_threshold_is_inclusive(self) -> None:
        info = check_convergence(["abcd", "abcx"], threshold=0.75)
        assert info.converged is True

    def test_window_averages_earlier_outputs(self) -> None:
        history = ["zzzz", "abcd", "abcd"]

        assert check_convergence(history, window=1).converged is True
        # averaged against "zzzz" as well
        assert check_convergence(history, window=2).converged is False

    def test_oscillation_sequence(self) -> None:
        history = ["A", "B", "A", "B"]

        info = check_convergence(history)

        assert info.oscillating is True
        assert info.converged is False


class TestOscillation:
    """Tests for is_oscillating."""

    def test_needs_three_entries(self) -> None:
        assert is_oscillating(["A", "B"]) is False

    def test_detects_back_and_forth(self) -> None:
        assert is_oscillating(["A", "B", "A"]) is True

    def test_steady_output_is_not_oscillating(self) -> None:
        assert is_oscillating(["A", "A", "A"]) is False

    def test_progressing_output_is_not_oscillating(self) -> None:
        assert is_oscillating(["one", "two", "three"]) is False


class TestHelpers:
    """Tests for change_rate and window_similarity."""

    def test_change_rate(self) -> None:
        assert change_rate(["a"]) == 1.0
        assert change_rate(["a", "a"]) == 0.0
        assert change_rate(["abcd", "abcx"]) == pytest.approx(0.25)

    def test_window_similarity(self) -> None:
        assert window_similarity(["a"]) == 0.0
        assert window_similarity(["x", "a", "a"], window=2) == pytest.approx(0.5)


class TestConvergenceDetector:
    """Tests for ConvergenceDetector."""

    def test_uses_configured_threshold(self) -> None:
        detector = ConvergenceDetector(threshold=0.7)

        assert detector.threshold == 0.7
        assert detector.check(["abcd", "abcx"]).converged is True

    def test_threshold_override(self) -> None:
        detector = ConvergenceDetector(threshold=0.7)

        assert detector.check(["abcd", "abcx"], threshold=0.9).converged is False

    @pytest.mark.parametrize(
        "kwargs",
        [{"threshold": 1.5}, {"oscillation_threshold": -0.1}, {"window": 0}],
    )
    def test_invalid_settings(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            ConvergenceDetector(**kwargs)


class TestNumericConvergence:
    """Tests for numeric extraction helpers."""

    def test_extract_last_number(self) -> None:
        assert extract_numeric_value("score 3 then 4.5") == 4.5
        assert extract_numeric_value("delta -2") == -2.0
        assert extract_numeric_value("no digits") is None

    def test_numeric_convergence(self) -> None:
        assert has_numeric_converged([1.0, 1.0005, 1.0002, 1.0001]) is True
        assert has_numeric_converged([1.0, 2.0, 3.0, 4.0]) is False
        assert has_numeric_converged([1.0, 1.0]) is False
