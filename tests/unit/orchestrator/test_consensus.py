"""Unit tests for switchboard.orchestrator.consensus module."""

import pytest

from switchboard.orchestrator.consensus import concatenate, majority, synthesize
from switchboard.orchestrator.models import ConsensusEntry


def entry(agent: str, content: str) -> ConsensusEntry:
    return ConsensusEntry(agent=agent, content=content, model=f"{agent}-model")


class TestConcatenate:
    """Test the concatenate strategy."""

    def test_tags_each_answer(self) -> None:
        """Answers are tagged with their agent in request order."""
        combined, agreement = concatenate([entry("a", " yes "), entry("b", "no")])

        assert combined == "[a] yes\n\n[b] no"
        assert agreement == 1.0


class TestMajority:
    """Test the majority strategy."""

    def test_most_common_answer_wins(self) -> None:
        """The answer most agents agree on is returned."""
        combined, agreement = majority(
            [entry("a", "Paris"), entry("b", "Lyon"), entry("c", "  paris ")]
        )

        assert combined == "Paris"
        assert agreement == pytest.approx(2 / 3)

    def test_tie_goes_to_first(self) -> None:
        """Ties are broken by request order."""
        combined, agreement = majority([entry("a", "one"), entry("b", "two")])

        assert combined == "one"
        assert agreement == 0.5

    def test_json_answers_compare_structurally(self) -> None:
        """JSON answers with different key order count as equal."""
        combined, agreement = majority(
            [
                entry("a", '{"x": 1, "y": 2}'),
                entry("b", '```json\n{"y": 2, "x": 1}\n```'),
                entry("c", '{"x": 3}'),
            ]
        )

        assert combined == '{"x": 1, "y": 2}'
        assert agreement == pytest.approx(2 / 3)

    def test_empty(self) -> None:
        """No entries yields an empty answer."""
        assert majority([]) == ("", 0.0)


class TestSynthesize:
    """Test strategy lookup."""

    def test_named_strategy(self) -> None:
        """synthesize dispatches on the strategy name."""
        assert synthesize("majority", [entry("a", "x")]) == ("x", 1.0)

    def test_unknown_strategy(self) -> None:
        """Unknown strategies raise ValueError."""
        with pytest.raises(ValueError, match="Unknown synthesis strategy"):
            synthesize("vote", [entry("a", "x")])
