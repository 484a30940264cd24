"""Consensus synthesis strategies.

Both strategies are pure functions over the successful entries, which arrive
in request order:

- concatenate: every answer, tagged with its agent (``[agent] text``).
- majority: the most common answer after normalisation; JSON answers are
  compared structurally. Ties go to the answer given first in request order.
"""

from collections.abc import Callable, Sequence

from switchboard.core.text import normalize_answer
from switchboard.orchestrator.models import ConsensusEntry

# entries -> (combined answer, agreement ratio)
Synthesizer = Callable[[Sequence[ConsensusEntry]], tuple[str, float]]


def concatenate(entries: Sequence[ConsensusEntry]) -> tuple[str, float]:
    combined = "\n\n".join(f"[{e.agent}] {e.content.strip()}" for e in entries)
    return combined, 1.0


def majority(entries: Sequence[ConsensusEntry]) -> tuple[str, float]:
    if not entries:
        return "", 0.0

    counts: dict[str, int] = {}
    first: dict[str, ConsensusEntry] = {}
    for entry in entries:
        key = normalize_answer(entry.content)
        counts[key] = counts.get(key, 0) + 1
        first.setdefault(key, entry)

    # dicts keep insertion order, so max() keeps the earliest of tied keys
    winner = max(counts, key=lambda k: counts[k])
    return first[winner].content.strip(), counts[winner] / len(entries)


SYNTHESIZERS: dict[str, Synthesizer] = {
    "concatenate": concatenate,
    "majority": majority,
}


def synthesize(strategy: str, entries: Sequence[ConsensusEntry]) -> tuple[str, float]:
    """Apply a named strategy.

    Raises:
        ValueError: If the strategy is unknown.
    """
    synthesizer = SYNTHESIZERS.get(strategy)
    if synthesizer is None:
        msg = f"Unknown synthesis strategy: {strategy}"
        raise ValueError(msg)
    return synthesizer(entries)
