"""Per-iteration statistics of a solve and their presentation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence


@dataclass
class IterationRecord:
    iteration: int
    energy: float             # normalized by total rest area / volume
    step: float               # accepted line-search step (0 = no progress)
    solve_converged: bool = True
    time: float = 0.0         # wall time of the iteration in seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            'iteration': self.iteration,
            'energy': self.energy,
            'step': self.step,
            'solve_converged': self.solve_converged,
            'time': self.time,
        }


def format_history_table(history: Sequence[IterationRecord]) -> str:
    """Return a human readable multi-line table of an iteration history."""
    if not history:
        return "<no iterations>"
    header = ["iter", "energy", "step", "solve", "ms"]
    rows = [[
        str(r.iteration), f"{r.energy:.6e}", f"{r.step:.4f}",
        "ok" if r.solve_converged else "maxit", f"{r.time * 1000.0:8.3f}",
    ] for r in history]
    widths = [max(len(h), *(len(row[i]) for row in rows)) for i, h in enumerate(header)]
    lines = ["  ".join(h.rjust(w) for h, w in zip(header, widths))]
    lines.append("  ".join('-' * w for w in widths))
    lines.extend("  ".join(c.rjust(w) for c, w in zip(row, widths)) for row in rows)
    return "\n".join(lines)


__all__ = ['IterationRecord', 'format_history_table']
