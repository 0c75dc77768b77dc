"""Empirical distribution tables used to draw loading, weighing and travel times.

A distribution table is a short list of ``(value, probability)`` pairs, for
example the loading times of a loader observed on site::

    5, 0.30
    10, 0.50
    15, 0.20

The helpers in this module parse such tables from text, turn them into a
cumulative table and draw values from it by inverse-transform sampling. The
:class:`empirical_table` wrapper exposes the same sampling and summary API as
the other distributions of the package.
"""
from __future__ import annotations

import math
from typing import Iterable, Optional, Protocol, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import scipy.stats as st

PROBABILITY_TOLERANCE = 0.001

Table = Sequence[Tuple[float, float]]


class RandomSource(Protocol):
    """Anything with a ``random()`` method returning a float in [0, 1)."""

    def random(self) -> float:
        ...


class DistributionError(ValueError):
    """Base class for errors found while reading a distribution table."""


class MalformedDistributionLine(DistributionError):
    """A line of a table is not two comma-separated numbers."""

    def __init__(self, line: str, line_number: int, reason: str = "expected '<value>, <probability>'"):
        super().__init__(f"line {line_number}: {line!r}: {reason}")
        self.line = line
        self.line_number = line_number


class ProbabilityOutOfRange(DistributionError):
    """A probability is outside of [0, 1]."""

    def __init__(self, probability: float, line: str, line_number: int):
        super().__init__(f"line {line_number}: {line!r}: probability {probability:g} is not in [0, 1]")
        self.probability = probability
        self.line = line
        self.line_number = line_number


class InvalidDistribution(DistributionError):
    """The probabilities of a table do not form a distribution."""

    def __init__(self, message: str, total: Optional[float] = None):
        super().__init__(message)
        self.total = total


def parse_table(text: str) -> list[tuple[float, float]]:
    """Parse ``"<value>, <probability>"`` lines into a distribution table.

    Parameters
    ----------
    text : str
        One pair per line. Blank lines are ignored.

    Returns
    -------
    list[tuple[float, float]]
        The pairs in the order they were written.

    Raises
    ------
    MalformedDistributionLine
        If a line does not split into exactly two numeric fields, or its
        value is not finite.
    ProbabilityOutOfRange
        If a probability lies outside [0, 1].
    """
    table = []
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        fields = line.split(",")
        if len(fields) != 2:
            raise MalformedDistributionLine(line, number)
        try:
            value, probability = (float(f) for f in fields)
        except ValueError:
            raise MalformedDistributionLine(line, number, "fields must be numeric") from None
        if not math.isfinite(value):
            raise MalformedDistributionLine(line, number, "value must be a finite number")
        if not 0.0 <= probability <= 1.0:
            raise ProbabilityOutOfRange(probability, line, number)
        table.append((value, probability))
    return table


def build_cumulative(table: Table) -> list[tuple[float, float]]:
    """Turn a distribution table into a cumulative table.

    Each entry of the result holds the running sum of the probabilities up to
    and including that entry. The last entry is pinned to exactly ``1.0``.

    Raises
    ------
    InvalidDistribution
        If the table is empty, holds a negative or NaN probability, or its
        probabilities do not sum to 1 within :data:`PROBABILITY_TOLERANCE`.
    """
    if len(table) == 0:
        raise InvalidDistribution("Distribution table must contain at least one entry.")

    cumulative = []
    running = 0.0
    for value, probability in table:
        if not probability >= 0:
            raise InvalidDistribution(f"Probability of value {value:g} must be a non-negative number, got {probability:g}.")
        running += probability
        cumulative.append((value, running))

    if not abs(running - 1.0) <= PROBABILITY_TOLERANCE:
        raise InvalidDistribution(
            f"Probabilities sum to {running:.6g}, expected 1.0 (tolerance {PROBABILITY_TOLERANCE}).",
            total=running,
        )

    cumulative[-1] = (cumulative[-1][0], 1.0)
    return cumulative


def sample(cumulative: Table, rng: RandomSource) -> float:
    """Draw one value from a cumulative table by inverse-transform sampling."""
    r = rng.random()
    for value, cum_prob in cumulative:
        if r <= cum_prob:
            return value
    # reached only through rounding in the cumulative sums
    return cumulative[-1][0]


class empirical_table:
    """Discrete distribution given by a table of values and probabilities.

    The API mirrors the continuous distributions of the package: ``sample``,
    ``samples``, ``mean``, ``var``, ``std``, ``cdf_xy`` and ``plot_cdf``.
    Sampling needs a random source, so a run can own its generator and stay
    reproducible.
    """

    def __init__(self, table: Table):
        """
        Initializes the distribution.

        Parameters
        -----------
        table : sequence of (value, probability)
            The distribution table. It is validated with
            :func:`build_cumulative`.
        """
        self.dist_type = "empirical_table"
        self.cumulative = build_cumulative(table)
        self.params = [(float(v), float(p)) for v, p in table]
        self.values = np.array([v for v, _ in self.params], dtype=float)
        self.probabilities = np.array([p for _, p in self.params], dtype=float)

    @classmethod
    def from_text(cls, text: str) -> "empirical_table":
        """Build the distribution from ``"<value>, <probability>"`` lines."""
        return cls(parse_table(text))

    def __str__(self):
        pairs = ", ".join(f"{v:g}: {p:g}" for v, p in self.params)
        return f"dist.empirical_table({pairs})"

    __repr__ = __str__

    def __len__(self):
        return len(self.cumulative)

    def sample(self, rng: RandomSource) -> float:
        """Draw a single value."""
        return sample(self.cumulative, rng)

    def samples(self, n: int, rng: RandomSource) -> np.ndarray:
        """Draw ``n`` values."""
        return np.array([sample(self.cumulative, rng) for _ in range(n)])

    def mean(self) -> float:
        """Return the distribution mean."""
        return float(np.dot(self.values, self.probabilities))

    def var(self) -> float:
        """Return the distribution variance."""
        return float(np.dot((self.values - self.mean()) ** 2, self.probabilities))

    def std(self) -> float:
        """Return the distribution standard deviation."""
        return float(np.sqrt(self.var()))

    def cdf_xy(self):
        """Return x/y arrays of the step CDF."""
        x = np.array([v for v, _ in self.cumulative])
        y = np.array([c for _, c in self.cumulative])
        return x, y

    def plot_cdf(self):
        """Plot the cumulative distribution function using matplotlib."""
        x, y = self.cdf_xy()
        plt.step(x, y, where="post")
        plt.xlabel("x")
        plt.ylabel("F(x)")
        plt.title("CDF")
        plt.show(block=True)
        return plt

    def goodness_of_fit(self, observed: Iterable[float]):
        """Pearson chi-square test of observed values against the table.

        Returns
        -------
        scipy.stats result with ``statistic`` and ``pvalue``.

        Raises
        ------
        ValueError
            If an observed value is not one of the table values.
        """
        observed = np.asarray(list(observed), dtype=float)
        if observed.size == 0:
            raise ValueError("At least one observation is required.")
        unknown = np.setdiff1d(observed, self.values)
        if unknown.size:
            raise ValueError(f"Observed values {unknown.tolist()} are not in the table.")

        counts = np.array([np.count_nonzero(observed == v) for v in self.values], dtype=float)
        mask = self.probabilities > 0
        expected = self.probabilities[mask] / self.probabilities[mask].sum() * counts[mask].sum()
        return st.chisquare(counts[mask], expected)


def make_duration_table(table: Union[Table, empirical_table]) -> empirical_table:
    """Create a table of durations, rejecting negative or non-finite values.

    An :class:`empirical_table` is checked and returned as is.
    """
    params = table.params if isinstance(table, empirical_table) else table
    for value, _ in params:
        if not math.isfinite(value) or value < 0:
            raise InvalidDistribution(f"Duration {value:g} must be a finite non-negative number.")
    if isinstance(table, empirical_table):
        return table
    return empirical_table(table)
