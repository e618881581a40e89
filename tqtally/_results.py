"""
_results.py
===========
Tally types and the helpers that shape pairwise tallies into scalars,
matrices and tensors.

Categories (Estabrook 1985; A–E in Brodal et al. 2013):

  index  name  meaning
  0      s     resolved the same way in both trees
  1      d     resolved differently in both trees
  2      r1    resolved in tree 1 only
  3      r2    resolved in tree 2 only
  4      u     unresolved in both trees
"""

import enum
from typing import NamedTuple, Tuple

import numpy as np


SAME, DIFFERENT, RESOLVED_FIRST, RESOLVED_SECOND, UNRESOLVED = range(5)
CATEGORY_NAMES = ("s", "d", "r1", "r2", "u")
AGREEMENT_NAMES = ("A", "E")

# CATEGORY_TABLE[code1 + 1, code2 + 1] -> category, for resolution codes
# -1 (unresolved) and 0..2 (pairing / outgroup).  Shared by quartets and
# triplets, which both have three resolutions.
CATEGORY_TABLE = np.array(
    [
        [UNRESOLVED, RESOLVED_SECOND, RESOLVED_SECOND, RESOLVED_SECOND],
        [RESOLVED_FIRST, SAME, DIFFERENT, DIFFERENT],
        [RESOLVED_FIRST, DIFFERENT, SAME, DIFFERENT],
        [RESOLVED_FIRST, DIFFERENT, DIFFERENT, SAME],
    ],
    dtype=np.int8,
)

_CONVENTIONS = ("symmetric", "resolved")


def check_convention(convention: str) -> str:
    """Return *convention* if it names a distance convention, else raise ValueError."""
    if convention not in _CONVENTIONS:
        raise ValueError(
            f"Unknown distance convention {convention!r}; "
            f"expected one of {', '.join(_CONVENTIONS)}."
        )
    return convention


class Tally(NamedTuple):
    """Five-category agreement count for one ordered pair of trees."""

    s: int
    d: int
    r1: int
    r2: int
    u: int

    @property
    def total(self) -> int:
        return self.s + self.d + self.r1 + self.r2 + self.u

    @property
    def distance(self) -> int:
        """Subsets not resolved identically: d + r1 + r2."""
        return self.d + self.r1 + self.r2

    @property
    def agreement(self) -> Tuple[int, int]:
        """(A, E): resolved alike, unresolved in both."""
        return (self.s, self.u)

    def distance_by(self, convention: str = "symmetric") -> int:
        """
        Distance under *convention*: 'symmetric' gives d + r1 + r2,
        'resolved' counts only subsets resolved differently in both (d).
        """
        if convention == "symmetric":
            return self.distance
        check_convention(convention)
        return self.d

    def swapped(self):
        """The tally of the reversed pair (r1 and r2 exchanged)."""
        return type(self)(self.s, self.d, self.r2, self.r1, self.u)

    def as_array(self) -> np.ndarray:
        return np.array(self, dtype=np.int64)


class QuartetTally(Tally):
    """Tally over the C(n, 4) quartets of the shared leaf set."""

    __slots__ = ()


class TripletTally(Tally):
    """Tally over the C(n, 3) rooted triplets of the shared leaf set."""

    __slots__ = ()


class Measure(enum.Enum):
    """What is compared: unrooted quartets or rooted triplets."""

    QUARTET = 4
    TRIPLET = 3

    @property
    def size(self) -> int:
        """Leaves per compared subset."""
        return self.value

    @property
    def tally_type(self):
        return QuartetTally if self is Measure.QUARTET else TripletTally


# ======================================================================== #
# Tensor helpers                                                            #
# ======================================================================== #


def mirror_upper(tensor: np.ndarray) -> np.ndarray:
    """
    Fill the strict lower triangle of a k×k×5 tally tensor from the upper
    one, exchanging r1 and r2.  Works in place and returns *tensor*.
    """
    k = tensor.shape[0]
    lower_i, lower_j = np.tril_indices(k, -1)
    upper = tensor[lower_j, lower_i]
    tensor[lower_i, lower_j] = upper[:, [SAME, DIFFERENT, RESOLVED_SECOND,
                                         RESOLVED_FIRST, UNRESOLVED]]
    return tensor


def distance_matrix(tensor: np.ndarray, convention: str = "symmetric") -> np.ndarray:
    """Distances from a (..., 5) tally array; see ``Tally.distance_by``."""
    if convention == "symmetric":
        return (tensor[..., DIFFERENT] + tensor[..., RESOLVED_FIRST]
                + tensor[..., RESOLVED_SECOND])
    check_convention(convention)
    return tensor[..., DIFFERENT].copy()


def agreement_tensor(tensor: np.ndarray) -> np.ndarray:
    """(..., 2) array of (A, E) from a (..., 5) tally array."""
    return tensor[..., [SAME, UNRESOLVED]].copy()


def matching_table(tallies: np.ndarray) -> np.ndarray:
    """
    6 × m table with rows Q, s, d, r1, r2, u from an m × 5 tally array,
    where Q is the number of subsets compared.
    """
    tallies = np.asarray(tallies, dtype=np.int64)
    out = np.empty((6, tallies.shape[0]), dtype=np.int64)
    out[0] = tallies.sum(axis=1)
    out[1:] = tallies.T
    return out
