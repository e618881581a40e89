"""
_aggregate.py
=============
Pairwise aggregation: two classifiers in, one tally out.

Strategies
----------
The way a pair is counted is an explicit choice, made by ``select_strategy``
from the validated inputs or forced by the caller:

  BINARY     Colour counting over the heavy paths of tree 2 while tree 1
             is walked heavy child first; O(n log^3 n) time and
             O(n) join maps.  Both trees must be fully resolved for the
             measure, so every subset is resolved in both and
             ``d = C(n, k) - s``.
  GENERAL    Split counting of shared and different subsets over every pair
             of internal nodes; r1, r2 and u follow from the per-tree
             totals.  Works for any trees; needs an n x n intersection
             matrix.
  ENUMERATE  Classify every subset in both trees and look the pair of codes
             up in ``CATEGORY_TABLE``.  O(n^4) for quartets; the reference
             the counting strategies are tested against.

Validation (tip counts, leaf labels, minimum size, bifurcation when BINARY
is forced) happens before any kernel runs.
"""

import enum
import logging
from math import comb
from typing import Optional, Tuple, Union

import numpy as np

from tqtally._backend import effective_backend, kernel_set
from tqtally._classifier import Classifier
from tqtally._errors import (
    LeafSetMismatchError,
    MalformedTreeError,
    TipCountMismatchError,
    UnsupportedTopologyError,
)
from tqtally._logging import log_colour_count_footprint, log_intersection_footprint
from tqtally._results import CATEGORY_TABLE, Measure, Tally


logger = logging.getLogger(__name__)


class Strategy(enum.Enum):
    BINARY = "binary"
    GENERAL = "general"
    ENUMERATE = "enumerate"


def as_measure(measure: Union[Measure, str]) -> Measure:
    """Accept a ``Measure`` or its name ('quartet' / 'triplet')."""
    if isinstance(measure, Measure):
        return measure
    try:
        return Measure[str(measure).upper()]
    except KeyError:
        raise ValueError(
            f"Unknown measure {measure!r}; expected 'quartet' or 'triplet'."
        ) from None


# ======================================================================== #
# Validation and strategy choice                                            #
# ======================================================================== #


def check_compatible(c1, c2, measure: Measure) -> None:
    """
    Raise unless *c1* and *c2* can be compared under *measure*.

    Accepts ``Tree`` or ``Classifier`` objects (anything with ``n_leaves``
    and ``taxa``), so inputs can be checked before classifiers are built.

    Raises
    ------
    TipCountMismatchError   different numbers of leaves.
    LeafSetMismatchError    different labels, or the same labels with
                            different leaf-ID orderings.
    MalformedTreeError      fewer leaves than the measure needs.
    """
    if c1.n_leaves != c2.n_leaves:
        raise TipCountMismatchError(
            f"Trees have {c1.n_leaves} and {c2.n_leaves} tips; "
            "both must carry the same leaf set."
        )
    if c1.taxa != c2.taxa:
        if set(c1.taxa) == set(c2.taxa):
            raise LeafSetMismatchError(
                "Trees carry the same labels under different leaf-ID orders; "
                "build both with one shared taxa ordering."
            )
        only1 = sorted(set(c1.taxa) - set(c2.taxa))
        only2 = sorted(set(c2.taxa) - set(c1.taxa))
        raise LeafSetMismatchError(
            f"Leaf sets differ: {only1[:5]} only in tree 1, {only2[:5]} only in tree 2."
        )
    if c1.n_leaves < measure.size:
        raise MalformedTreeError(
            f"{measure.name.lower()} comparison needs at least {measure.size} "
            f"leaves; trees have {c1.n_leaves}."
        )


def select_strategy(c1: Classifier, c2: Classifier, measure: Measure) -> Strategy:
    """BINARY when both trees are fully resolved for *measure*, else GENERAL."""
    if c1.is_binary(measure) and c2.is_binary(measure):
        return Strategy.BINARY
    return Strategy.GENERAL


def _checked_strategy(strategy, c1, c2, measure) -> Strategy:
    if strategy is None:
        return select_strategy(c1, c2, measure)
    strategy = Strategy(strategy)
    if strategy is Strategy.BINARY:
        for label, clf in (("tree 1", c1), ("tree 2", c2)):
            if not clf.is_binary(measure):
                raise UnsupportedTopologyError(
                    f"Strategy.BINARY needs bifurcating trees but {label} is "
                    f"multifurcating for {measure.name.lower()}s; use "
                    "Strategy.GENERAL."
                )
    return strategy


# ======================================================================== #
# Public entry points                                                       #
# ======================================================================== #


def compare(
    c1: Classifier,
    c2: Classifier,
    measure: Union[Measure, str] = Measure.QUARTET,
    strategy: Optional[Union[Strategy, str]] = None,
    backend: str = "best",
) -> Tally:
    """
    Tally of *c1* against *c2*.

    Parameters
    ----------
    c1, c2 : Classifier
        Classifiers of two trees over the same ordered leaf set.
    measure : Measure or str, default Measure.QUARTET
    strategy : Strategy or str, optional
        Forced strategy; ``select_strategy`` decides when omitted.
    backend : str, default 'best'

    Returns
    -------
    QuartetTally or TripletTally
        ``(s, d, r1, r2, u)`` summing to C(n, 4) or C(n, 3).

    Raises
    ------
    TipCountMismatchError, LeafSetMismatchError, MalformedTreeError
        See ``check_compatible``.
    UnsupportedTopologyError
        Strategy.BINARY forced on a multifurcating tree.
    """
    measure = as_measure(measure)
    check_compatible(c1, c2, measure)
    strategy = _checked_strategy(strategy, c1, c2, measure)
    resolved_backend = effective_backend(backend)

    logger.debug(
        "compare(%s, strategy=%s, backend=%r)",
        measure.name.lower(),
        strategy.value,
        resolved_backend,
    )

    if c1 is c2 and strategy is not Strategy.ENUMERATE:
        return self_tally(c1, measure)

    kernels = kernel_set(resolved_backend)
    if strategy is Strategy.ENUMERATE:
        return _enumerate(c1, c2, measure, kernels)

    total = comb(c1.n_leaves, measure.size)
    if strategy is Strategy.BINARY:
        shared = _colour_count(c1, c2, measure, kernels)
        different = total - shared
    else:
        shared, different = _split_counts(c1, c2, measure, kernels)
    return _assemble(
        measure, total, c1.resolved(measure), c2.resolved(measure), shared, different
    )


def self_tally(clf: Classifier, measure: Union[Measure, str] = Measure.QUARTET) -> Tally:
    """
    Closed-form tally of a tree against itself: every resolved subset is
    shared, every unresolved one is unresolved in both.
    """
    measure = as_measure(measure)
    return measure.tally_type(
        clf.resolved(measure), 0, 0, 0, clf.unresolved(measure)
    )


def tally_from_agreement(
    agreement: Tuple[int, int],
    c1: Classifier,
    c2: Classifier,
    measure: Union[Measure, str] = Measure.QUARTET,
) -> Tally:
    """
    Expand an ``(A, E)`` agreement pair into the five-category tally.

    The pair determines the tally only when both trees are fully resolved
    and share their tip count; in every other case the full tally must come
    from ``compare``.

    Raises
    ------
    TipCountMismatchError     tip counts differ.
    UnsupportedTopologyError  either tree is multifurcating for *measure*.
    ValueError                (A, E) impossible for two binary trees.
    """
    measure = as_measure(measure)
    if c1.n_leaves != c2.n_leaves:
        raise TipCountMismatchError(
            f"Agreement expansion needs equal tip counts, got "
            f"{c1.n_leaves} and {c2.n_leaves}."
        )
    if not (c1.is_binary(measure) and c2.is_binary(measure)):
        raise UnsupportedTopologyError(
            "(A, E) determines the full tally only for bifurcating trees; "
            "compute the tally with compare() instead."
        )
    a, e = (int(x) for x in agreement)
    total = comb(c1.n_leaves, measure.size)
    if e != 0 or not 0 <= a <= total:
        raise ValueError(
            f"(A={a}, E={e}) is impossible for two bifurcating trees with "
            f"{c1.n_leaves} tips (expected E=0 and 0 <= A <= {total})."
        )
    return measure.tally_type(a, total - a, 0, 0, 0)


# ======================================================================== #
# Private                                                                   #
# ======================================================================== #


def _assemble(measure, total, resolved1, resolved2, shared, different) -> Tally:
    r1 = resolved1 - shared - different
    r2 = resolved2 - shared - different
    u = total - shared - different - r1 - r2
    return measure.tally_type(shared, different, r1, r2, u)


def _enumerate(c1, c2, measure, kernels) -> Tally:
    n = c1.n_leaves
    t1 = c1.tree
    t2 = c2.tree
    partial = np.zeros((n, 5), dtype=np.int64)
    name = "enumerate_quartets" if measure is Measure.QUARTET else "enumerate_triplets"
    kernels[name](
        n, CATEGORY_TABLE,
        t1.leaf_node, t1.first_occurrence, t1.depth, t1.sparse_table,
        t1.euler_depth, t1.log2_table, t1.euler_tour,
        t2.leaf_node, t2.first_occurrence, t2.depth, t2.sparse_table,
        t2.euler_depth, t2.log2_table, t2.euler_tour,
        partial,
    )
    return measure.tally_type(*(int(x) for x in partial.sum(axis=0)))


def _split_counts(c1, c2, measure, kernels):
    """Return (shared, different) from the split-counting kernels."""
    t1, s1 = c1.tree, c1.splits
    t2, s2 = c2.tree, c2.splits
    n_rows = int(s1.internal_postorder.shape[0])

    isect = np.zeros((n_rows, t2.n_nodes), dtype=np.int32)
    log_intersection_footprint(n_rows, t2.n_nodes, isect.itemsize)
    kernels["cluster_intersections"](
        s1.internal_postorder, t1.child_offsets, t1.children,
        t1.node_leaf, s1.internal_rank,
        t2.leaf_node, t2.parent,
        isect,
    )

    shared = np.zeros(n_rows, dtype=np.int64)
    different = np.zeros(n_rows, dtype=np.int64)
    if measure is Measure.QUARTET:
        kernels["quartet_split_counts"](
            s1.internal_postorder, t1.child_offsets, t1.children,
            s1.cluster_size, s1.internal_rank, t1.node_leaf,
            s2.internal_postorder, t2.child_offsets, t2.children,
            s2.cluster_size, s2.leaf_position, s2.cluster_start, s2.cluster_stop,
            isect, c1.n_leaves, c1.max_branches, c2.max_branches,
            shared, different,
        )
        # Each shared quartet is claimed twice, each different one four times.
        return int(shared.sum()) // 2, int(different.sum()) // 4

    kernels["triplet_split_counts"](
        s1.internal_postorder, t1.child_offsets, t1.children,
        s1.internal_rank, t1.node_leaf,
        s2.internal_postorder, t2.child_offsets, t2.children,
        s2.leaf_position, s2.cluster_start, s2.cluster_stop,
        isect, t1.max_children, t2.max_children,
        shared, different,
    )
    return int(shared.sum()), int(different.sum())


# ---- Colour counting ------------------------------------------------------ #
#
# A layout is (dim, terms, colour_index).  A state vector holds pattern
# counts over a cluster of tree 2: index 0 is the constant 1, the last
# index is the count read at the root.  A term row (o, i, j) adds
# x[i] * a[j] to entry o when a light child with state a joins a node with
# state x; with i, j < o the join maps stay lower triangular.


def _both(terms, o, i, j):
    terms.append((o, i, j))
    if i != j:
        terms.append((o, j, i))


def _quartet_layout():
    """
    Colours 0, 1, 2 are the three branches around a node of tree 1.  The
    counted pattern is a quartet xy|zw of tree 2 where x, y carry two
    different colours and z, w both carry the third; every quartet resolved
    alike in both trees is counted at the two ends of its inner path.

    Entries: leaves n_c, leaf pairs P_cd, rooted triplets T[cd|o] and the
    quartet count Q.
    """
    n = {c: 1 + c for c in range(3)}
    pairs = [(c, d) for c in range(3) for d in range(c, 3)]
    p = {pair: 4 + i for i, pair in enumerate(pairs)}
    t = {}
    for k in range(3):
        i, j = (c for c in range(3) if c != k)
        for key in (((i, j), k), ((k, k), i), ((k, k), j)):
            t[key] = 4 + len(pairs) + len(t)
    q = 4 + len(pairs) + len(t)

    terms = []
    for (c, d), idx in p.items():
        _both(terms, idx, n[c], n[d])
    for ((c, d), o), idx in t.items():
        _both(terms, idx, p[(c, d)], n[o])
    for k in range(3):
        i, j = (c for c in range(3) if c != k)
        _both(terms, q, t[((i, j), k)], n[k])
        _both(terms, q, t[((k, k), i)], n[j])
        _both(terms, q, t[((k, k), j)], n[i])
        _both(terms, q, p[(i, j)], p[(k, k)])
    return q + 1, np.array(terms, dtype=np.int64), np.array([1, 2, 3], dtype=np.int64)


def _triplet_layout():
    """
    Colour 1 is the heavy child of a node of tree 1, colour 2 a light
    child, colour 0 is ignored.  The counted pattern is a rooted triplet
    ab|c of tree 2 with a, b one colour and c the other; every triplet
    resolved alike in both trees is counted once, at its top node in tree 1.

    Entries: n1, n2, P11, P22, T.
    """
    terms = [(3, 1, 1), (4, 2, 2)]
    _both(terms, 5, 3, 2)
    _both(terms, 5, 4, 1)
    return 6, np.array(terms, dtype=np.int64), np.array([0, 1, 2], dtype=np.int64)


_LAYOUTS = {
    Measure.QUARTET: _quartet_layout(),
    Measure.TRIPLET: _triplet_layout(),
}


def _colour_count(c1, c2, measure, kernels) -> int:
    """Shared count of two bifurcating trees."""
    dim, terms, colour_index = _LAYOUTS[measure]
    t1, s1, h1 = c1.tree, c1.splits, c1.paths
    t2, h2 = c2.tree, c2.paths

    seg = np.zeros((max(h2.n_segments, 1), dim, dim), dtype=np.int64)
    log_colour_count_footprint(h2.n_segments, dim, seg.itemsize)
    total = kernels["colour_count"](
        terms, colour_index,
        t1.child_offsets, t1.children, h1.heavy, t1.node_leaf, t1.root,
        s1.leaf_order, s1.cluster_start, s1.cluster_stop,
        t2.parent, t2.child_offsets, t2.children, h2.heavy,
        t2.leaf_node, t2.node_leaf, t2.root,
        h2.node_path, h2.node_pos, h2.path_start, h2.path_nodes,
        h2.path_head, h2.path_bottom, h2.seg_base,
        np.ones(c1.n_leaves, dtype=np.int64),
        np.zeros((t2.n_nodes, dim), dtype=np.int64),
        seg,
        np.zeros((2, dim, dim), dtype=np.int64),
        np.zeros((64, 2), dtype=np.int64),
        np.zeros((128, 4), dtype=np.int64),
        np.zeros(dim, dtype=np.int64),
        np.zeros((3 * t1.n_nodes + 3, 2), dtype=np.int64),
    )
    if measure is Measure.QUARTET:
        return int(total) // 2
    return int(total)
