"""
_distance.py
============
Pairwise quartet and triplet functions on two trees.

Trees may be given as ``Tree`` objects, Newick strings or prebuilt
``Classifier`` objects.  The second tree is re-indexed to the leaf-ID order
of the first, so two trees over the same labels are always comparable.
Pass a ``ClassifierCache`` to reuse classifiers across calls.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np

from tqtally._aggregate import Strategy, check_compatible, compare
from tqtally._cache import ClassifierCache
from tqtally._classifier import Classifier
from tqtally._errors import TipCountMismatchError
from tqtally._forest import as_tree
from tqtally._results import (
    Measure,
    QuartetTally,
    TripletTally,
    check_convention,
    matching_table,
)
from tqtally._tree import Tree


TreeInput = Union[Tree, str, Classifier]
StrategyInput = Optional[Union[Strategy, str]]


def _as_classifier(tree, cache, taxa=None) -> Classifier:
    if isinstance(tree, Classifier):
        return tree
    tree = as_tree(tree, taxa=taxa)
    if cache is None:
        return Classifier(tree)
    return cache.get(tree)


def _classifier_pair(t1, t2, cache, measure) -> Tuple[Classifier, Classifier]:
    """Validate both inputs, then build (or fetch) their classifiers."""
    same = t2 is t1
    if not isinstance(t1, Classifier):
        t1 = as_tree(t1)
    if same:
        t2 = t1
    elif not isinstance(t2, Classifier):
        t2 = as_tree(t2, taxa=t1.taxa)
    check_compatible(t1, t2, measure)

    c1 = _as_classifier(t1, cache)
    c2 = c1 if t2 is t1 else _as_classifier(t2, cache)
    return c1, c2


# ======================================================================== #
# Quartets                                                                  #
# ======================================================================== #


def quartet_tally(
    t1: TreeInput,
    t2: TreeInput,
    strategy: StrategyInput = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> QuartetTally:
    """
    Five-category quartet tally of *t1* against *t2*.

    Parameters
    ----------
    t1, t2 : Tree, str or Classifier
    strategy : Strategy or str, optional
    backend : str, default 'best'
    cache : ClassifierCache, optional

    Returns
    -------
    QuartetTally
        ``(s, d, r1, r2, u)``; r1 counts quartets resolved in *t1* only.

    Examples
    --------
    >>> quartet_tally('((A,B),(C,D));', '((A,C),(B,D));')
    QuartetTally(s=0, d=1, r1=0, r2=0, u=0)
    """
    c1, c2 = _classifier_pair(t1, t2, cache, Measure.QUARTET)
    return compare(c1, c2, Measure.QUARTET, strategy, backend)


def quartet_distance(
    t1: TreeInput,
    t2: TreeInput,
    convention: str = "symmetric",
    strategy: StrategyInput = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> int:
    """
    Quartet distance: d + r1 + r2 ('symmetric') or d ('resolved').
    For bifurcating trees both equal the number of differing quartets.
    """
    check_convention(convention)
    return quartet_tally(t1, t2, strategy, backend, cache).distance_by(convention)


def quartet_agreement(
    t1: TreeInput,
    t2: TreeInput,
    strategy: StrategyInput = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> Tuple[int, int]:
    """(A, E): quartets resolved alike, and unresolved in both trees."""
    return quartet_tally(t1, t2, strategy, backend, cache).agreement


def matching_quartets(
    trees: Sequence[TreeInput],
    cf: Optional[TreeInput] = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> np.ndarray:
    """
    Compare a reference tree against each tree of *trees*.

    The reference is *cf* when given, otherwise the first tree of *trees*
    (whose column then reports a perfect self match).

    Returns
    -------
    int64 [6, m]
        Rows Q, s, d, r1, r2, u; one column per tree of *trees*.  r1 counts
        quartets resolved in the reference only.

    Raises
    ------
    TipCountMismatchError  trees differ in their number of tips.
    """
    trees = list(trees)
    if cf is None:
        if not trees:
            raise ValueError("matching_quartets needs at least one tree.")
        cf = trees[0]
    if cache is None:
        cache = ClassifierCache()

    reference = cf if isinstance(cf, Classifier) else as_tree(cf)
    others = []
    for col, tree in enumerate(trees):
        if tree is cf:
            others.append(reference)
            continue
        other = tree if isinstance(tree, Classifier) else as_tree(tree)
        if other.n_leaves != reference.n_leaves:
            raise TipCountMismatchError(
                f"All trees must have the same number of tips: tree {col} "
                f"has {other.n_leaves}, the reference has {reference.n_leaves}."
            )
        if isinstance(other, Tree):
            other = other.with_taxa(reference.taxa)
        check_compatible(reference, other, Measure.QUARTET)
        others.append(other)

    reference = _as_classifier(reference, cache)
    tallies = np.zeros((len(others), 5), dtype=np.int64)
    for col, other in enumerate(others):
        other = _as_classifier(other, cache)
        tallies[col] = compare(reference, other, Measure.QUARTET, backend=backend)
    return matching_table(tallies)


# ======================================================================== #
# Triplets                                                                  #
# ======================================================================== #


def triplet_tally(
    t1: TreeInput,
    t2: TreeInput,
    strategy: StrategyInput = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> TripletTally:
    """Five-category rooted-triplet tally of *t1* against *t2*."""
    c1, c2 = _classifier_pair(t1, t2, cache, Measure.TRIPLET)
    return compare(c1, c2, Measure.TRIPLET, strategy, backend)


def triplet_distance(
    t1: TreeInput,
    t2: TreeInput,
    convention: str = "symmetric",
    strategy: StrategyInput = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> int:
    check_convention(convention)
    return triplet_tally(t1, t2, strategy, backend, cache).distance_by(convention)


def triplet_agreement(
    t1: TreeInput,
    t2: TreeInput,
    strategy: StrategyInput = None,
    backend: str = "best",
    cache: Optional[ClassifierCache] = None,
) -> Tuple[int, int]:
    return triplet_tally(t1, t2, strategy, backend, cache).agreement
