"""
_forest.py
==========
Batch distance engine over a collection of trees on one shared leaf set.

Public API
----------
  Forest(trees, cache=None)
      Constructor.  Accepts ``Tree`` objects or Newick strings.  Validates
      tip counts and leaf labels of every tree against the first one before
      anything is built, then re-indexes all trees to the first tree's
      ``taxa`` so that leaf IDs mean the same thing everywhere.

  .tally(i, j)             -> QuartetTally | TripletTally
  .all_pairs()             -> int64 [k, k, 5]
  .distances(convention)   -> int64 [k, k]
  .agreements()            -> int64 [k, k, 2]     (A, E)
  .one_to_many(reference)  -> int64 [k, 5]
  .pairs(other)            -> int64 [k, 5]
  .build_classifiers()     -> list[Classifier]

Every batch operation takes ``measure``, ``strategy``, ``backend`` and
``n_workers`` keyword arguments.

Threading
---------
With ``n_workers > 1`` the classifiers of all trees are built first (the
synchronisation barrier), then pairwise comparisons are fanned out over a
``concurrent.futures.ThreadPoolExecutor``.  Workers run the 'cpu-serial'
kernels, which release the GIL; 'cpu-parallel' is not used from worker
threads.  Results land in a local array that is returned only when every
comparison succeeded, so a failure leaves no partial output.

Logging
-------
On first import the module logs system, numba and backend status at INFO
level and routes NumbaPerformanceWarning through the logger.  Silence it in
the standard way:

    import logging
    logging.getLogger('tqtally').setLevel(logging.WARNING)

or with ``tqtally.quiet()``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence, Union

import numpy as np

from tqtally._aggregate import Strategy, as_measure, check_compatible, compare
from tqtally._backend import effective_backend, get_available_backends
from tqtally._cache import ClassifierCache
from tqtally._classifier import Classifier
from tqtally._errors import LeafSetMismatchError, TipCountMismatchError
from tqtally._logging import (
    compute_memory_footprint,
    install_numba_warning_filter,
    log_backend_availability,
    log_batch_plan,
    log_classifiers_ready,
    log_forest_statistics,
    log_leaf_set_mismatch,
    log_optimization_status,
)
from tqtally._results import (
    Measure,
    Tally,
    agreement_tensor,
    check_convention,
    distance_matrix,
    mirror_upper,
)
from tqtally._tree import Tree


logger = logging.getLogger(__name__)


# Log system info and backend availability on module import
log_optimization_status()
log_backend_availability(get_available_backends())
install_numba_warning_filter()


TreeLike = Union[Tree, str]


def as_tree(tree: TreeLike, taxa: Optional[Sequence[str]] = None) -> Tree:
    """Return *tree* as a ``Tree``, parsing Newick strings."""
    if isinstance(tree, Tree):
        return tree if taxa is None else tree.with_taxa(taxa)
    if isinstance(tree, str):
        return Tree.from_newick(tree, taxa=taxa)
    raise TypeError(f"Expected a Tree or a Newick string, got {type(tree)}.")


def _check_workers(n_workers: Optional[int]) -> int:
    if n_workers is None:
        return 1
    n_workers = int(n_workers)
    if n_workers < 1:
        raise ValueError(f"n_workers must be a positive integer, got {n_workers}.")
    return n_workers


class Forest:
    """
    An immutable collection of trees over one shared, ordered leaf set.

    Parameters
    ----------
    trees : sequence of Tree or str
        At least one tree.  All trees must carry the same leaf labels.
    cache : ClassifierCache, optional
        Cache to take classifiers from and store them in.  Pass the same
        cache to several forests (or to the pairwise functions) to build
        each tree's classifier once.  A private cache is created if omitted.
        Only the forest's own trees are stored; reference and line-by-line
        trees passed to ``one_to_many`` or ``pairs`` are classified afresh
        on every call.

    Attributes
    ----------
    trees   : list[Tree]    re-indexed to ``taxa``
    taxa    : tuple[str]    leaf labels in leaf-ID order (from tree 0)
    n_trees : int
    n_taxa  : int
    cache   : ClassifierCache

    Raises
    ------
    ValueError             *trees* is empty.
    TipCountMismatchError  a tree has a different number of leaves.
    LeafSetMismatchError   a tree has different leaf labels.
    MalformedTreeError     a tree fails structural validation.

    Examples
    --------
    >>> f = Forest(['((A,B),(C,D));', '((A,C),(B,D));'])
    >>> f.tally(0, 1)
    QuartetTally(s=0, d=1, r1=0, r2=0, u=0)
    >>> f.distances()
    array([[0, 1],
           [1, 0]])
    """

    def __init__(
        self,
        trees: Sequence[TreeLike],
        cache: Optional[ClassifierCache] = None,
    ) -> None:
        parsed = [as_tree(t) for t in trees]
        if not parsed:
            raise ValueError("A Forest needs at least one tree.")

        reference = parsed[0].taxa
        for i, tree in enumerate(parsed[1:], start=1):
            if tree.n_leaves != len(reference):
                log_leaf_set_mismatch(i, reference, tree.taxa)
                raise TipCountMismatchError(
                    f"Tree {i} has {tree.n_leaves} tips, tree 0 has {len(reference)}."
                )
            if tree.taxa != reference and set(tree.taxa) != set(reference):
                log_leaf_set_mismatch(i, reference, tree.taxa)
                raise LeafSetMismatchError(
                    f"Tree {i} does not carry the leaf labels of tree 0."
                )

        self.trees: List[Tree] = [t.with_taxa(reference) for t in parsed]
        self.taxa = reference
        self.n_trees: int = len(self.trees)
        self.n_taxa: int = len(reference)
        self.cache = cache if cache is not None else ClassifierCache()

        log_forest_statistics(
            self.n_trees,
            self.n_taxa,
            [i for i, t in enumerate(self.trees) if not t.is_bifurcating(rooted=False)],
        )

    def __len__(self) -> int:
        return self.n_trees

    def __getitem__(self, i: int) -> Tree:
        return self.trees[i]

    def __repr__(self) -> str:
        return f"Forest(n_trees={self.n_trees}, n_taxa={self.n_taxa})"

    # ================================================================== #
    # Classifiers                                                          #
    # ================================================================== #

    def classifier(self, i: int) -> Classifier:
        """Classifier of tree *i*, from the cache."""
        return self.cache.get(self.trees[i])

    def build_classifiers(self, n_workers: Optional[int] = None) -> List[Classifier]:
        """
        Make sure every tree has a classifier; return them in tree order.

        This is the barrier in front of every batch: no comparison starts
        before all classifiers exist.

        Parameters
        ----------
        n_workers : int, optional
            Threads used to build missing classifiers (default 1).
        """
        n_workers = _check_workers(n_workers)
        before = self.cache.n_built
        if n_workers == 1:
            classifiers = [self.cache.get(t) for t in self.trees]
        else:
            with ThreadPoolExecutor(max_workers=n_workers) as pool:
                classifiers = list(pool.map(self.cache.get, self.trees))
        log_classifiers_ready(
            self.n_trees,
            self.cache.n_built - before,
            compute_memory_footprint(classifiers),
        )
        return classifiers

    # ================================================================== #
    # Pairwise operations                                                  #
    # ================================================================== #

    def tally(
        self,
        i: int,
        j: int,
        measure: Union[Measure, str] = Measure.QUARTET,
        strategy: Optional[Union[Strategy, str]] = None,
        backend: str = "best",
    ) -> Tally:
        """Tally of tree *i* against tree *j* (r1 counts tree *i*)."""
        measure = as_measure(measure)
        check_compatible(self.trees[i], self.trees[j], measure)
        return compare(
            self.classifier(i), self.classifier(j), measure, strategy, backend
        )

    def all_pairs(
        self,
        measure: Union[Measure, str] = Measure.QUARTET,
        strategy: Optional[Union[Strategy, str]] = None,
        backend: str = "best",
        n_workers: Optional[int] = None,
    ) -> np.ndarray:
        """
        Tallies of every ordered pair of trees.

        Only the strict upper triangle is computed; the diagonal comes from
        the closed form for self comparison and the lower triangle mirrors
        the upper one with r1 and r2 exchanged.

        Returns
        -------
        int64 [k, k, 5]
            ``out[i, j]`` is the (s, d, r1, r2, u) tally of tree i vs tree j.
        """
        measure = as_measure(measure)
        n_workers = _check_workers(n_workers)
        check_compatible(self.trees[0], self.trees[0], measure)
        classifiers = self.build_classifiers(n_workers)

        k = self.n_trees
        iu, ju = np.triu_indices(k, 1)
        jobs = [(classifiers[i], classifiers[j]) for i, j in zip(iu, ju)]
        jobs.extend((clf, clf) for clf in classifiers)

        results = self._compare_many(
            "all_pairs", jobs, measure, strategy, backend, n_workers
        )

        out = np.zeros((k, k, 5), dtype=np.int64)
        n_upper = iu.shape[0]
        out[iu, ju] = results[:n_upper]
        diag = np.arange(k)
        out[diag, diag] = results[n_upper:]
        return mirror_upper(out)

    def distances(
        self,
        measure: Union[Measure, str] = Measure.QUARTET,
        convention: str = "symmetric",
        strategy: Optional[Union[Strategy, str]] = None,
        backend: str = "best",
        n_workers: Optional[int] = None,
    ) -> np.ndarray:
        """
        All-pairs distance matrix, int64 [k, k].

        *convention* 'symmetric' counts d + r1 + r2; 'resolved' counts d.
        """
        check_convention(convention)
        return distance_matrix(
            self.all_pairs(measure, strategy, backend, n_workers), convention
        )

    def agreements(
        self,
        measure: Union[Measure, str] = Measure.QUARTET,
        strategy: Optional[Union[Strategy, str]] = None,
        backend: str = "best",
        n_workers: Optional[int] = None,
    ) -> np.ndarray:
        """All-pairs (A, E) tensor, int64 [k, k, 2]."""
        return agreement_tensor(self.all_pairs(measure, strategy, backend, n_workers))

    def one_to_many(
        self,
        reference: Union[TreeLike, int],
        measure: Union[Measure, str] = Measure.QUARTET,
        strategy: Optional[Union[Strategy, str]] = None,
        backend: str = "best",
        n_workers: Optional[int] = None,
    ) -> np.ndarray:
        """
        Tally of *reference* against every tree of the forest.

        Parameters
        ----------
        reference : Tree, str or int
            A tree on the forest's leaf set, a Newick string, or the index
            of a tree in this forest.

        Returns
        -------
        int64 [k, 5]
            Row i is the tally of *reference* vs tree i (r1 counts the
            reference).
        """
        measure = as_measure(measure)
        n_workers = _check_workers(n_workers)
        if isinstance(reference, (int, np.integer)):
            ref_tree = self.trees[int(reference)]
        else:
            ref_tree = as_tree(reference, taxa=self.taxa)
        check_compatible(ref_tree, self.trees[0], measure)

        classifiers = self.build_classifiers(n_workers)
        ref_clf = self._classifier_of(ref_tree)
        jobs = [(ref_clf, clf) for clf in classifiers]
        return self._compare_many(
            "one_to_many", jobs, measure, strategy, backend, n_workers
        )

    def pairs(
        self,
        other: Union["Forest", Sequence[TreeLike]],
        measure: Union[Measure, str] = Measure.QUARTET,
        strategy: Optional[Union[Strategy, str]] = None,
        backend: str = "best",
        n_workers: Optional[int] = None,
    ) -> np.ndarray:
        """
        Line-by-line tallies: tree i of this forest against tree i of *other*.

        Raises
        ------
        ValueError  *other* holds a different number of trees.

        Returns
        -------
        int64 [k, 5]
        """
        measure = as_measure(measure)
        n_workers = _check_workers(n_workers)
        other_trees = other.trees if isinstance(other, Forest) else list(other)
        if len(other_trees) != self.n_trees:
            raise ValueError(
                f"pairs() needs forests of equal length, got {self.n_trees} "
                f"and {len(other_trees)} trees."
            )
        other_trees = [as_tree(t, taxa=self.taxa) for t in other_trees]
        check_compatible(self.trees[0], self.trees[0], measure)

        classifiers = self.build_classifiers(n_workers)
        owner = other if isinstance(other, Forest) else None
        jobs = [
            (clf, self._classifier_of(tree, owner))
            for clf, tree in zip(classifiers, other_trees)
        ]
        return self._compare_many(
            "pairs", jobs, measure, strategy, backend, n_workers
        )

    # ================================================================== #
    # Private                                                              #
    # ================================================================== #

    def _classifier_of(self, tree: Tree, owner: Optional["Forest"] = None) -> Classifier:
        """
        Classifier for a tree handed to ``one_to_many`` or ``pairs``.

        Trees of this forest (or of *owner*) come from that forest's cache.
        Any other tree gets a classifier that is not cached, so a long-lived
        forest queried with many outside trees does not grow its cache.
        """
        for forest in (self, owner):
            if forest is not None and any(tree is t for t in forest.trees):
                return forest.cache.get(tree)
        return Classifier(tree)

    def _compare_many(
        self, operation, jobs, measure, strategy, backend, n_workers
    ) -> np.ndarray:
        """Run ``compare`` on every (c1, c2) job; return int64 [len(jobs), 5]."""
        resolved = effective_backend(backend)
        if n_workers > 1 and resolved == "cpu-parallel":
            resolved = "cpu-serial"
        log_batch_plan(operation, measure.name.lower(), len(jobs), n_workers, resolved)

        out = np.zeros((len(jobs), 5), dtype=np.int64)
        if n_workers == 1 or len(jobs) <= 1:
            for row, (c1, c2) in enumerate(jobs):
                out[row] = compare(c1, c2, measure, strategy, resolved)
            return out

        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            futures = {
                pool.submit(compare, c1, c2, measure, strategy, resolved): row
                for row, (c1, c2) in enumerate(jobs)
            }
            try:
                for future in as_completed(futures):
                    out[futures[future]] = future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return out
