"""
_classifier.py
==============
Per-tree quartet and triplet classifier.

A ``Classifier`` bundles everything about one tree that pairwise
comparisons need, computed once:

* the tree's Euler-tour LCA structure (from ``Tree``),
* its cluster intervals (``SplitStructure``),
* its heavy-path layout (``HeavyPaths``),
* the number of resolved and unresolved quartets and triplets.

Single subsets are classified in O(1) from LCA depths; whole trees are
compared through the counting kernels in ``_aggregate``.
"""

import logging
from math import comb
from typing import Optional

import numpy as np

from tqtally._backend import effective_backend, kernel_set
from tqtally._cpu_kernels import _quartet_code_nb, _star_counts_nb, _triplet_code_nb
from tqtally._errors import DuplicateLeafError, LeafSetMismatchError
from tqtally._paths import HeavyPaths
from tqtally._results import Measure
from tqtally._splits import SplitStructure
from tqtally._tree import Tree
from tqtally._utils import validate_leaf_tuple


logger = logging.getLogger(__name__)


class Classifier:
    """
    Resolution index for one tree.

    Parameters
    ----------
    tree : Tree

    Attributes
    ----------
    tree                : Tree
    splits              : SplitStructure
    paths               : HeavyPaths
    n_leaves            : int
    resolved_quartets   : int   Quartets with a pairing in this tree.
    unresolved_quartets : int   Quartets on a polytomy (star).
    resolved_triplets   : int   Rooted triplets with an outgroup.
    unresolved_triplets : int   Triplets on a polytomy.
    max_branches        : int   Largest number of branches around a node
                                (children plus the complement).
    """

    def __init__(self, tree: Tree) -> None:
        self.tree = tree
        self.splits = SplitStructure(tree)
        self.paths = HeavyPaths(tree, self.splits)
        self.n_leaves: int = tree.n_leaves
        self.max_branches: int = tree.max_children + 1

        quartet_stars, triplet_stars = _star_counts_nb(
            self.splits.internal_postorder,
            tree.child_offsets,
            tree.children,
            self.splits.cluster_size,
            tree.n_leaves,
        )
        n = tree.n_leaves
        self.unresolved_quartets: int = int(quartet_stars)
        self.resolved_quartets: int = comb(n, 4) - self.unresolved_quartets
        self.unresolved_triplets: int = int(triplet_stars)
        self.resolved_triplets: int = comb(n, 3) - self.unresolved_triplets

        self._binary = {
            Measure.QUARTET: tree.is_bifurcating(rooted=False),
            Measure.TRIPLET: tree.is_bifurcating(rooted=True),
        }

        logger.debug(
            "Classifier built: %d leaves, %d internal nodes, "
            "%d/%d quartets resolved",
            n,
            self.splits.internal_postorder.shape[0],
            self.resolved_quartets,
            comb(n, 4),
        )

    @property
    def taxa(self):
        return self.tree.taxa

    def __repr__(self) -> str:
        return f"Classifier({self.tree!r})"

    def is_binary(self, measure: Measure = Measure.QUARTET) -> bool:
        """
        True if the tree is fully resolved for *measure*: a trifurcating
        root counts as binary for quartets, not for triplets.
        """
        return self._binary[measure]

    def resolved(self, measure: Measure) -> int:
        if measure is Measure.QUARTET:
            return self.resolved_quartets
        return self.resolved_triplets

    def unresolved(self, measure: Measure) -> int:
        if measure is Measure.QUARTET:
            return self.unresolved_quartets
        return self.unresolved_triplets

    # ================================================================== #
    # Single-subset queries                                                #
    # ================================================================== #

    def quartet(self, a, b, c, d) -> int:
        """
        Resolution code of the quartet {a, b, c, d}.

        Parameters
        ----------
        a, b, c, d : int | str   Leaf IDs or leaf labels, pairwise distinct.

        Returns
        -------
        int
            -1 if unresolved, else 0, 1 or 2 for the pairings
            (n0,n1)|(n2,n3), (n0,n2)|(n1,n3), (n0,n3)|(n1,n2) of the leaf
            IDs sorted ascending.

        Raises
        ------
        DuplicateLeafError     repeated leaves.
        LeafSetMismatchError   unknown label or leaf ID out of range.
        """
        n0, n1, n2, n3 = self._resolve_leaves((a, b, c, d), 4)
        t = self.tree
        return int(_quartet_code_nb(
            t.leaf_node[n0], t.leaf_node[n1], t.leaf_node[n2], t.leaf_node[n3],
            t.first_occurrence, t.depth, t.sparse_table, t.euler_depth,
            t.log2_table, t.euler_tour,
        ))

    def triplet(self, a, b, c) -> int:
        """
        Resolution code of the rooted triplet {a, b, c}: -1 if unresolved,
        else the position (0, 1, 2) of the outgroup among the sorted leaf IDs.
        """
        n0, n1, n2 = self._resolve_leaves((a, b, c), 3)
        t = self.tree
        return int(_triplet_code_nb(
            t.leaf_node[n0], t.leaf_node[n1], t.leaf_node[n2],
            t.first_occurrence, t.depth, t.sparse_table, t.euler_depth,
            t.log2_table, t.euler_tour,
        ))

    def quartet_topology(self, a, b, c, d) -> Optional[frozenset]:
        """
        Return the quartet's pairing as a ``frozenset`` of two ``frozenset``
        pairs, or ``None`` if the tree leaves it unresolved.

        The element type mirrors the input: labels when all four inputs are
        ``str``, leaf IDs otherwise.
        """
        code = self.quartet(a, b, c, d)
        if code < 0:
            return None
        n = self._resolve_leaves((a, b, c, d), 4)
        partner = n[code + 1]
        rest = [x for x in n[1:] if x != partner]
        pairs = ((n[0], partner), tuple(rest))
        if all(isinstance(x, str) for x in (a, b, c, d)):
            taxa = self.tree.taxa
            pairs = tuple(tuple(taxa[i] for i in pair) for pair in pairs)
        return frozenset(frozenset(pair) for pair in pairs)

    def triplet_topology(self, a, b, c):
        """
        Return ``(frozenset({x, y}), z)`` for the rooted triplet xy|z, or
        ``None`` if unresolved.  Labels or leaf IDs, as for
        ``quartet_topology``.
        """
        code = self.triplet(a, b, c)
        if code < 0:
            return None
        n = self._resolve_leaves((a, b, c), 3)
        if all(isinstance(x, str) for x in (a, b, c)):
            n = [self.tree.taxa[i] for i in n]
        outgroup = n[code]
        cherry = frozenset(x for i, x in enumerate(n) if i != code)
        return cherry, outgroup

    # ================================================================== #
    # Batch queries                                                        #
    # ================================================================== #

    def quartets(self, leaf_sets, backend: str = "best") -> np.ndarray:
        """
        Resolution codes for many quartets at once.

        Parameters
        ----------
        leaf_sets : array-like of int, shape (m, 4)
            Leaf IDs; each row is sorted internally before classification,
            so codes refer to the ascending order of each row.
        backend : str, default 'best'

        Returns
        -------
        int8 [m]
        """
        return self._classify_many(leaf_sets, 4, "classify_quartets", backend)

    def triplets(self, leaf_sets, backend: str = "best") -> np.ndarray:
        """Resolution codes for many triplets; see ``quartets``."""
        return self._classify_many(leaf_sets, 3, "classify_triplets", backend)

    # ================================================================== #
    # Private                                                              #
    # ================================================================== #

    def _classify_many(self, leaf_sets, size, kernel_name, backend) -> np.ndarray:
        arr = np.asarray(leaf_sets, dtype=np.int64)
        if arr.ndim != 2 or arr.shape[1] != size:
            raise DuplicateLeafError(
                f"Expected an (m, {size}) array of leaf IDs, got shape {arr.shape}."
            )
        arr = np.sort(arr, axis=1)
        if arr.shape[0] > 0:
            if arr.min() < 0 or arr.max() >= self.n_leaves:
                raise LeafSetMismatchError(
                    f"Leaf IDs must lie in [0, {self.n_leaves})."
                )
            if np.any(arr[:, 1:] == arr[:, :-1]):
                row = int(np.nonzero(np.any(arr[:, 1:] == arr[:, :-1], axis=1))[0][0])
                raise DuplicateLeafError(f"Row {row} repeats a leaf: {arr[row].tolist()}.")

        out = np.zeros(arr.shape[0], dtype=np.int8)
        kernel = kernel_set(effective_backend(backend))[kernel_name]
        t = self.tree
        kernel(
            arr, t.leaf_node, t.first_occurrence, t.depth, t.sparse_table,
            t.euler_depth, t.log2_table, t.euler_tour, out,
        )
        return out

    def _leaf(self, leaf) -> int:
        if isinstance(leaf, str):
            return self.tree.leaf_id(leaf)
        if isinstance(leaf, (int, np.integer)):
            leaf = int(leaf)
            if 0 <= leaf < self.n_leaves:
                return leaf
            raise LeafSetMismatchError(
                f"Leaf ID {leaf} outside [0, {self.n_leaves})."
            )
        raise TypeError(f"Leaves are given as int IDs or str labels, not {type(leaf)}.")

    def _resolve_leaves(self, leaves, size: int):
        if len(leaves) != size:
            raise DuplicateLeafError(f"Expected {size} leaves, got {len(leaves)}.")
        ids = [self._leaf(x) for x in leaves]
        if not validate_leaf_tuple(ids, size):
            raise DuplicateLeafError(f"Leaves {list(leaves)} are not pairwise distinct.")
        return sorted(ids)
