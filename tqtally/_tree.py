"""
_tree.py
========
A single leaf-labelled tree represented as a set of parallel numpy arrays,
with O(1) LCA lookups via a sparse-table Range Minimum Query structure built
on the Eulerian tour.

Public API
----------
  Tree(parent, names, taxa=None)
      Constructor.  Validates the parent array and builds all structures.
  Tree.from_edges(edges, names, taxa=None)
  Tree.from_newick(newick_string, taxa=None)

  .with_taxa(taxa)
  .lca(u, v)
  .leaf_id(label)
  .is_leaf(node) / .children_of(node)
  .is_bifurcating(rooted=True)
  .to_newick()

Leaf identifiers
----------------
Node IDs are positions in the parent array and mean nothing outside one
tree.  Leaf IDs are positions in ``taxa``, the ordered tuple of leaf
labels, and are what the classifiers and kernels work with.  Two trees over
the same labels receive the same leaf IDs because ``taxa`` defaults to the
sorted label list; pass an explicit ordering to share someone else's.

Multifurcations
---------------
Internal nodes may have any number (>= 2) of children.  Nothing is
binarised: an unresolved node must stay unresolved for quartet and triplet
agreement to be counted correctly.
"""

import math
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from tqtally._errors import (
    LeafSetMismatchError,
    MalformedTreeError,
    TipCountMismatchError,
)
from tqtally._newick import parse_newick, write_newick


class Tree:
    """
    A rooted leaf-labelled tree with O(1) LCA queries.

    Attributes (all read-only after construction)
    ----------------------------------------------
    n_nodes      : int        Total number of nodes.
    n_leaves     : int        Number of leaf (taxon) nodes.
    root         : int        Node ID of the root.
    max_depth    : int        Maximum node depth (edge count from root).
    max_children : int        Largest number of children of any node.
    names        : list[str]  Leaf label for each node; '' for internal nodes.
    taxa         : tuple[str] Leaf labels in leaf-ID order.

    Arrays, tree structure
    -----------------------
    parent        : int32 [n_nodes]     Parent ID; -1 for root.
    child_offsets : int64 [n_nodes+1]   CSR offsets into ``children``.
    children      : int32 [n_nodes-1]   Child IDs grouped by parent, ascending.
    leaf_node     : int32 [n_leaves]    Node ID of each leaf ID.
    node_leaf     : int32 [n_nodes]     Leaf ID of each node; -1 for internal.

    Arrays, LCA / Euler tour
    -------------------------
    depth            : int32 [n_nodes]      Edge depth from root.
    euler_tour       : int32 [2N-1]         Euler tour node IDs.
    euler_depth      : int32 [2N-1]         Depth at each tour position.
    first_occurrence : int32 [n_nodes]      First tour index for each node.
    sparse_table     : int32 [LOG, 2N-1]    Sparse table (stores tour indices).
    log2_table       : int32 [2N]           floor(log2(i)) for i in [0, 2N-1].
    """

    # ================================================================== #
    # Construction                                                         #
    # ================================================================== #

    def __init__(
        self,
        parent: Sequence[int],
        names: Sequence[str],
        taxa: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Validate *parent* and *names* and build all tree and LCA structures.

        Parameters
        ----------
        parent : sequence of int
            Parent node ID for every node; exactly one entry is -1 (the root).
        names : sequence of str
            One label per node.  Leaves must carry a non-empty, unique label;
            labels on internal nodes are ignored.
        taxa : sequence of str, optional
            Leaf labels in the order that defines leaf IDs.  Defaults to the
            sorted leaf labels.

        Raises
        ------
        MalformedTreeError     structural validation failure.
        TipCountMismatchError  *taxa* has a different length than the leaf set.
        LeafSetMismatchError   *taxa* is not a permutation of the leaf labels.
        """
        self._build_structure(parent, names)
        self._assign_leaf_ids(taxa)
        self._build_lca_structures()

        self.n_nodes: int = int(self.parent.shape[0])
        self.n_leaves: int = int(self.leaf_node.shape[0])
        self.max_depth: int = int(np.max(self.depth))
        self.max_children: int = int(np.max(np.diff(self.child_offsets)))

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[Tuple[int, int]],
        names: Sequence[str],
        taxa: Optional[Sequence[str]] = None,
    ) -> "Tree":
        """
        Build a tree from ``(parent, child)`` node-ID pairs.

        The number of nodes is ``len(names)``; node IDs must lie in
        ``[0, len(names))``.
        """
        n_nodes = len(names)
        parent = np.full(n_nodes, -1, dtype=np.int64)
        for p, c in edges:
            p = int(p)
            c = int(c)
            if not (0 <= p < n_nodes and 0 <= c < n_nodes):
                raise MalformedTreeError(
                    f"Edge ({p}, {c}) refers to a node outside [0, {n_nodes})."
                )
            if parent[c] != -1:
                raise MalformedTreeError(
                    f"Node {c} has two parents ({parent[c]} and {p})."
                )
            parent[c] = p
        return cls(parent, names, taxa=taxa)

    @classmethod
    def from_newick(
        cls, newick_string: str, taxa: Optional[Sequence[str]] = None
    ) -> "Tree":
        """Parse *newick_string* (see ``_newick.parse_newick``) into a Tree."""
        parent, names = parse_newick(newick_string)
        return cls(parent, names, taxa=taxa)

    def with_taxa(self, taxa: Sequence[str]) -> "Tree":
        """Return the same topology with leaf IDs assigned in *taxa* order."""
        if tuple(taxa) == self.taxa:
            return self
        return Tree(self.parent, self.names, taxa=taxa)

    def __repr__(self) -> str:
        return f"Tree(n_leaves={self.n_leaves}, n_nodes={self.n_nodes})"

    # ================================================================== #
    # Public methods                                                       #
    # ================================================================== #

    def lca(self, u, v) -> int:
        """
        Return the node ID of the Lowest Common Ancestor of *u* and *v*.

        Parameters
        ----------
        u, v : int | str   Node IDs or leaf labels (resolved independently).

        Returns
        -------
        int   Node ID of the LCA.

        Complexity
        ----------
        O(1) per call.
        """
        u_id = self._resolve_node(u)
        v_id = self._resolve_node(v)

        if u_id == v_id:
            return u_id

        l = int(self.first_occurrence[u_id])
        r = int(self.first_occurrence[v_id])
        if l > r:
            l, r = r, l

        idx = Tree._rmq(l, r, self.sparse_table, self.euler_depth, self.log2_table)
        return int(self.euler_tour[idx])

    def leaf_id(self, label: str) -> int:
        """
        Return the leaf ID of *label*.

        Raises
        ------
        LeafSetMismatchError   if no leaf carries *label*.
        """
        try:
            return self._taxon_index[label]
        except KeyError:
            raise LeafSetMismatchError(
                f"No leaf labelled {label!r} in tree."
            ) from None

    def is_leaf(self, node: int) -> bool:
        return self.child_offsets[node + 1] == self.child_offsets[node]

    def children_of(self, node: int) -> np.ndarray:
        """Return the child node IDs of *node* (empty for leaves)."""
        return self.children[self.child_offsets[node] : self.child_offsets[node + 1]]

    def is_bifurcating(self, rooted: bool = True) -> bool:
        """
        True if every internal node has exactly two children.

        Parameters
        ----------
        rooted : bool, default True
            If False the tree is read as unrooted and a root with three
            children is also accepted (the usual way an unrooted binary
            tree is written down).
        """
        n_children = np.diff(self.child_offsets)
        internal = n_children > 0
        if not rooted and n_children[self.root] == 3:
            internal[self.root] = False
        return bool(np.all(n_children[internal] == 2))

    def to_newick(self) -> str:
        """Topology as a NEWICK string (no branch lengths)."""
        return write_newick(self)

    # ================================================================== #
    # Private instance methods                                             #
    # ================================================================== #

    def _build_structure(self, parent, names) -> None:
        """
        **Private.**  Validate the parent array and build the CSR children
        arrays.

        Populates
        ---------
        self.parent, self.child_offsets, self.children, self.root, self.names
        """
        parent = np.asarray(parent)
        if parent.ndim != 1 or parent.shape[0] == 0:
            raise MalformedTreeError("parent must be a non-empty 1-D sequence.")
        if not np.issubdtype(parent.dtype, np.integer):
            raise MalformedTreeError(
                f"parent must hold integer node IDs, got dtype {parent.dtype}."
            )
        n_nodes = int(parent.shape[0])

        names = list(names)
        if len(names) != n_nodes:
            raise MalformedTreeError(
                f"names has {len(names)} entries for {n_nodes} nodes."
            )

        if np.any(parent < -1) or np.any(parent >= n_nodes):
            raise MalformedTreeError(
                f"parent values must lie in [-1, {n_nodes}); "
                f"found {int(parent.min())}..{int(parent.max())}."
            )
        self_loops = np.nonzero(parent == np.arange(n_nodes))[0]
        if self_loops.shape[0] > 0:
            raise MalformedTreeError(f"Node {int(self_loops[0])} is its own parent.")

        roots = np.nonzero(parent == -1)[0]
        if roots.shape[0] != 1:
            raise MalformedTreeError(
                f"Expected exactly one root (parent -1), found {roots.shape[0]}."
            )
        root = int(roots[0])
        parent = parent.astype(np.int32)

        # ---- CSR children: stable sort keeps children in ascending ID order
        non_root = np.nonzero(parent >= 0)[0]
        order = non_root[np.argsort(parent[non_root], kind="stable")]
        n_children = np.bincount(parent[non_root], minlength=n_nodes)
        child_offsets = np.zeros(n_nodes + 1, dtype=np.int64)
        child_offsets[1:] = np.cumsum(n_children)
        children = order.astype(np.int32)

        unary = np.nonzero(n_children == 1)[0]
        if unary.shape[0] > 0:
            raise MalformedTreeError(
                f"Internal node {int(unary[0])} has a single child; "
                "suppress degree-two nodes before building a Tree."
            )

        # ---- Connectivity: every node must be reachable from the root ---- #
        # With one parent per node and a single root, a node is unreachable
        # exactly when it sits on a cycle (or hangs below one).
        stack = [root]
        n_seen = 0
        while stack:
            node = stack.pop()
            n_seen += 1
            stack.extend(children[child_offsets[node] : child_offsets[node + 1]])
            if n_seen > n_nodes:
                break
        if n_seen != n_nodes:
            raise MalformedTreeError(
                f"Only {n_seen} of {n_nodes} nodes are reachable from the root; "
                "the parent array contains a cycle."
            )

        self.parent = parent
        self.child_offsets = child_offsets
        self.children = children
        self.root: int = root
        self.names = names

    def _assign_leaf_ids(self, taxa) -> None:
        """
        **Private.**  Validate leaf labels and map leaf IDs to nodes.

        Populates
        ---------
        self.taxa, self.leaf_node, self.node_leaf, self._taxon_index
        """
        n_children = np.diff(self.child_offsets)
        leaf_nodes = np.nonzero(n_children == 0)[0]

        label_to_node = {}
        for node in leaf_nodes:
            label = self.names[node]
            if not isinstance(label, str) or label == "":
                raise MalformedTreeError(f"Leaf node {int(node)} has no label.")
            if label in label_to_node:
                raise MalformedTreeError(
                    f"Duplicate leaf label '{label}' at nodes "
                    f"{label_to_node[label]} and {int(node)}."
                )
            label_to_node[label] = int(node)

        if taxa is None:
            taxa = tuple(sorted(label_to_node))
        else:
            taxa = tuple(taxa)
            if len(taxa) != len(label_to_node):
                raise TipCountMismatchError(
                    f"taxa lists {len(taxa)} labels but the tree has "
                    f"{len(label_to_node)} leaves."
                )
            if len(set(taxa)) != len(taxa) or set(taxa) != set(label_to_node):
                missing = sorted(set(taxa) - set(label_to_node))
                extra = sorted(set(label_to_node) - set(taxa))
                raise LeafSetMismatchError(
                    f"taxa does not match the tree's leaf labels "
                    f"(absent from tree: {missing[:5]}, not in taxa: {extra[:5]})."
                )

        leaf_node = np.array([label_to_node[t] for t in taxa], dtype=np.int32)
        node_leaf = np.full(self.parent.shape[0], -1, dtype=np.int32)
        node_leaf[leaf_node] = np.arange(leaf_node.shape[0], dtype=np.int32)

        self.taxa = taxa
        self.leaf_node = leaf_node
        self.node_leaf = node_leaf
        self._taxon_index = {t: i for i, t in enumerate(taxa)}

    def _build_lca_structures(self) -> None:
        """
        **Private.**  Build the Euler-tour arrays and sparse table needed for
        O(1) LCA queries.

        Iterative Euler tour
        --------------------
        An explicit stack plus a per-node "next child" cursor drives the DFS
        without recursion.  A node is appended to the tour when it is first
        entered and again each time the walk returns to it from a child, so
        the tour has exactly 2N-1 entries for any number of children.

        Sparse table
        ------------
        ``sparse_table[k, i]`` stores the tour index j ∈ [i, i+2^k-1] where
        ``euler_depth[j]`` is minimised.  Built level-by-level using NumPy
        element-wise operations (maps to a C inner loop).

        Populates
        ---------
        self.depth, self.euler_tour, self.euler_depth,
        self.first_occurrence, self.sparse_table, self.log2_table
        """
        n_nodes = int(self.parent.shape[0])
        tour_len = 2 * n_nodes - 1
        root = self.root
        child_offsets = self.child_offsets
        children = self.children

        depth = np.zeros(n_nodes, dtype=np.int32)
        euler_tour = np.zeros(tour_len, dtype=np.int32)
        euler_depth = np.zeros(tour_len, dtype=np.int32)
        first_occurrence = np.full(n_nodes, -1, dtype=np.int32)

        next_child = child_offsets[:-1].copy()
        stack = np.zeros(n_nodes, dtype=np.int32)
        stack_top = 0
        stack[0] = root
        euler_tour[0] = root
        first_occurrence[root] = 0
        tour_pos = 1

        while stack_top >= 0:
            node = int(stack[stack_top])
            p = int(next_child[node])
            if p < child_offsets[node + 1]:
                next_child[node] = p + 1
                child = int(children[p])
                depth[child] = depth[node] + 1
                stack_top += 1
                stack[stack_top] = child
                euler_tour[tour_pos] = child
                euler_depth[tour_pos] = depth[child]
                first_occurrence[child] = tour_pos
                tour_pos += 1
            else:
                stack_top -= 1
                if stack_top >= 0:
                    up = int(stack[stack_top])
                    euler_tour[tour_pos] = up
                    euler_depth[tour_pos] = depth[up]
                    tour_pos += 1

        # Sparse table
        LOG = int(math.floor(math.log2(tour_len))) + 1 if tour_len > 1 else 1
        sparse_table = np.zeros((LOG, tour_len), dtype=np.int32)
        sparse_table[0] = np.arange(tour_len, dtype=np.int32)

        for k in range(1, LOG):
            half = 1 << (k - 1)
            valid = tour_len - half
            left_pos = sparse_table[k - 1, :valid]
            right_pos = sparse_table[k - 1, half:tour_len]
            left_depths = euler_depth[left_pos]
            right_depths = euler_depth[right_pos]
            sparse_table[k, :valid] = np.where(
                right_depths < left_depths, right_pos, left_pos
            )
            sparse_table[k, valid:] = sparse_table[k - 1, valid:]

        # floor(log2) lookup table
        log2_table = np.zeros(tour_len + 1, dtype=np.int32)
        for i in range(2, tour_len + 1):
            log2_table[i] = log2_table[i >> 1] + 1

        self.depth = depth
        self.euler_tour = euler_tour
        self.euler_depth = euler_depth
        self.first_occurrence = first_occurrence
        self.sparse_table = sparse_table
        self.log2_table = log2_table

    def _resolve_node(self, node) -> int:
        """
        **Private.**  Return the integer node ID for *node*.

        Integers are node IDs and are range-checked; strings are leaf labels.

        Raises
        ------
        LeafSetMismatchError   unknown label.
        IndexError             node ID outside the tree.
        """
        if isinstance(node, (int, np.integer)):
            node = int(node)
            if not 0 <= node < self.parent.shape[0]:
                raise IndexError(
                    f"Node ID {node} outside [0, {self.parent.shape[0]})."
                )
            return node
        return int(self.leaf_node[self.leaf_id(node)])

    # ================================================================== #
    # Private static methods (pure computational kernels)                  #
    # ================================================================== #

    @staticmethod
    def _rmq(l: int, r: int, sparse_table, euler_depth, log2_table) -> int:
        """
        **Private static.**  O(1) Range Minimum Query on ``euler_depth``.

        Returns the tour index ``i`` in ``[l, r]`` where ``euler_depth[i]``
        is minimised (left-biased on ties for deterministic results).
        The compiled twin used inside the kernels is
        ``_cpu_kernels._rmq_nb``.

        Parameters
        ----------
        l, r          : int   Inclusive range endpoints; caller ensures l ≤ r.
        sparse_table  : int32 array shape (LOG, tour_len)
        euler_depth   : int32 array shape (tour_len,)
        log2_table    : int32 array shape (tour_len + 1,)
        """
        length = r - l + 1
        k = int(log2_table[length])
        half = 1 << k
        li = int(sparse_table[k, l])
        ri = int(sparse_table[k, r - half + 1])
        if int(euler_depth[ri]) < int(euler_depth[li]):
            return ri
        return li
