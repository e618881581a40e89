"""
_splits.py
==========
Cluster and split structure of a single tree.

One iterative depth-first traversal numbers the leaves in visitation order.
Every node's cluster (the leaves below it) is then a contiguous run of that
order, stored as a half-open interval ``[cluster_start, cluster_stop)``.
Membership, cluster size and cluster enumeration all come from the
interval, so the whole structure is built in O(n) without copying leaf
lists from children to parents.
"""

from typing import Dict, List, Set, FrozenSet

import numpy as np


class SplitStructure:
    """
    Interval representation of the clusters of a ``Tree``.

    Attributes
    ----------
    n_leaves           : int
    postorder          : int32 [n_nodes]   Node IDs, children before parents.
    internal_postorder : int32 [n_internal]  Internal node IDs in post-order.
    internal_rank      : int32 [n_nodes]   Position in internal_postorder; -1 for leaves.
    leaf_order         : int32 [n_leaves]  Leaf IDs in visitation order.
    leaf_position      : int32 [n_leaves]  Inverse of leaf_order.
    cluster_start      : int32 [n_nodes]   First position of the node's cluster.
    cluster_stop       : int32 [n_nodes]   One past the last position.
    cluster_size       : int32 [n_nodes]
    """

    def __init__(self, tree) -> None:
        self.tree = tree
        self.n_leaves: int = tree.n_leaves
        self._traverse()

    def _traverse(self) -> None:
        tree = self.tree
        n_nodes = tree.n_nodes
        child_offsets = tree.child_offsets
        children = tree.children
        node_leaf = tree.node_leaf

        postorder = np.zeros(n_nodes, dtype=np.int32)
        leaf_order = np.zeros(self.n_leaves, dtype=np.int32)
        cluster_start = np.zeros(n_nodes, dtype=np.int32)
        cluster_stop = np.zeros(n_nodes, dtype=np.int32)

        next_child = child_offsets[:-1].copy()
        stack = np.zeros(n_nodes, dtype=np.int32)
        stack_top = 0
        stack[0] = tree.root
        n_seen_leaves = 0
        post_pos = 0

        # The root is "entered" before the loop; every other node on push.
        cluster_start[tree.root] = 0
        if node_leaf[tree.root] >= 0:
            leaf_order[0] = node_leaf[tree.root]
            n_seen_leaves = 1

        while stack_top >= 0:
            node = int(stack[stack_top])
            p = int(next_child[node])
            if p < child_offsets[node + 1]:
                next_child[node] = p + 1
                child = int(children[p])
                stack_top += 1
                stack[stack_top] = child
                cluster_start[child] = n_seen_leaves
                leaf = node_leaf[child]
                if leaf >= 0:
                    leaf_order[n_seen_leaves] = leaf
                    n_seen_leaves += 1
            else:
                stack_top -= 1
                cluster_stop[node] = n_seen_leaves
                postorder[post_pos] = node
                post_pos += 1

        leaf_position = np.zeros(self.n_leaves, dtype=np.int32)
        leaf_position[leaf_order] = np.arange(self.n_leaves, dtype=np.int32)

        is_internal = np.diff(child_offsets)[postorder] > 0
        internal_postorder = postorder[is_internal]
        internal_rank = np.full(n_nodes, -1, dtype=np.int32)
        internal_rank[internal_postorder] = np.arange(
            internal_postorder.shape[0], dtype=np.int32
        )

        self.postorder = postorder
        self.internal_postorder = internal_postorder
        self.internal_rank = internal_rank
        self.leaf_order = leaf_order
        self.leaf_position = leaf_position
        self.cluster_start = cluster_start
        self.cluster_stop = cluster_stop
        self.cluster_size = cluster_stop - cluster_start

    # ================================================================== #
    # Queries                                                              #
    # ================================================================== #

    def contains(self, node: int, leaf: int) -> bool:
        """True if leaf ID *leaf* lies in the cluster of *node*.  O(1)."""
        pos = self.leaf_position[leaf]
        return bool(self.cluster_start[node] <= pos < self.cluster_stop[node])

    def cluster(self, node: int) -> np.ndarray:
        """Sorted leaf IDs below *node*."""
        return np.sort(
            self.leaf_order[self.cluster_start[node] : self.cluster_stop[node]]
        )

    def clusters(self) -> Dict[int, np.ndarray]:
        """Mapping from every internal node ID to its sorted cluster."""
        return {int(v): self.cluster(v) for v in self.internal_postorder}

    def descendants(self) -> List[np.ndarray]:
        """
        Sorted descendant leaf IDs for every node, indexed by node ID.

        A leaf's entry is the leaf itself.
        """
        return [self.cluster(v) for v in range(self.tree.n_nodes)]

    def splits(self) -> Set[FrozenSet[int]]:
        """
        Non-trivial splits of the unrooted tree.

        Each split is given by the side that does not contain leaf 0, so
        equal bipartitions compare and hash equal.  Both children of a
        degree-two root induce the same split; it appears once.
        """
        n = self.n_leaves
        everything = frozenset(range(n))
        result = set()
        for v in self.internal_postorder:
            if v == self.tree.root:
                continue
            size = int(self.cluster_size[v])
            if size < 2 or size > n - 2:
                continue
            side = frozenset(int(x) for x in self.cluster(v))
            if 0 in side:
                side = everything - side
            result.add(side)
        return result

    def branch_sizes(self, node: int) -> np.ndarray:
        """
        Leaf counts of the branches around *node*: one per child cluster,
        then the complement of the node's cluster (0 at the root).
        """
        kids = self.tree.children_of(node)
        sizes = np.empty(kids.shape[0] + 1, dtype=np.int64)
        sizes[:-1] = self.cluster_size[kids]
        sizes[-1] = self.n_leaves - self.cluster_size[node]
        return sizes
