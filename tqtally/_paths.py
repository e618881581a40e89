"""
_paths.py
=========
Heavy-path decomposition of a single tree.

Every internal node continues to its heavy child (the child with the
largest cluster, first in child order on ties); the other children are
light.  Following heavy children from a path head gives a heavy path that
ends in a leaf, so every leaf is the bottom of exactly one path and every
node lies on exactly one.  A leaf-to-root walk crosses at most log2(n)
light edges, hence at most log2(n) + 1 paths.

The colour-counting kernel keeps one segment tree of join maps per path;
the layout arrays for those trees are computed here once per tree.
"""

import numpy as np


class HeavyPaths:
    """
    Heavy-path layout of a ``Tree``.

    Paths are numbered in post-order of their heads, so every path hanging
    off another one comes before it and the root's path is last.

    Attributes
    ----------
    n_paths     : int
    heavy       : int32 [n_nodes]    Heavy child of each internal node; -1 for leaves.
    path_nodes  : int32 [n_internal] Internal nodes grouped by path, head first.
    path_start  : int32 [n_paths+1]  Offsets into path_nodes.
    path_head   : int32 [n_paths]    Top node of each path (a leaf for light leaves).
    path_bottom : int32 [n_paths]    Leaf at the bottom of each path.
    seg_base    : int32 [n_paths]    First segment-tree slot of each path.
    n_segments  : int                Total slots: 2m - 1 for a path of m internal nodes.
    node_path   : int32 [n_nodes]    Path of every node.
    node_pos    : int32 [n_nodes]    Position of an internal node on its path; -1 for leaves.
    """

    def __init__(self, tree, splits) -> None:
        n_nodes = tree.n_nodes
        child_offsets = tree.child_offsets
        children = tree.children
        cluster_size = splits.cluster_size

        heavy = np.full(n_nodes, -1, dtype=np.int32)
        for v in splits.internal_postorder:
            kids = children[child_offsets[v] : child_offsets[v + 1]]
            heavy[v] = kids[int(np.argmax(cluster_size[kids]))]

        is_head = np.ones(n_nodes, dtype=bool)
        is_head[heavy[heavy >= 0]] = False

        path_nodes = []
        path_start = [0]
        path_head = []
        path_bottom = []
        seg_base = []
        node_path = np.zeros(n_nodes, dtype=np.int32)
        node_pos = np.full(n_nodes, -1, dtype=np.int32)
        n_segments = 0

        for head in splits.postorder:
            if not is_head[head]:
                continue
            p = len(path_head)
            v = int(head)
            pos = 0
            while heavy[v] >= 0:
                node_path[v] = p
                node_pos[v] = pos
                path_nodes.append(v)
                pos += 1
                v = int(heavy[v])
            node_path[v] = p
            path_head.append(int(head))
            path_bottom.append(v)
            path_start.append(len(path_nodes))
            seg_base.append(n_segments)
            if pos > 0:
                n_segments += 2 * pos - 1

        self.n_paths: int = len(path_head)
        self.heavy = heavy
        self.path_nodes = np.array(path_nodes, dtype=np.int32)
        self.path_start = np.array(path_start, dtype=np.int32)
        self.path_head = np.array(path_head, dtype=np.int32)
        self.path_bottom = np.array(path_bottom, dtype=np.int32)
        self.seg_base = np.array(seg_base, dtype=np.int32)
        self.n_segments: int = n_segments
        self.node_path = node_path
        self.node_pos = node_pos
        self._parent = tree.parent

    def __repr__(self) -> str:
        return f"HeavyPaths(n_paths={self.n_paths}, n_segments={self.n_segments})"

    def path(self, p: int) -> np.ndarray:
        """Node IDs of path *p*, head first, bottom leaf included."""
        start, stop = self.path_start[p], self.path_start[p + 1]
        return np.append(self.path_nodes[start:stop], self.path_bottom[p]).astype(np.int32)

    def light_depth(self) -> int:
        """Largest number of light edges on any leaf-to-root walk."""
        worst = 0
        for p in range(self.n_paths):
            count = 0
            head = int(self.path_head[p])
            while head >= 0:
                parent = int(self._parent[head])
                if parent < 0:
                    break
                count += 1
                head = int(self.path_head[self.node_path[parent]])
            worst = max(worst, count)
        return worst
