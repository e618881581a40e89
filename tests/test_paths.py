"""
tests/test_paths.py
===================
Heavy-path layout of single trees.

Validation layers
-----------------
1. Small tree   (TestSmallTree)
   Heavy children, path membership and segment slots of a tree whose node
   IDs are known from the parse order.

2. Invariants   (TestInvariants)
   On random and caterpillar trees: every node on one path, every leaf the
   bottom of one path, heads in post-order, and at most log2(n) light
   edges on any leaf-to-root walk.
"""

import os
import sys
from math import log2

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

from random_trees import caterpillar, random_trees
from tqtally._paths import HeavyPaths
from tqtally._splits import SplitStructure
from tqtally._tree import Tree


def _paths(tree):
    return HeavyPaths(tree, SplitStructure(tree))


# ======================================================================== #
# Small tree                                                                #
# ======================================================================== #


class TestSmallTree:
    @pytest.fixture
    def tree(self):
        # Nodes: 0 root, 1 = (A,(B,C)), 2 = A, 3 = (B,C), 4 = B, 5 = C, 6 = D
        return Tree([-1, 0, 1, 1, 3, 3, 0], ["", "", "A", "", "B", "C", "D"])

    def test_heavy_children(self, tree):
        hp = _paths(tree)
        assert hp.heavy.tolist() == [1, 3, -1, 4, -1, -1, -1]

    def test_root_path_last(self, tree):
        hp = _paths(tree)
        assert hp.n_paths == 4
        assert hp.path(hp.n_paths - 1).tolist() == [0, 1, 3, 4]
        assert hp.path_head[-1] == tree.root

    def test_light_leaves_are_single_paths(self, tree):
        hp = _paths(tree)
        for leaf_node in (2, 5, 6):
            p = hp.node_path[leaf_node]
            assert hp.path(p).tolist() == [leaf_node]
            assert hp.node_pos[leaf_node] == -1

    def test_segment_slots(self, tree):
        hp = _paths(tree)
        # Only the root path has internal nodes: 3 of them, 5 slots.
        assert hp.n_segments == 5
        assert hp.node_pos[[0, 1, 3]].tolist() == [0, 1, 2]

    def test_repr(self, tree):
        assert repr(_paths(tree)) == "HeavyPaths(n_paths=4, n_segments=5)"


# ======================================================================== #
# Invariants                                                                #
# ======================================================================== #


def _corpus():
    trees = [Tree.from_newick(nw) for nw in random_trees(6, 20, 17, 0.3)]
    trees += [caterpillar(40), caterpillar(40, reverse=True)]
    return trees


class TestInvariants:
    @pytest.mark.parametrize("index", range(8))
    def test_paths_partition_nodes(self, index):
        tree = _corpus()[index]
        hp = _paths(tree)
        seen = np.concatenate([hp.path(p) for p in range(hp.n_paths)])
        assert sorted(seen.tolist()) == list(range(tree.n_nodes))
        for p in range(hp.n_paths):
            assert np.all(hp.node_path[hp.path(p)] == p)

    @pytest.mark.parametrize("index", range(8))
    def test_one_path_per_leaf(self, index):
        tree = _corpus()[index]
        hp = _paths(tree)
        assert hp.n_paths == tree.n_leaves
        assert sorted(hp.path_bottom.tolist()) == sorted(tree.leaf_node.tolist())

    @pytest.mark.parametrize("index", range(8))
    def test_heavy_child_is_largest(self, index):
        tree = _corpus()[index]
        splits = SplitStructure(tree)
        hp = HeavyPaths(tree, splits)
        for v in splits.internal_postorder:
            kids = tree.children_of(v)
            assert splits.cluster_size[hp.heavy[v]] == splits.cluster_size[kids].max()

    @pytest.mark.parametrize("index", range(8))
    def test_heads_in_postorder(self, index):
        tree = _corpus()[index]
        splits = SplitStructure(tree)
        hp = HeavyPaths(tree, splits)
        rank = np.empty(tree.n_nodes, dtype=np.int64)
        rank[splits.postorder] = np.arange(tree.n_nodes)
        assert np.all(np.diff(rank[hp.path_head]) > 0)

    @pytest.mark.parametrize("index", range(8))
    def test_light_depth_logarithmic(self, index):
        tree = _corpus()[index]
        assert _paths(tree).light_depth() <= log2(tree.n_leaves)

    def test_caterpillar_is_one_long_path(self):
        hp = _paths(caterpillar(40))
        assert hp.light_depth() == 1
        assert hp.path(hp.n_paths - 1).shape[0] == 40
        assert hp.n_segments == 2 * 39 - 1
