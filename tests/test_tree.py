"""
tests/test_tree.py
==================
Pytest test suite for Tree construction, validation, Newick I/O and LCA.

Tree fixtures
-------------
Reference trees are loaded from .tree files in tests/trees/:

  balanced_4leaf.tree
      ((A,B),(C,D));

      Node IDs (parse order): A=0 B=1 C=2 D=3  AB=4  CD=5  root=6

  binary_5leaf.tree
      ((A,B),(C,(D,E)));

      Node IDs: A=0 B=1 C=2 D=3 E=4  AB=5  DE=6  CDE=7  root=8

  star_4leaf.tree
      (A,B,C,D);

  crossed_4leaf.tree
      ((A:1,C:1)0.9:1,(B:1,D:1)0.8:1);   support values and lengths ignored
"""

import os
import sys

import numpy as np
import pytest

_TREES_DIR = os.path.join(os.path.dirname(__file__), "trees")

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tqtally._errors import (
    LeafSetMismatchError,
    MalformedTreeError,
    TipCountMismatchError,
    TreeDistanceError,
)
from tqtally._newick import parse_newick
from tqtally._tree import Tree


def _load(name):
    with open(os.path.join(_TREES_DIR, name)) as fh:
        return fh.read().strip()


@pytest.fixture(scope="module")
def balanced():
    return Tree.from_newick(_load("balanced_4leaf.tree"))


@pytest.fixture(scope="module")
def binary5():
    return Tree.from_newick(_load("binary_5leaf.tree"))


@pytest.fixture(scope="module")
def star4():
    return Tree.from_newick(_load("star_4leaf.tree"))


# ======================================================================== #
# Newick parsing                                                            #
# ======================================================================== #


class TestParseNewick:
    def test_node_ids(self):
        parent, names = parse_newick("((A,B),(C,D));")
        assert names[:4] == ["A", "B", "C", "D"]
        assert names[4:] == ["", "", ""]
        assert parent.tolist() == [4, 4, 5, 5, 6, 6, -1]

    def test_trailing_semicolon_optional(self):
        p1, n1 = parse_newick("((A,B),(C,D));")
        p2, n2 = parse_newick("((A,B),(C,D))")
        assert p1.tolist() == p2.tolist()
        assert n1 == n2

    def test_lengths_and_support_ignored(self):
        p1, n1 = parse_newick(_load("crossed_4leaf.tree"))
        p2, n2 = parse_newick("((A,C),(B,D));")
        assert p1.tolist() == p2.tolist()
        assert n1 == n2

    def test_whitespace(self):
        parent, names = parse_newick(" ( (A , B) , (C ,D) ) ;\n")
        assert names[:4] == ["A", "B", "C", "D"]
        assert parent.shape[0] == 7

    def test_polytomy_kept(self):
        parent, names = parse_newick("(A,B,C,D);")
        assert parent.tolist() == [4, 4, 4, 4, -1]

    @pytest.mark.parametrize(
        "newick",
        [
            "",
            ";",
            "((A,B),(C,D);",
            "((A,B)),(C,D));",
            "((A,B),());",
            "((A,,B),C);",
            "(A,B);(C,D);",
            "(A,B)C,D;",
            "((A:x,B),C);",
        ],
    )
    def test_malformed(self, newick):
        with pytest.raises(MalformedTreeError):
            parse_newick(newick)


class TestWriteNewick:
    def test_roundtrip_topology(self, binary5):
        again = Tree.from_newick(binary5.to_newick())
        assert again.taxa == binary5.taxa
        assert again.to_newick() == binary5.to_newick()

    def test_no_lengths_written(self):
        tree = Tree.from_newick(_load("crossed_4leaf.tree"))
        assert tree.to_newick() == "((A,C),(B,D));"

    def test_unwritable_label(self):
        tree = Tree([2, 2, -1], ["a b", "c", ""])
        with pytest.raises(MalformedTreeError):
            tree.to_newick()


# ======================================================================== #
# Construction and validation                                               #
# ======================================================================== #


class TestConstruction:
    def test_counts(self, binary5):
        assert binary5.n_leaves == 5
        assert binary5.n_nodes == 9
        assert binary5.root == 8
        assert binary5.max_children == 2

    def test_taxa_sorted_by_default(self):
        tree = Tree.from_newick("((D,A),(C,B));")
        assert tree.taxa == ("A", "B", "C", "D")
        assert tree.leaf_id("A") == 0
        assert tree.names[tree.leaf_node[0]] == "A"

    def test_explicit_taxa(self):
        tree = Tree.from_newick("((A,B),(C,D));", taxa=["D", "C", "B", "A"])
        assert tree.leaf_id("D") == 0
        assert tree.node_leaf[tree.leaf_node[3]] == 3

    def test_with_taxa_same_order_returns_self(self, balanced):
        assert balanced.with_taxa(balanced.taxa) is balanced

    def test_with_taxa_reindexes(self, balanced):
        other = balanced.with_taxa(["B", "A", "D", "C"])
        assert other is not balanced
        assert other.leaf_id("B") == 0
        assert other.names[other.leaf_node[0]] == "B"

    def test_from_edges(self):
        names = ["", "", "A", "B", "C"]
        tree = Tree.from_edges([(0, 1), (0, 4), (1, 2), (1, 3)], names)
        assert tree.root == 0
        assert tree.taxa == ("A", "B", "C")
        assert tree.lca("A", "B") == 1

    def test_children_sorted(self, star4):
        assert star4.children_of(star4.root).tolist() == [0, 1, 2, 3]
        assert star4.is_leaf(0)
        assert not star4.is_leaf(star4.root)

    def test_array_dtypes(self, binary5):
        for attr in ("parent", "children", "leaf_node", "node_leaf", "depth",
                     "euler_tour", "euler_depth", "first_occurrence"):
            assert getattr(binary5, attr).dtype == np.int32, attr
        assert binary5.child_offsets.dtype == np.int64


class TestValidation:
    def test_errors_are_value_errors(self):
        assert issubclass(MalformedTreeError, TreeDistanceError)
        assert issubclass(TreeDistanceError, ValueError)

    def test_two_roots(self):
        with pytest.raises(MalformedTreeError, match="root"):
            Tree([-1, -1], ["A", "B"])

    def test_no_root(self):
        with pytest.raises(MalformedTreeError, match="root"):
            Tree([1, 0], ["A", "B"])

    def test_out_of_range_parent(self):
        with pytest.raises(MalformedTreeError):
            Tree([3, 3, -1], ["A", "B", ""])

    def test_self_loop(self):
        with pytest.raises(MalformedTreeError, match="own parent"):
            Tree([3, 3, -1, 3, 3], ["A", "B", "", "", "C"])

    def test_cycle(self):
        # 3 <-> 4 form a cycle that never reaches the root (node 2).
        with pytest.raises(MalformedTreeError):
            Tree([2, 2, -1, 4, 3], ["A", "B", "", "C", "D"])

    def test_unary_node(self):
        with pytest.raises(MalformedTreeError, match="single child"):
            Tree.from_newick("((A,B));")

    def test_names_length(self):
        with pytest.raises(MalformedTreeError):
            Tree([2, 2, -1], ["A", "B"])

    def test_empty_label(self):
        with pytest.raises(MalformedTreeError, match="no label"):
            Tree([2, 2, -1], ["A", "", ""])

    def test_duplicate_label(self):
        with pytest.raises(MalformedTreeError, match="Duplicate"):
            Tree.from_newick("((A,B),(A,C));")

    def test_taxa_wrong_length(self):
        with pytest.raises(TipCountMismatchError):
            Tree.from_newick("((A,B),(C,D));", taxa=["A", "B", "C"])

    def test_taxa_wrong_labels(self):
        with pytest.raises(LeafSetMismatchError):
            Tree.from_newick("((A,B),(C,D));", taxa=["A", "B", "C", "E"])

    def test_unknown_label(self, balanced):
        with pytest.raises(LeafSetMismatchError):
            balanced.leaf_id("Z")


# ======================================================================== #
# Topology predicates and LCA                                               #
# ======================================================================== #


class TestTopology:
    def test_is_bifurcating(self, balanced, star4):
        assert balanced.is_bifurcating()
        assert not star4.is_bifurcating()

    def test_unrooted_trifurcation(self):
        tree = Tree.from_newick("(A,B,(C,D));")
        assert not tree.is_bifurcating(rooted=True)
        assert tree.is_bifurcating(rooted=False)

    def test_internal_trifurcation(self):
        tree = Tree.from_newick("((A,B,C),(D,E));")
        assert not tree.is_bifurcating(rooted=False)

    def test_depths(self, binary5):
        d = binary5.depth
        assert d[binary5.root] == 0
        assert d[binary5.leaf_node[binary5.leaf_id("E")]] == 3
        assert binary5.max_depth == 3

    def test_euler_tour_length(self, binary5):
        assert binary5.euler_tour.shape[0] == 2 * binary5.n_nodes - 1

    def test_lca_labels(self, binary5):
        assert binary5.lca("D", "E") == 6
        assert binary5.lca("C", "E") == 7
        assert binary5.lca("A", "E") == binary5.root
        assert binary5.lca("A", "B") == 5

    def test_lca_same_node(self, binary5):
        assert binary5.lca("A", "A") == binary5.leaf_node[0]

    def test_lca_symmetric(self, binary5):
        for u in binary5.taxa:
            for v in binary5.taxa:
                assert binary5.lca(u, v) == binary5.lca(v, u)

    def test_lca_polytomy(self, star4):
        assert star4.lca("A", "D") == star4.root
