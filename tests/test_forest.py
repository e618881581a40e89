"""
tests/test_forest.py
====================
Pytest test suite for the batch engine (Forest) and ClassifierCache.

Tree fixtures
-------------
  mixed_6leaf.trees   four 6-leaf trees: tree 1 has an internal polytomy,
                      tree 2 is the star, tree 3 only a trifurcating root
  binary_6leaf.trees  three bifurcating 6-leaf trees

Batch results are checked against comparisons of classifiers built fresh
for each pair, so neither the shared cache nor the closed-form diagonal
can vouch for itself.
"""

import logging
import os
import sys
from math import comb

import numpy as np
import pytest

_TREES_DIR = os.path.join(os.path.dirname(__file__), "trees")

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tqtally._aggregate import Strategy, compare
from tqtally._cache import ClassifierCache
from tqtally._classifier import Classifier
from tqtally._errors import (
    LeafSetMismatchError,
    MalformedTreeError,
    TipCountMismatchError,
    UnsupportedTopologyError,
)
from tqtally._forest import Forest
from tqtally._results import Measure
from tqtally._tree import Tree


def load_newick_file(name):
    with open(os.path.join(_TREES_DIR, name)) as fh:
        return [line.strip() for line in fh if line.strip()]


# ======================================================================== #
# Fixtures                                                                  #
# ======================================================================== #


@pytest.fixture(scope="module")
def mixed_newicks():
    return load_newick_file("mixed_6leaf.trees")


@pytest.fixture(scope="module")
def mixed_forest(mixed_newicks):
    return Forest(mixed_newicks)


@pytest.fixture(scope="module")
def binary_forest():
    return Forest(load_newick_file("binary_6leaf.trees"))


# ======================================================================== #
# 1. Construction                                                           #
# ======================================================================== #


class TestConstruction:
    def test_sizes(self, mixed_forest):
        assert mixed_forest.n_trees == 4
        assert len(mixed_forest) == 4
        assert mixed_forest.n_taxa == 6
        assert mixed_forest.taxa == ("A", "B", "C", "D", "E", "F")

    def test_accepts_tree_objects(self, mixed_newicks):
        trees = [Tree.from_newick(nw) for nw in mixed_newicks]
        forest = Forest(trees)
        assert forest[0] is trees[0]

    def test_reindexes_to_first_tree(self):
        first = Tree.from_newick("((A,B),(C,D));", taxa=["D", "C", "B", "A"])
        forest = Forest([first, "((A,C),(B,D));"])
        assert forest.taxa == ("D", "C", "B", "A")
        assert forest[1].taxa == forest.taxa
        assert forest.tally(0, 1) == (0, 1, 0, 0, 0)

    def test_single_tree(self):
        forest = Forest(["((A,B),(C,D));"])
        assert forest.all_pairs().tolist() == [[[1, 0, 0, 0, 0]]]

    def test_repr(self, mixed_forest):
        assert repr(mixed_forest) == "Forest(n_trees=4, n_taxa=6)"

    def test_multifurcation_logged(self, caplog, mixed_newicks):
        with caplog.at_level(logging.INFO, logger="tqtally"):
            Forest(mixed_newicks)
        messages = [r.getMessage() for r in caplog.records]
        assert any("2 trees are multifurcating (tree indices: 1, 2)" in m for m in messages)
        assert any("4 trees over 6 shared taxa" in m for m in messages)


class TestValidation:
    def test_empty(self):
        with pytest.raises(ValueError):
            Forest([])

    def test_tip_count_mismatch(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tqtally"):
            with pytest.raises(TipCountMismatchError, match="Tree 1"):
                Forest(["((A,B),(C,D));", "((A,B),(C,(D,E)));"])
        assert any("Jaccard" in r.getMessage() for r in caplog.records)

    def test_leaf_set_mismatch(self):
        with pytest.raises(LeafSetMismatchError):
            Forest(["((A,B),(C,D));", "((A,B),(C,E));"])

    def test_malformed(self):
        with pytest.raises(MalformedTreeError):
            Forest(["((A,B),(C,D));", "((A,B),(C,D);"])

    def test_nothing_built_on_failure(self):
        cache = ClassifierCache()
        with pytest.raises(LeafSetMismatchError):
            Forest(["((A,B),(C,D));", "((A,B),(C,E));"], cache=cache)
        assert cache.n_built == 0

    def test_too_few_leaves_checked_before_building(self):
        cache = ClassifierCache()
        forest = Forest(["(A,(B,C));", "((A,B),C);"], cache=cache)
        with pytest.raises(MalformedTreeError):
            forest.all_pairs()
        with pytest.raises(MalformedTreeError):
            forest.tally(0, 1)
        assert cache.n_built == 0
        assert forest.all_pairs("triplet")[0, 1].tolist() == [0, 1, 0, 0, 0]

    def test_bad_worker_count(self, mixed_forest):
        with pytest.raises(ValueError, match="n_workers"):
            mixed_forest.all_pairs(n_workers=0)

    def test_bad_convention_fails_fast(self):
        cache = ClassifierCache()
        forest = Forest(["((A,B),(C,D));"], cache=cache)
        with pytest.raises(ValueError, match="convention"):
            forest.distances(convention="euclidean")
        assert cache.n_built == 0


# ======================================================================== #
# 2. All pairs                                                              #
# ======================================================================== #


class TestAllPairs:
    @pytest.mark.parametrize("measure", list(Measure))
    def test_matches_fresh_classifiers(self, mixed_forest, mixed_newicks, measure):
        # Every entry, the diagonal included, against a comparison of two
        # classifiers built from scratch for that pair alone.
        tensor = mixed_forest.all_pairs(measure)
        k = mixed_forest.n_trees
        assert tensor.shape == (k, k, 5)
        assert tensor.dtype == np.int64
        for i, nw_i in enumerate(mixed_newicks):
            for j, nw_j in enumerate(mixed_newicks):
                fresh = compare(
                    Classifier(Tree.from_newick(nw_i)),
                    Classifier(Tree.from_newick(nw_j)),
                    measure,
                )
                assert tuple(tensor[i, j]) == fresh

    @pytest.mark.parametrize("measure", list(Measure))
    def test_binary_matches_fresh_enumeration(self, binary_forest, measure):
        newicks = load_newick_file("binary_6leaf.trees")
        tensor = binary_forest.all_pairs(measure)
        for i, nw_i in enumerate(newicks):
            for j, nw_j in enumerate(newicks):
                fresh = compare(
                    Classifier(Tree.from_newick(nw_i)),
                    Classifier(Tree.from_newick(nw_j)),
                    measure,
                    Strategy.ENUMERATE,
                )
                assert tuple(tensor[i, j]) == fresh

    def test_matches_single_pairs(self, mixed_forest):
        tensor = mixed_forest.all_pairs()
        for i in range(mixed_forest.n_trees):
            for j in range(mixed_forest.n_trees):
                assert tuple(tensor[i, j]) == mixed_forest.tally(i, j)

    @pytest.mark.parametrize("measure", list(Measure))
    def test_sum_invariant(self, mixed_forest, measure):
        tensor = mixed_forest.all_pairs(measure)
        assert (tensor.sum(axis=2) == comb(6, measure.size)).all()

    def test_lower_triangle_swaps_r1_r2(self, mixed_forest):
        tensor = mixed_forest.all_pairs()
        assert (tensor[:, :, 0] == tensor[:, :, 0].T).all()
        assert (tensor[:, :, 1] == tensor[:, :, 1].T).all()
        assert (tensor[:, :, 2] == tensor[:, :, 3].T).all()
        assert (tensor[:, :, 4] == tensor[:, :, 4].T).all()

    def test_diagonal_closed_form(self, mixed_forest):
        tensor = mixed_forest.all_pairs()
        for i in range(mixed_forest.n_trees):
            clf = mixed_forest.classifier(i)
            assert tuple(tensor[i, i]) == (
                clf.resolved_quartets, 0, 0, 0, clf.unresolved_quartets
            )

    def test_star_row(self, mixed_forest):
        # Tree 2 is the star: nothing resolved, so r1 on its row is zero and
        # every quartet is either r2 or u.
        tensor = mixed_forest.all_pairs()
        assert (tensor[2, :, 0] == 0).all()
        assert (tensor[2, :, 1] == 0).all()
        assert (tensor[2, :, 2] == 0).all()

    def test_distances(self, mixed_forest):
        tensor = mixed_forest.all_pairs()
        dist = mixed_forest.distances()
        assert dist.shape == (4, 4)
        assert (dist == dist.T).all()
        assert (np.diag(dist) == 0).all()
        assert (dist == tensor[:, :, 1] + tensor[:, :, 2] + tensor[:, :, 3]).all()

    def test_resolved_convention(self, mixed_forest):
        tensor = mixed_forest.all_pairs()
        assert (mixed_forest.distances(convention="resolved") == tensor[:, :, 1]).all()

    def test_agreements(self, mixed_forest):
        tensor = mixed_forest.all_pairs()
        ae = mixed_forest.agreements()
        assert ae.shape == (4, 4, 2)
        assert (ae[:, :, 0] == tensor[:, :, 0]).all()
        assert (ae[:, :, 1] == tensor[:, :, 4]).all()

    def test_binary_distances_agree_across_conventions(self, binary_forest):
        assert (
            binary_forest.distances() == binary_forest.distances(convention="resolved")
        ).all()

    def test_strategies_agree(self, mixed_forest):
        general = mixed_forest.all_pairs(strategy=Strategy.GENERAL)
        enumerate_ = mixed_forest.all_pairs(strategy=Strategy.ENUMERATE)
        assert (general == enumerate_).all()

    def test_forced_binary_rejected(self, mixed_forest):
        with pytest.raises(UnsupportedTopologyError):
            mixed_forest.all_pairs(strategy=Strategy.BINARY)


# ======================================================================== #
# 3. One-to-many and line-by-line                                           #
# ======================================================================== #


class TestOneToMany:
    def test_by_index(self, mixed_forest):
        rows = mixed_forest.one_to_many(0)
        assert rows.shape == (4, 5)
        for j in range(4):
            assert tuple(rows[j]) == mixed_forest.tally(0, j)

    def test_by_newick(self, mixed_forest, mixed_newicks):
        rows = mixed_forest.one_to_many(mixed_newicks[1], measure="triplet")
        for j in range(4):
            assert tuple(rows[j]) == mixed_forest.tally(1, j, "triplet")

    def test_by_tree(self, mixed_forest):
        reference = Tree.from_newick("((A,B),(C,D),(E,F));")
        rows = mixed_forest.one_to_many(reference)
        assert (rows.sum(axis=1) == comb(6, 4)).all()

    def test_mismatched_reference(self, mixed_forest):
        with pytest.raises(TipCountMismatchError):
            mixed_forest.one_to_many("((A,B),(C,D));")
        with pytest.raises(LeafSetMismatchError):
            mixed_forest.one_to_many("((A,B),(C,D),(E,G));")


class TestPairs:
    def test_line_by_line(self, mixed_forest, mixed_newicks):
        other = list(reversed(mixed_newicks))
        rows = mixed_forest.pairs(other)
        for i in range(4):
            assert tuple(rows[i]) == mixed_forest.tally(i, 3 - i)

    def test_with_forest(self, mixed_forest, mixed_newicks):
        other = Forest(mixed_newicks)
        rows = mixed_forest.pairs(other, measure=Measure.TRIPLET)
        for i in range(4):
            clf = mixed_forest.classifier(i)
            assert tuple(rows[i]) == (
                clf.resolved_triplets, 0, 0, 0, clf.unresolved_triplets
            )

    def test_length_mismatch(self, mixed_forest, mixed_newicks):
        with pytest.raises(ValueError, match="equal length"):
            mixed_forest.pairs(mixed_newicks[:2])


# ======================================================================== #
# 4. Classifier cache                                                       #
# ======================================================================== #


class TestClassifierCache:
    def test_built_once_per_tree(self, mixed_newicks):
        cache = ClassifierCache()
        forest = Forest(mixed_newicks, cache=cache)
        forest.all_pairs()
        forest.distances(measure="triplet")
        forest.one_to_many(0)
        assert cache.n_built == 4
        assert len(cache) == 4

    def test_shared_between_forests(self, mixed_newicks):
        cache = ClassifierCache()
        trees = [Tree.from_newick(nw) for nw in mixed_newicks]
        Forest(trees, cache=cache).all_pairs()
        Forest(trees[:2], cache=cache).all_pairs()
        assert cache.n_built == 4
        assert trees[0] in cache

    def test_outside_reference_not_cached(self, mixed_newicks):
        cache = ClassifierCache()
        forest = Forest(mixed_newicks, cache=cache)
        first = forest.one_to_many("((A,D),(B,C),(E,F));")
        for _ in range(4):
            again = forest.one_to_many("((A,D),(B,C),(E,F));")
            assert (again == first).all()
        forest.one_to_many(Tree.from_newick("((A,E),(B,C),(D,F));"))
        assert len(cache) == 4
        assert cache.n_built == 4

    def test_line_by_line_trees_not_cached(self, mixed_newicks):
        cache = ClassifierCache()
        forest = Forest(mixed_newicks, cache=cache)
        for _ in range(3):
            forest.pairs(list(reversed(mixed_newicks)))
        assert len(cache) == 4
        assert cache.n_built == 4

    def test_other_forest_keeps_its_own_cache(self, mixed_newicks):
        mine = ClassifierCache()
        theirs = ClassifierCache()
        forest = Forest(mixed_newicks, cache=mine)
        other = Forest(mixed_newicks, cache=theirs)
        forest.pairs(other)
        forest.pairs(other)
        assert len(mine) == 4
        assert len(theirs) == 4
        assert theirs.n_built == 4

    def test_get_returns_same_object(self):
        cache = ClassifierCache()
        tree = Tree.from_newick("((A,B),(C,D));")
        assert cache.get(tree) is cache.get(tree)
        assert cache.n_built == 1

    def test_clear(self):
        cache = ClassifierCache()
        tree = Tree.from_newick("((A,B),(C,D));")
        cache.get(tree)
        cache.clear()
        assert len(cache) == 0
        assert tree not in cache
        cache.get(tree)
        assert cache.n_built == 2

    def test_rejects_non_tree(self):
        with pytest.raises(TypeError):
            ClassifierCache().get("((A,B),(C,D));")

    def test_concurrent_get_builds_once(self):
        from concurrent.futures import ThreadPoolExecutor

        cache = ClassifierCache()
        tree = Tree.from_newick("(((A,B),C),((D,E),F));")
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.get(tree), range(32)))
        assert cache.n_built == 1
        assert all(r is results[0] for r in results)

    def test_ready_logged(self, caplog, mixed_newicks):
        forest = Forest(mixed_newicks)
        with caplog.at_level(logging.INFO, logger="tqtally"):
            forest.build_classifiers()
            forest.build_classifiers()
        messages = [r.getMessage() for r in caplog.records if "Classifiers ready" in r.getMessage()]
        assert "(4 built, 0 cached)" in messages[0]
        assert "(0 built, 4 cached)" in messages[1]


# ======================================================================== #
# 5. Thread pool                                                            #
# ======================================================================== #


class TestParallel:
    @pytest.mark.parametrize("measure", list(Measure))
    def test_all_pairs_matches_serial(self, mixed_newicks, measure):
        serial = Forest(mixed_newicks).all_pairs(measure)
        parallel = Forest(mixed_newicks).all_pairs(measure, n_workers=4)
        assert (serial == parallel).all()

    def test_one_to_many_matches_serial(self, mixed_forest):
        assert (
            mixed_forest.one_to_many(3) == mixed_forest.one_to_many(3, n_workers=3)
        ).all()

    def test_pairs_matches_serial(self, mixed_forest, mixed_newicks):
        other = mixed_newicks[1:] + mixed_newicks[:1]
        assert (
            mixed_forest.pairs(other) == mixed_forest.pairs(other, n_workers=2)
        ).all()

    def test_parallel_build(self, mixed_newicks):
        cache = ClassifierCache()
        Forest(mixed_newicks, cache=cache).build_classifiers(n_workers=4)
        assert cache.n_built == 4

    def test_failure_propagates(self, mixed_forest):
        with pytest.raises(UnsupportedTopologyError):
            mixed_forest.all_pairs(strategy="binary", n_workers=3)

    def test_workers_use_serial_kernels(self, caplog, mixed_forest):
        with caplog.at_level(logging.INFO, logger="tqtally"):
            mixed_forest.all_pairs(n_workers=2)
        plans = [r.getMessage() for r in caplog.records if r.getMessage().startswith("all_pairs")]
        assert "backend='cpu-serial'" in plans[-1]
        assert "2 workers" in plans[-1]
