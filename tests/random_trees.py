"""
tests/random_trees.py
=====================
Random Newick trees and a split-based reference classifier for the test
suite.

The reference classifier does not touch the kernels: a quartet ab|cd is
resolved iff some non-trivial split of the tree separates {a, b} from
{c, d}, and a rooted triplet ab|c iff some cluster holds a and b but not c.
"""

import os
import random
import sys
from itertools import combinations

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tqtally._results import CATEGORY_TABLE
from tqtally._splits import SplitStructure
from tqtally._tree import Tree


LABELS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def random_newick(n_leaves, rng, p_polytomy=0.0, labels=LABELS):
    """
    Join randomly chosen subtrees until one is left.

    With probability *p_polytomy* a join takes three or four subtrees
    instead of two, which produces multifurcations.
    """
    nodes = list(labels[:n_leaves])
    rng.shuffle(nodes)
    while len(nodes) > 1:
        k = 2
        if len(nodes) >= 3 and rng.random() < p_polytomy:
            k = rng.randint(3, min(4, len(nodes)))
        picked = rng.sample(range(len(nodes)), k)
        group = "(" + ",".join(nodes[i] for i in picked) + ")"
        nodes = [x for i, x in enumerate(nodes) if i not in picked] + [group]
    return nodes[0] + ";"


def random_trees(count, n_leaves, seed, p_polytomy=0.0):
    rng = random.Random(seed)
    return [random_newick(n_leaves, rng, p_polytomy) for _ in range(count)]


def reference_quartet_codes(tree: Tree):
    """Resolution code of every sorted 4-subset, via the split set."""
    splits = SplitStructure(tree).splits()
    codes = {}
    for q in combinations(range(tree.n_leaves), 4):
        code = -1
        for side in splits:
            inside = [x in side for x in q]
            if sum(inside) == 2:
                partner = [x for x, flag in zip(q[1:], inside[1:]) if flag == inside[0]][0]
                code = q.index(partner) - 1
                break
        codes[q] = code
    return codes


def reference_triplet_codes(tree: Tree):
    """Resolution code of every sorted 3-subset, via the cluster set."""
    clusters = [set(int(x) for x in c) for c in SplitStructure(tree).clusters().values()]
    codes = {}
    for t in combinations(range(tree.n_leaves), 3):
        code = -1
        for cluster in clusters:
            inside = [x in cluster for x in t]
            if sum(inside) == 2:
                code = inside.index(False)
                break
        codes[t] = code
    return codes


def reference_tally(tree1: Tree, tree2: Tree, size=4):
    """(s, d, r1, r2, u) from the reference codes of both trees."""
    ref = reference_quartet_codes if size == 4 else reference_triplet_codes
    codes1 = ref(tree1)
    codes2 = ref(tree2)
    counts = [0] * 5
    for key, c1 in codes1.items():
        counts[int(CATEGORY_TABLE[c1 + 1, codes2[key] + 1])] += 1
    return tuple(counts)


def trifurcating_newick(n_leaves, rng, labels=LABELS):
    """Three random bifurcating subtrees joined at the root."""
    names = list(labels[:n_leaves])
    rng.shuffle(names)
    cut1, cut2 = sorted(rng.sample(range(1, n_leaves), 2))
    groups = (names[:cut1], names[cut1:cut2], names[cut2:])
    parts = [random_newick(len(g), rng, 0.0, "".join(g))[:-1] for g in groups]
    return "(" + ",".join(parts) + ");"


def caterpillar(n_leaves, reverse=False):
    """
    Caterpillar on labels t0000, t0001, ...; leaves 0 and 1 form the
    deepest cherry, or the last two leaves when *reverse* is set.

    Built from a parent array, so any depth works.
    """
    n = n_leaves
    parent = [0] * (2 * n - 1)
    parent[0] = n
    for j in range(1, n):
        parent[j] = n + j - 1
    for i in range(n - 2):
        parent[n + i] = n + i + 1
    parent[2 * n - 2] = -1
    order = range(n - 1, -1, -1) if reverse else range(n)
    names = [f"t{j:04d}" for j in order] + [""] * (n - 1)
    return Tree(parent, names)
