"""
_cpu_kernels.py
===============
Quartet and triplet kernels compiled with Numba.

This module contains ONLY numba-accelerated code and does not import other
project modules to avoid import-time complications.

Every heavy kernel is written once as a plain ``*_impl`` function and
compiled twice:

  ``*_njit``    ``@njit(parallel=True, cache=True)``: ``prange`` spreads the
                outer loop over numba's thread pool.  Used for single calls.
  ``*_serial``  ``@njit(nogil=True)``: ``prange`` degrades to ``range``; the
                GIL is released so a Python thread pool can run many of them
                side by side.  Numba's parallel kernels must not be entered
                from several threads at once.

Sequential kernels (``cluster_intersections``, ``colour_count``) have a
single ``@njit(cache=True, nogil=True)`` build used by both backends.

The uncompiled ``*_impl`` is the 'python' backend (``numba.prange`` behaves
like ``range`` outside a jitted function).  ``KERNELS`` maps each backend
name to its variant of every kernel.

Resolution codes
----------------
For leaves sorted by leaf ID, n0 < n1 < n2 < n3:

  -1  unresolved
   0  (n0, n1) | (n2, n3)
   1  (n0, n2) | (n1, n3)
   2  (n0, n3) | (n1, n2)

For triplets n0 < n1 < n2 the code is the position of the outgroup leaf.
"""

import numpy as np
from numba import njit, prange


# ======================================================================== #
# Per-query helpers                                                         #
# ======================================================================== #


@njit(cache=True, nogil=True)
def _rmq_nb(l, r, sparse_table, euler_depth, log2_table, euler_tour):
    """
    O(1) RMQ on one tree's Euler tour; returns the LCA node ID.

    Parameters
    ----------
    l, r : int
        First-occurrence tour indices of the two nodes, in any order.
    """
    if l > r:
        l, r = r, l
    length = r - l + 1
    k = log2_table[length]
    half = 1 << k
    li = sparse_table[k, l]
    ri = sparse_table[k, r - half + 1]
    if euler_depth[ri] < euler_depth[li]:
        return euler_tour[ri]
    return euler_tour[li]


@njit(cache=True, nogil=True)
def _lca_depth_nb(u, v, first_occ, depth, sparse_table, euler_depth, log2_table,
                  euler_tour):
    node = _rmq_nb(first_occ[u], first_occ[v],
                   sparse_table, euler_depth, log2_table, euler_tour)
    return depth[node]


@njit(cache=True, nogil=True)
def _quartet_code_nb(u0, u1, u2, u3,
                     first_occ, depth, sparse_table, euler_depth, log2_table,
                     euler_tour):
    """
    Resolution code of the quartet of leaf *nodes* u0..u3.

    Four-point condition on unit edge lengths: the score of pairing
    (p,q)|(r,s) is depth[LCA(p,q)] + depth[LCA(r,s)].  A resolved quartet
    has one strictly largest score; a star has three equal scores.  Scores
    are integers, so equality is exact.
    """
    d01 = _lca_depth_nb(u0, u1, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d23 = _lca_depth_nb(u2, u3, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d02 = _lca_depth_nb(u0, u2, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d13 = _lca_depth_nb(u1, u3, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d03 = _lca_depth_nb(u0, u3, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d12 = _lca_depth_nb(u1, u2, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    s0 = d01 + d23
    s1 = d02 + d13
    s2 = d03 + d12
    if s0 > s1 and s0 > s2:
        return 0
    if s1 > s0 and s1 > s2:
        return 1
    if s2 > s0 and s2 > s1:
        return 2
    return -1


@njit(cache=True, nogil=True)
def _triplet_code_nb(u0, u1, u2,
                     first_occ, depth, sparse_table, euler_depth, log2_table,
                     euler_tour):
    """Resolution code of the rooted triplet of leaf *nodes* u0..u2."""
    d01 = _lca_depth_nb(u0, u1, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d02 = _lca_depth_nb(u0, u2, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    d12 = _lca_depth_nb(u1, u2, first_occ, depth, sparse_table, euler_depth,
                        log2_table, euler_tour)
    if d01 > d02 and d01 > d12:
        return 2
    if d02 > d01 and d02 > d12:
        return 1
    if d12 > d01 and d12 > d02:
        return 0
    return -1


@njit(cache=True, nogil=True)
def _isect_nb(x, y, isect, internal_rank1, node_leaf1,
              leaf_position2, cluster_start2, cluster_stop2):
    """
    |cluster(x) ∩ cluster(y)| for node x of tree 1 and node y of tree 2.

    Rows of *isect* exist for internal nodes of tree 1 only; a leaf x is
    answered with an interval test on tree 2's leaf order.
    """
    leaf = node_leaf1[x]
    if leaf >= 0:
        pos = leaf_position2[leaf]
        if cluster_start2[y] <= pos and pos < cluster_stop2[y]:
            return 1
        return 0
    return isect[internal_rank1[x], y]


@njit(cache=True)
def _star_counts_nb(internal, child_offsets, children, cluster_size, n_leaves):
    """
    Number of unresolved quartets and unresolved triplets of one tree.

    A quartet is unresolved iff its leaves fall into four distinct branches
    (children plus the complement) of one node; a triplet iff its leaves
    fall into three distinct child clusters of one node.  Both are
    elementary symmetric polynomials of the branch sizes.

    Returns
    -------
    (int64, int64)   (unresolved quartets, unresolved triplets)
    """
    quartet_stars = 0
    triplet_stars = 0
    e = np.zeros(5, dtype=np.int64)
    for idx in range(internal.shape[0]):
        v = internal[idx]
        e[:] = 0
        e[0] = 1
        for p in range(child_offsets[v], child_offsets[v + 1]):
            x = cluster_size[children[p]]
            for k in range(4, 0, -1):
                e[k] += e[k - 1] * x
        triplet_stars += e[3]
        x = n_leaves - cluster_size[v]
        for k in range(4, 0, -1):
            e[k] += e[k - 1] * x
        quartet_stars += e[4]
    return quartet_stars, triplet_stars


# ======================================================================== #
# Batch classification                                                      #
# ======================================================================== #


def _classify_quartets_impl(leaf_sets, leaf_node, first_occ, depth,
                            sparse_table, euler_depth, log2_table, euler_tour,
                            out):
    """Fill out[q] with the resolution code of leaf_sets[q] (sorted leaf IDs)."""
    for qi in prange(leaf_sets.shape[0]):
        out[qi] = _quartet_code_nb(
            leaf_node[leaf_sets[qi, 0]], leaf_node[leaf_sets[qi, 1]],
            leaf_node[leaf_sets[qi, 2]], leaf_node[leaf_sets[qi, 3]],
            first_occ, depth, sparse_table, euler_depth, log2_table, euler_tour)


def _classify_triplets_impl(leaf_sets, leaf_node, first_occ, depth,
                            sparse_table, euler_depth, log2_table, euler_tour,
                            out):
    for qi in prange(leaf_sets.shape[0]):
        out[qi] = _triplet_code_nb(
            leaf_node[leaf_sets[qi, 0]], leaf_node[leaf_sets[qi, 1]],
            leaf_node[leaf_sets[qi, 2]],
            first_occ, depth, sparse_table, euler_depth, log2_table, euler_tour)


# ======================================================================== #
# Enumeration tallies (reference strategy, O(n^4) / O(n^3))                 #
# ======================================================================== #


def _enumerate_quartets_impl(n_leaves, category_table,
                             leaf_node1, first_occ1, depth1, sparse_table1,
                             euler_depth1, log2_table1, euler_tour1,
                             leaf_node2, first_occ2, depth2, sparse_table2,
                             euler_depth2, log2_table2, euler_tour2,
                             partial):
    """
    Classify every 4-subset in both trees and count categories.

    partial : int64 [n_leaves, 5]
        Row a receives the counts of subsets whose smallest leaf is a; the
        caller sums the rows.  One row per outer iteration keeps the
        parallel loop free of shared writes.
    """
    n = n_leaves
    for a in prange(n):
        for b in range(a + 1, n):
            for c in range(b + 1, n):
                for d in range(c + 1, n):
                    t1 = _quartet_code_nb(
                        leaf_node1[a], leaf_node1[b], leaf_node1[c], leaf_node1[d],
                        first_occ1, depth1, sparse_table1, euler_depth1,
                        log2_table1, euler_tour1)
                    t2 = _quartet_code_nb(
                        leaf_node2[a], leaf_node2[b], leaf_node2[c], leaf_node2[d],
                        first_occ2, depth2, sparse_table2, euler_depth2,
                        log2_table2, euler_tour2)
                    partial[a, category_table[t1 + 1, t2 + 1]] += 1


def _enumerate_triplets_impl(n_leaves, category_table,
                             leaf_node1, first_occ1, depth1, sparse_table1,
                             euler_depth1, log2_table1, euler_tour1,
                             leaf_node2, first_occ2, depth2, sparse_table2,
                             euler_depth2, log2_table2, euler_tour2,
                             partial):
    n = n_leaves
    for a in prange(n):
        for b in range(a + 1, n):
            for c in range(b + 1, n):
                t1 = _triplet_code_nb(
                    leaf_node1[a], leaf_node1[b], leaf_node1[c],
                    first_occ1, depth1, sparse_table1, euler_depth1,
                    log2_table1, euler_tour1)
                t2 = _triplet_code_nb(
                    leaf_node2[a], leaf_node2[b], leaf_node2[c],
                    first_occ2, depth2, sparse_table2, euler_depth2,
                    log2_table2, euler_tour2)
                partial[a, category_table[t1 + 1, t2 + 1]] += 1


# ======================================================================== #
# Split counting                                                            #
# ======================================================================== #


def _cluster_intersections_impl(internal1, child_offsets1, children1,
                                node_leaf1, internal_rank1,
                                leaf_node2, parent2, out):
    """
    out[r, y] = |cluster(internal1[r]) ∩ cluster(y)| for every node y of tree 2.

    Rows are filled in post-order: a leaf child adds 1 along its path to
    the root of tree 2, an internal child adds its finished row.

    out : int32 [n_internal1, n_nodes2], zero-initialised.
    """
    n_cols = out.shape[1]
    for idx in range(internal1.shape[0]):
        v = internal1[idx]
        for p in range(child_offsets1[v], child_offsets1[v + 1]):
            c = children1[p]
            leaf = node_leaf1[c]
            if leaf >= 0:
                y = leaf_node2[leaf]
                while y >= 0:
                    out[idx, y] += 1
                    y = parent2[y]
            else:
                crow = internal_rank1[c]
                for y in range(n_cols):
                    out[idx, y] += out[crow, y]


def _quartet_split_counts_impl(internal1, child_offsets1, children1,
                               cluster_size1, internal_rank1, node_leaf1,
                               internal2, child_offsets2, children2,
                               cluster_size2, leaf_position2,
                               cluster_start2, cluster_stop2,
                               isect, n_leaves, max_branches1, max_branches2,
                               shared_out, different_out):
    """
    Shared and different quartet counts, summed per internal node of tree 1.

    For internal nodes v (tree 1) and w (tree 2) let A_i be the branches
    around v (child clusters, then the complement) and B_j those around w,
    M[i, j] = |A_i ∩ B_j| with row sums R and column sums C.

    A quartet ab|cd resolved in a tree is "claimed" by exactly two nodes:
    the node where a and b part while c, d stay together in one branch,
    and the same with the pairs exchanged.  Matching claims of the two
    trees give

      2 s = Σ_{k,l} C(M[k,l], 2) · #{pairs outside A_k ∪ B_l separated in both}
      4 d = Σ_{k,l} M[k,l] · Σ_{i≠k, j≠l} M[i,j] (R_k - M[k,l] - M[k,j])
                                                (C_l - M[k,l] - M[i,l])

    The inner sum of the second line is expanded with the Gram matrix of
    the rows so each (k, l) costs O(rows + columns).

    shared_out, different_out : int64 [n_internal1]   2s and 4d contributions.
    """
    for vi in prange(internal1.shape[0]):
        v = internal1[vi]
        start1 = child_offsets1[v]
        m1 = child_offsets1[v + 1] - start1
        nr = m1 + 1

        M = np.zeros((max_branches1, max_branches2), dtype=np.int64)
        row = np.zeros(max_branches1, dtype=np.int64)
        col = np.zeros(max_branches2, dtype=np.int64)
        row_c2 = np.zeros(max_branches1, dtype=np.int64)
        col_c2 = np.zeros(max_branches2, dtype=np.int64)
        gram = np.zeros((max_branches1, max_branches1), dtype=np.int64)

        shared = 0
        different = 0
        for wi in range(internal2.shape[0]):
            w = internal2[wi]
            start2 = child_offsets2[w]
            m2 = child_offsets2[w + 1] - start2
            nc = m2 + 1

            # ---- Intersection matrix; last row/column is the complement -- #
            inner = 0
            for i in range(m1):
                x = children1[start1 + i]
                below = 0
                for j in range(m2):
                    val = _isect_nb(x, children2[start2 + j], isect,
                                    internal_rank1, node_leaf1, leaf_position2,
                                    cluster_start2, cluster_stop2)
                    M[i, j] = val
                    below += val
                M[i, m2] = cluster_size1[x] - below
                inner += below
            for j in range(m2):
                above = 0
                for i in range(m1):
                    above += M[i, j]
                M[m1, j] = cluster_size2[children2[start2 + j]] - above
            M[m1, m2] = n_leaves - cluster_size1[v] - cluster_size2[w] + inner

            # ---- Margins --------------------------------------------------- #
            c2_total = 0
            for i in range(nr):
                row[i] = 0
                row_c2[i] = 0
            for j in range(nc):
                col[j] = 0
                col_c2[j] = 0
            for i in range(nr):
                for j in range(nc):
                    val = M[i, j]
                    c2 = val * (val - 1) // 2
                    row[i] += val
                    col[j] += val
                    row_c2[i] += c2
                    col_c2[j] += c2
                    c2_total += c2
            for i in range(nr):
                for k in range(i, nr):
                    g = 0
                    for j in range(nc):
                        g += M[i, j] * M[k, j]
                    gram[i, k] = g
                    gram[k, i] = g

            # ---- Claims ---------------------------------------------------- #
            for k in range(nr):
                for l in range(nc):
                    x = M[k, l]
                    if x == 0:
                        continue
                    rest = n_leaves - row[k] - col[l] + x
                    if x >= 2:
                        same_row = 0
                        for i in range(nr):
                            if i != k:
                                t = row[i] - M[i, l]
                                same_row += t * (t - 1) // 2
                        same_col = 0
                        for j in range(nc):
                            if j != l:
                                t = col[j] - M[k, j]
                                same_col += t * (t - 1) // 2
                        same_both = c2_total - row_c2[k] - col_c2[l] + x * (x - 1) // 2
                        separated = (rest * (rest - 1) // 2
                                     - same_row - same_col + same_both)
                        shared += (x * (x - 1) // 2) * separated
                    alpha = row[k] - x
                    beta = col[l] - x
                    term = alpha * beta * rest
                    for i in range(nr):
                        if i != k:
                            mil = M[i, l]
                            term -= alpha * mil * (row[i] - mil)
                            term += mil * (gram[i, k] - mil * x)
                    for j in range(nc):
                        if j != l:
                            mkj = M[k, j]
                            term -= beta * mkj * (col[j] - mkj)
                    different += x * term

        shared_out[vi] = shared
        different_out[vi] = different


def _triplet_split_counts_impl(internal1, child_offsets1, children1,
                               internal_rank1, node_leaf1,
                               internal2, child_offsets2, children2,
                               leaf_position2, cluster_start2, cluster_stop2,
                               isect, max_children1, max_children2,
                               shared_out, different_out):
    """
    Shared and different triplet counts, summed per internal node of tree 1.

    A resolved triplet ab|c is claimed once, by the node where a, b share a
    child cluster and c sits in another.  With M[i, j] the intersection of
    child clusters of v and w, R, C its margins and T = Σ M:

      s = Σ_{i,j} C(M[i,j], 2) · (T - R_i - C_j + M[i,j])
      d = Σ_{i,j} M[i,j] · (R_i - M[i,j]) · (C_j - M[i,j])
    """
    for vi in prange(internal1.shape[0]):
        v = internal1[vi]
        start1 = child_offsets1[v]
        m1 = child_offsets1[v + 1] - start1

        M = np.zeros((max_children1, max_children2), dtype=np.int64)
        row = np.zeros(max_children1, dtype=np.int64)
        col = np.zeros(max_children2, dtype=np.int64)

        shared = 0
        different = 0
        for wi in range(internal2.shape[0]):
            w = internal2[wi]
            start2 = child_offsets2[w]
            m2 = child_offsets2[w + 1] - start2

            total = 0
            for j in range(m2):
                col[j] = 0
            for i in range(m1):
                x = children1[start1 + i]
                row[i] = 0
                for j in range(m2):
                    val = _isect_nb(x, children2[start2 + j], isect,
                                    internal_rank1, node_leaf1, leaf_position2,
                                    cluster_start2, cluster_stop2)
                    M[i, j] = val
                    row[i] += val
                    col[j] += val
                total += row[i]
            if total < 2:
                continue

            for i in range(m1):
                for j in range(m2):
                    x = M[i, j]
                    if x >= 2:
                        shared += (x * (x - 1) // 2) * (total - row[i] - col[j] + x)
                    if x >= 1:
                        different += x * (row[i] - x) * (col[j] - x)

        shared_out[vi] = shared
        different_out[vi] = different


# ======================================================================== #
# Colour counting on heavy paths                                            #
# ======================================================================== #
#
# Leaves carry a colour in {0, 1, 2}.  Every node of tree 2 holds a state
# vector of colour-pattern counts over its cluster; index 0 is the constant
# 1, the last index is the count being summed.  Joining a light child with
# state a into a node is linear in the node's other state, so it is stored
# as a lower-triangular (dim, dim) map.  Each heavy path keeps a segment
# tree of its maps; recolouring one leaf touches O(log n) paths and
# O(log n) segment slots on each.


@njit(cache=True, nogil=True)
def _compose_nb(a, b, out):
    """out = a @ b for lower-triangular maps; out must not alias a or b."""
    dim = out.shape[0]
    for o in range(dim):
        for i in range(dim):
            s = 0
            if i <= o:
                for k in range(i, o + 1):
                    s += a[o, k] * b[k, i]
            out[o, i] = s


@njit(cache=True, nogil=True)
def _apply_nb(a, x, out):
    dim = out.shape[0]
    for o in range(dim):
        s = 0
        for k in range(o + 1):
            s += a[o, k] * x[k]
        out[o] = s


@njit(cache=True, nogil=True)
def _join_map_nb(state, terms, out):
    """
    Map x -> x + a + J(x, a) for the light-side state a = *state*.

    terms : int64 [n_terms, 3]  Rows (o, xi, ai): J[o] += x[xi] * a[ai].
    """
    dim = out.shape[0]
    for o in range(dim):
        for i in range(dim):
            out[o, i] = 0
        out[o, o] = 1
    for o in range(1, dim):
        out[o, 0] = state[o]
    for t in range(terms.shape[0]):
        out[terms[t, 0], terms[t, 1]] += state[terms[t, 2]]


@njit(cache=True, nogil=True)
def _node_map_nb(w, child_offsets, children, heavy, states, terms, out, scratch):
    """Map from the state of w's heavy child to the state of w."""
    first = True
    for p in range(child_offsets[w], child_offsets[w + 1]):
        c = children[p]
        if c == heavy[w]:
            continue
        if first:
            _join_map_nb(states[c], terms, out)
            first = False
        else:
            _join_map_nb(states[c], terms, scratch[0])
            _compose_nb(scratch[0], out, scratch[1])
            out[:, :] = scratch[1]


@njit(cache=True, nogil=True)
def _path_top_nb(p, path_start, path_head, path_bottom, seg_base, node_leaf,
                 colour, colour_index, seg, states, vec):
    """Recompute the state of path p's head from its bottom leaf upward."""
    for i in range(vec.shape[0]):
        vec[i] = 0
    vec[0] = 1
    idx = colour_index[colour[node_leaf[path_bottom[p]]]]
    if idx > 0:
        vec[idx] = 1
    head = path_head[p]
    if path_start[p + 1] == path_start[p]:
        states[head, :] = vec
    else:
        _apply_nb(seg[seg_base[p]], vec, states[head])


@njit(cache=True, nogil=True)
def _path_build_nb(p, path_start, path_nodes, seg_base, child_offsets, children,
                   heavy, states, terms, seg, scratch, stack):
    """
    Fill the segment tree of path p.

    Slot idx covers positions [lo, hi); its left half sits at idx + 1 and
    its right half at idx + 2 * (mid - lo).  A parent is left @ right.
    """
    m = path_start[p + 1] - path_start[p]
    if m == 0:
        return
    start = path_start[p]
    top = 0
    stack[0, 0] = seg_base[p]
    stack[0, 1] = 0
    stack[0, 2] = m
    stack[0, 3] = 0
    while top >= 0:
        idx = stack[top, 0]
        lo = stack[top, 1]
        hi = stack[top, 2]
        done = stack[top, 3]
        top -= 1
        if hi - lo == 1:
            _node_map_nb(path_nodes[start + lo], child_offsets, children, heavy,
                         states, terms, seg[idx], scratch)
            continue
        mid = (lo + hi) // 2
        right = idx + 2 * (mid - lo)
        if done:
            _compose_nb(seg[idx + 1], seg[right], seg[idx])
            continue
        top += 1
        stack[top, 0] = idx
        stack[top, 1] = lo
        stack[top, 2] = hi
        stack[top, 3] = 1
        top += 1
        stack[top, 0] = right
        stack[top, 1] = mid
        stack[top, 2] = hi
        stack[top, 3] = 0
        top += 1
        stack[top, 0] = idx + 1
        stack[top, 1] = lo
        stack[top, 2] = mid
        stack[top, 3] = 0


@njit(cache=True, nogil=True)
def _path_update_nb(p, pos, path_start, path_nodes, seg_base, child_offsets,
                    children, heavy, states, terms, seg, scratch, trail):
    """Rebuild the map at position *pos* of path p and every slot above it."""
    idx = seg_base[p]
    lo = 0
    hi = path_start[p + 1] - path_start[p]
    depth = 0
    while hi - lo > 1:
        mid = (lo + hi) // 2
        right = idx + 2 * (mid - lo)
        trail[depth, 0] = idx
        trail[depth, 1] = right
        depth += 1
        if pos < mid:
            idx = idx + 1
            hi = mid
        else:
            idx = right
            lo = mid
    _node_map_nb(path_nodes[path_start[p] + pos], child_offsets, children, heavy,
                 states, terms, seg[idx], scratch)
    for d in range(depth - 1, -1, -1):
        j = trail[d, 0]
        _compose_nb(seg[j + 1], seg[trail[d, 1]], seg[j])


@njit(cache=True, nogil=True)
def _recolour_nb(leaf, c, colour, leaf_node, node_leaf, parent, root,
                 child_offsets, children, heavy, node_path, node_pos,
                 path_start, path_nodes, path_head, path_bottom, seg_base,
                 colour_index, terms, states, seg, scratch, trail, vec):
    """Give *leaf* colour c and refresh every state above it in tree 2."""
    if colour[leaf] == c:
        return
    colour[leaf] = c
    p = node_path[leaf_node[leaf]]
    while True:
        _path_top_nb(p, path_start, path_head, path_bottom, seg_base, node_leaf,
                     colour, colour_index, seg, states, vec)
        head = path_head[p]
        if head == root:
            return
        w = parent[head]
        p = node_path[w]
        _path_update_nb(p, node_pos[w], path_start, path_nodes, seg_base,
                        child_offsets, children, heavy, states, terms, seg,
                        scratch, trail)


def _colour_count_impl(terms, colour_index,
                       child_offsets1, children1, heavy1, node_leaf1, root1,
                       leaf_order1, cluster_start1, cluster_stop1,
                       parent2, child_offsets2, children2, heavy2,
                       leaf_node2, node_leaf2, root2,
                       node_path2, node_pos2, path_start2, path_nodes2,
                       path_head2, path_bottom2, seg_base2,
                       colour, states, seg, scratch, trail, stack, vec, todo):
    """
    Sum of tree 2's root count over the internal nodes of tree 1.

    Tree 1 is walked heavy child first.  On arriving at a node every leaf
    outside its cluster has colour 0 and every leaf inside colour 1; the
    first light child is painted 2 (any further light child 0), the root
    count is read, and the first light child goes back to 0.  The heavy
    child is visited straight away, each light child after repainting it
    to 1, so every leaf is repainted O(log n) times.

    colour : int64 [n_leaves]         all 1 on entry
    states : int64 [n_nodes2, dim]    path-head states
    seg    : int64 [n_segments2, dim, dim]
    todo   : int64 [3 * n_nodes1 + 3, 2]
    """
    dim = states.shape[1]

    for p in range(path_head2.shape[0]):
        _path_build_nb(p, path_start2, path_nodes2, seg_base2, child_offsets2,
                       children2, heavy2, states, terms, seg, scratch, stack)
        _path_top_nb(p, path_start2, path_head2, path_bottom2, seg_base2,
                     node_leaf2, colour, colour_index, seg, states, vec)

    total = 0
    top = 0
    todo[0, 0] = root1
    todo[0, 1] = 0
    while top >= 0:
        v = todo[top, 0]
        repaint = todo[top, 1]
        top -= 1
        if repaint:
            for i in range(cluster_start1[v], cluster_stop1[v]):
                _recolour_nb(leaf_order1[i], 1, colour, leaf_node2, node_leaf2,
                             parent2, root2, child_offsets2, children2, heavy2,
                             node_path2, node_pos2, path_start2, path_nodes2,
                             path_head2, path_bottom2, seg_base2, colour_index,
                             terms, states, seg, scratch, trail, vec)
            continue

        start = child_offsets1[v]
        stop = child_offsets1[v + 1]
        if start == stop:
            _recolour_nb(node_leaf1[v], 0, colour, leaf_node2, node_leaf2,
                         parent2, root2, child_offsets2, children2, heavy2,
                         node_path2, node_pos2, path_start2, path_nodes2,
                         path_head2, path_bottom2, seg_base2, colour_index,
                         terms, states, seg, scratch, trail, vec)
            continue

        h = heavy1[v]
        first = -1
        for q in range(start, stop):
            c = children1[q]
            if c == h:
                continue
            paint = 0
            if first < 0:
                first = c
                paint = 2
            for i in range(cluster_start1[c], cluster_stop1[c]):
                _recolour_nb(leaf_order1[i], paint, colour, leaf_node2, node_leaf2,
                             parent2, root2, child_offsets2, children2, heavy2,
                             node_path2, node_pos2, path_start2, path_nodes2,
                             path_head2, path_bottom2, seg_base2, colour_index,
                             terms, states, seg, scratch, trail, vec)

        total += states[root2, dim - 1]

        for i in range(cluster_start1[first], cluster_stop1[first]):
            _recolour_nb(leaf_order1[i], 0, colour, leaf_node2, node_leaf2,
                         parent2, root2, child_offsets2, children2, heavy2,
                         node_path2, node_pos2, path_start2, path_nodes2,
                         path_head2, path_bottom2, seg_base2, colour_index,
                         terms, states, seg, scratch, trail, vec)

        for q in range(stop - 1, start - 1, -1):
            c = children1[q]
            if c == h:
                continue
            top += 1
            todo[top, 0] = c
            todo[top, 1] = 0
            top += 1
            todo[top, 0] = c
            todo[top, 1] = 1
        top += 1
        todo[top, 0] = h
        todo[top, 1] = 0

    return total


# ======================================================================== #
# Compiled variants                                                         #
# ======================================================================== #

_classify_quartets_njit = njit(parallel=True, cache=True)(_classify_quartets_impl)
_classify_triplets_njit = njit(parallel=True, cache=True)(_classify_triplets_impl)
_enumerate_quartets_njit = njit(parallel=True, cache=True)(_enumerate_quartets_impl)
_enumerate_triplets_njit = njit(parallel=True, cache=True)(_enumerate_triplets_impl)
_quartet_split_counts_njit = njit(parallel=True, cache=True)(_quartet_split_counts_impl)
_triplet_split_counts_njit = njit(parallel=True, cache=True)(_triplet_split_counts_impl)
_cluster_intersections_njit = njit(cache=True, nogil=True)(_cluster_intersections_impl)
_colour_count_njit = njit(cache=True, nogil=True)(_colour_count_impl)

_classify_quartets_serial = njit(nogil=True)(_classify_quartets_impl)
_classify_triplets_serial = njit(nogil=True)(_classify_triplets_impl)
_enumerate_quartets_serial = njit(nogil=True)(_enumerate_quartets_impl)
_enumerate_triplets_serial = njit(nogil=True)(_enumerate_triplets_impl)
_quartet_split_counts_serial = njit(nogil=True)(_quartet_split_counts_impl)
_triplet_split_counts_serial = njit(nogil=True)(_triplet_split_counts_impl)


KERNELS = {
    "python": {
        "classify_quartets": _classify_quartets_impl,
        "classify_triplets": _classify_triplets_impl,
        "enumerate_quartets": _enumerate_quartets_impl,
        "enumerate_triplets": _enumerate_triplets_impl,
        "cluster_intersections": _cluster_intersections_impl,
        "quartet_split_counts": _quartet_split_counts_impl,
        "triplet_split_counts": _triplet_split_counts_impl,
        "colour_count": _colour_count_impl,
    },
    "cpu-serial": {
        "classify_quartets": _classify_quartets_serial,
        "classify_triplets": _classify_triplets_serial,
        "enumerate_quartets": _enumerate_quartets_serial,
        "enumerate_triplets": _enumerate_triplets_serial,
        "cluster_intersections": _cluster_intersections_njit,
        "quartet_split_counts": _quartet_split_counts_serial,
        "triplet_split_counts": _triplet_split_counts_serial,
        "colour_count": _colour_count_njit,
    },
    "cpu-parallel": {
        "classify_quartets": _classify_quartets_njit,
        "classify_triplets": _classify_triplets_njit,
        "enumerate_quartets": _enumerate_quartets_njit,
        "enumerate_triplets": _enumerate_triplets_njit,
        "cluster_intersections": _cluster_intersections_njit,
        "quartet_split_counts": _quartet_split_counts_njit,
        "triplet_split_counts": _triplet_split_counts_njit,
        "colour_count": _colour_count_njit,
    },
}
