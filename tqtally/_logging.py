"""
_logging.py
===========
Log-message helpers for tqtally.

Each function takes already computed values and only formats and emits
records on the ``tqtally._logging`` logger; none of them touches tree or
classifier state.  Tests patch or capture them without side effects.
"""

import logging
from typing import Any, List, Sequence

from tqtally._utils import jaccard_similarity


logger = logging.getLogger(__name__)


# ============================================================================ #
# Start-up status (logged once, when tqtally._forest is first imported)
# ============================================================================ #


def log_optimization_status() -> None:
    """
    Log the machine, memory and numba configuration at INFO level.
    """
    import os
    import platform

    import llvmlite
    import numba
    import psutil

    mem = psutil.virtual_memory()
    logger.info(
        "System: %s (%s), %d CPU cores, Python %s, %.1f of %.1f GB memory free",
        platform.machine(),
        platform.system(),
        os.cpu_count() or 1,
        platform.python_version(),
        mem.available / (1024**3),
        mem.total / (1024**3),
    )
    logger.info(
        "numba %s on llvmlite %s, %d threads",
        numba.__version__,
        llvmlite.__version__,
        numba.get_num_threads(),
    )


def install_numba_warning_filter() -> None:
    """
    Send NumbaPerformanceWarning through the package logger.

    Small inputs leave the prange loops with little to do and numba says so
    through ``warnings``; those messages are logged at WARNING instead of
    printed, so ``quiet()`` hides them with everything else.
    """
    import warnings

    from numba.core.errors import NumbaPerformanceWarning

    previous = warnings.showwarning

    def showwarning(message, category, filename, lineno, file=None, line=None):
        if issubclass(category, NumbaPerformanceWarning):
            logger.warning("Numba performance issue: %s (%s:%d)", message, filename, lineno)
            return
        previous(message, category, filename, lineno, file, line)

    warnings.showwarning = showwarning


def log_backend_availability(backends_available: List[str]) -> None:
    """
    Log the kernel backends and which one 'best' resolves to.

    Parameters
    ----------
    backends_available : List[str]
        Slowest first, as returned by ``get_available_backends()``.
    """
    descriptions = {
        "python": "uncompiled reference kernels",
        "cpu-serial": "numba.njit, GIL released (thread-pool batches)",
        "cpu-parallel": "numba.njit + prange",
    }
    logger.info("Available backends: %s", ", ".join(backends_available))
    for name in reversed(backends_available):
        logger.info("  %s: %s", name, descriptions.get(name, ""))
    logger.info("Default backend='best' will use: %s", backends_available[-1])


# ============================================================================ #
# Forest Logging (called during construction and batch runs)
# ============================================================================ #


def log_forest_statistics(
    n_trees: int,
    n_taxa: int,
    multifurcating_indices: List[int],
) -> None:
    """
    Log forest composition and a consolidated note about multifurcating trees.

    Parameters
    ----------
    n_trees : int
        Number of trees in the forest.
    n_taxa : int
        Size of the shared leaf set.
    multifurcating_indices : List[int]
        Indices of trees with at least one polytomy.
    """
    logger.info("Forest built: %d trees over %d shared taxa", n_trees, n_taxa)

    n_multi = len(multifurcating_indices)
    if n_multi == 0:
        return
    if n_multi == 1:
        logger.info(
            "1 tree is multifurcating (tree index %d); pairs involving it "
            "use the general counting strategy.",
            multifurcating_indices[0],
        )
    elif n_multi <= 5:
        logger.info(
            "%d trees are multifurcating (tree indices: %s); pairs involving "
            "them use the general counting strategy.",
            n_multi,
            ", ".join(map(str, multifurcating_indices)),
        )
    else:
        logger.info(
            "%d trees are multifurcating (%.1f%% of total); pairs involving "
            "them use the general counting strategy.",
            n_multi,
            100.0 * n_multi / n_trees,
        )


def log_leaf_set_mismatch(
    index: int, reference_taxa: Sequence[str], taxa: Sequence[str]
) -> None:
    """
    Explain a leaf-set mismatch before it is raised.

    Parameters
    ----------
    index : int
        Index of the offending tree.
    reference_taxa, taxa : Sequence[str]
        Leaf labels of the reference (first) tree and of the offending tree.
    """
    ref = set(reference_taxa)
    other = set(taxa)
    logger.warning(
        "Tree %d does not share the leaf set of tree 0: Jaccard similarity %.3f "
        "(%d labels only in tree 0, %d only in tree %d).",
        index,
        jaccard_similarity(ref, other),
        len(ref - other),
        len(other - ref),
        index,
    )


def log_classifiers_ready(n_trees: int, n_built: int, memory_bytes: int) -> None:
    """
    Log the end of the classifier-build barrier.

    Parameters
    ----------
    n_trees : int
        Number of trees whose classifiers are now available.
    n_built : int
        How many of them were built by this call (the rest came from cache).
    memory_bytes : int
        Memory held by all of their arrays.
    """
    mem_mb = memory_bytes / (1024**2)
    logger.info(
        "Classifiers ready for %d trees (%d built, %d cached), %.1f MB",
        n_trees,
        n_built,
        n_trees - n_built,
        mem_mb,
    )


def log_intersection_footprint(n_rows: int, n_cols: int, itemsize: int) -> None:
    """
    Report the size of a cluster-intersection matrix, warning when large.

    Parameters
    ----------
    n_rows, n_cols : int
        Matrix shape (internal nodes of tree 1 × nodes of tree 2).
    itemsize : int
        Bytes per entry.
    """
    mem_bytes = n_rows * n_cols * itemsize
    mem_mb = mem_bytes / (1024**2)
    logger.debug(
        "Cluster intersection matrix: %d x %d (%.1f MB)", n_rows, n_cols, mem_mb
    )

    threshold_mb = 1024.0
    if mem_mb > threshold_mb:
        logger.warning(
            "Cluster intersection matrix needs %.0f MB (%d x %d); memory use "
            "grows with the square of the number of leaves.",
            mem_mb,
            n_rows,
            n_cols,
        )


def log_colour_count_footprint(n_segments: int, dim: int, itemsize: int) -> None:
    """Report the size of the join-map store used by colour counting."""
    mem_mb = n_segments * dim * dim * itemsize / (1024**2)
    logger.debug(
        "Colour counting: %d join maps of %d x %d (%.1f MB)",
        n_segments,
        dim,
        dim,
        mem_mb,
    )


def log_batch_plan(
    operation: str,
    measure: str,
    n_pairs: int,
    n_workers: int,
    backend: str,
) -> None:
    """
    Log the shape of a batch computation before it starts.

    Parameters
    ----------
    operation : str
        'all_pairs', 'one_to_many' or 'pairs'.
    measure : str
        'quartet' or 'triplet'.
    n_pairs : int
        Number of pairwise comparisons that will actually run.
    n_workers : int
        Thread-pool size (1 = calling thread only).
    backend : str
        Resolved kernel backend.
    """
    logger.info(
        "%s(%s): %d comparisons, %d worker%s, backend=%r",
        operation,
        measure,
        n_pairs,
        n_workers,
        "" if n_workers == 1 else "s",
        backend,
    )


# ============================================================================ #
# Helper Functions for Computing Data (not logging)
# ============================================================================ #


def compute_memory_footprint(classifiers: Sequence[Any]) -> int:
    """
    Compute the memory held by the arrays of a set of classifiers.

    Parameters
    ----------
    classifiers : Sequence[Classifier]

    Returns
    -------
    int
        Total memory in bytes.
    """
    mem_bytes = 0
    for clf in classifiers:
        tree = clf.tree
        splits = clf.splits
        paths = clf.paths
        for arr in (
            tree.parent,
            tree.child_offsets,
            tree.children,
            tree.leaf_node,
            tree.node_leaf,
            tree.depth,
            tree.euler_tour,
            tree.euler_depth,
            tree.first_occurrence,
            tree.sparse_table,
            tree.log2_table,
            splits.postorder,
            splits.internal_postorder,
            splits.internal_rank,
            splits.leaf_order,
            splits.leaf_position,
            splits.cluster_start,
            splits.cluster_stop,
            splits.cluster_size,
            paths.heavy,
            paths.path_nodes,
            paths.path_start,
            paths.path_head,
            paths.path_bottom,
            paths.seg_base,
            paths.node_path,
            paths.node_pos,
        ):
            mem_bytes += arr.nbytes
    return mem_bytes
