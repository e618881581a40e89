"""
_io.py
======
File-based entry points.

Tree files hold Newick trees separated by ``;`` (conventionally one tree per
line).  Every function reads its files, validates them, and delegates to the
in-memory API; the in-memory wrappers ``tq_dist`` and ``tq_ae`` go the other
way, writing trees to a temporary file that is removed on every exit path.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from typing import List, Sequence, Tuple, Union

import numpy as np

from tqtally._distance import quartet_tally, triplet_tally
from tqtally._forest import Forest
from tqtally._results import agreement_tensor, distance_matrix
from tqtally._tree import Tree


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


# ======================================================================== #
# Files                                                                     #
# ======================================================================== #


def validate_tree_file(path) -> str:
    """
    Check that *path* names one existing file and return it as ``str``.

    Raises
    ------
    TypeError          *path* is not a single path (e.g. a list of paths).
    FileNotFoundError  the file does not exist.
    """
    if not isinstance(path, (str, os.PathLike)):
        raise TypeError(
            f"Expected the path of a single tree file, got {type(path).__name__}."
        )
    path = os.fspath(path)
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Tree file not found: {path}")
    return path


def read_trees(path: PathLike) -> List[Tree]:
    """Parse every Newick tree in the file at *path*."""
    path = validate_tree_file(path)
    with open(path) as fh:
        text = fh.read()
    trees = [
        Tree.from_newick(chunk.strip() + ";")
        for chunk in text.split(";")
        if chunk.strip()
    ]
    logger.debug("Read %d trees from %s", len(trees), path)
    return trees


@contextmanager
def tree_file(trees: Sequence[Union[Tree, str]]):
    """
    Write *trees* to a temporary file, one Newick tree per line.

    Yields the path; the file is deleted when the block exits, whether it
    exits normally or by an exception.

    Labels are written unquoted, which is all the reader understands.  A
    ``Tree`` built from a parent array whose leaf labels contain whitespace,
    quotes, brackets or any of ``:,();`` cannot be written.

    Raises
    ------
    TypeError           an entry is neither a ``Tree`` nor a string.
    MalformedTreeError  a ``Tree`` has a leaf label that cannot be written
                        unquoted.  The partly written file is removed.

    Examples
    --------
    >>> with tree_file(['((A,B),(C,D));']) as path:
    ...     all_pairs_quartet_distance_file(path)
    array([[0]])
    """
    fd, path = tempfile.mkstemp(prefix="tqtally-", suffix=".trees")
    try:
        with os.fdopen(fd, "w") as fh:
            for tree in trees:
                if isinstance(tree, Tree):
                    line = tree.to_newick()
                elif isinstance(tree, str):
                    line = tree.strip()
                    if not line.endswith(";"):
                        line += ";"
                else:
                    raise TypeError(
                        f"Expected a Tree or a Newick string, got {type(tree)}."
                    )
                fh.write(line + "\n")
        yield path
    finally:
        if os.path.exists(path):
            os.remove(path)


def _single_tree(path: PathLike) -> Tree:
    trees = read_trees(path)
    if len(trees) != 1:
        raise ValueError(
            f"{os.fspath(path)} must contain exactly one tree, found {len(trees)}."
        )
    return trees[0]


def _forest(path: PathLike) -> Forest:
    trees = read_trees(path)
    if not trees:
        raise ValueError(f"{os.fspath(path)} contains no trees.")
    return Forest(trees)


# ======================================================================== #
# Quartets                                                                  #
# ======================================================================== #


def quartet_distance_file(file1: PathLike, file2: PathLike, backend: str = "best") -> int:
    """Quartet distance between the single trees of *file1* and *file2*."""
    return quartet_tally(_single_tree(file1), _single_tree(file2), backend=backend).distance


def quartet_agreement_file(
    file1: PathLike, file2: PathLike, backend: str = "best"
) -> Tuple[int, int]:
    """(A, E) for the single trees of *file1* and *file2*."""
    return quartet_tally(_single_tree(file1), _single_tree(file2), backend=backend).agreement


def pairs_quartet_distance_file(
    file1: PathLike, file2: PathLike, backend: str = "best"
) -> np.ndarray:
    """Distance of tree i of *file1* to tree i of *file2*, int64 [k]."""
    first = _forest(file1)
    tallies = first.pairs(read_trees(file2), backend=backend)
    return distance_matrix(tallies)


def one_to_many_quartet_agreement_file(
    file1: PathLike, file2: PathLike, backend: str = "best"
) -> np.ndarray:
    """
    Agreement of the one tree in *file1* with every tree in *file2*.

    Returns
    -------
    int64 [2, m]
        Rows A and E.

    Raises
    ------
    ValueError  *file1* does not hold exactly one tree, or *file2* is empty.
    """
    reference = _single_tree(file1)
    others = _forest(file2)
    tallies = others.one_to_many(reference, backend=backend)
    return agreement_tensor(tallies).T.copy()


def all_pairs_quartet_distance_file(file: PathLike, backend: str = "best") -> np.ndarray:
    """Symmetric quartet distance matrix of the trees in *file*, int64 [k, k]."""
    return _forest(file).distances(backend=backend)


def all_pairs_quartet_agreement_file(file: PathLike, backend: str = "best") -> np.ndarray:
    """(A, E) of every pair of trees in *file*, int64 [k, k, 2]."""
    return _forest(file).agreements(backend=backend)


# ======================================================================== #
# Triplets                                                                  #
# ======================================================================== #


def triplet_distance_file(file1: PathLike, file2: PathLike, backend: str = "best") -> int:
    """Triplet distance between the single trees of *file1* and *file2*."""
    return triplet_tally(_single_tree(file1), _single_tree(file2), backend=backend).distance


def pairs_triplet_distance_file(
    file1: PathLike, file2: PathLike, backend: str = "best"
) -> np.ndarray:
    first = _forest(file1)
    tallies = first.pairs(read_trees(file2), measure="triplet", backend=backend)
    return distance_matrix(tallies)


def all_pairs_triplet_distance_file(file: PathLike, backend: str = "best") -> np.ndarray:
    return _forest(file).distances(measure="triplet", backend=backend)


# ======================================================================== #
# In-memory wrappers                                                        #
# ======================================================================== #


def tq_dist(trees: Sequence[Union[Tree, str]], backend: str = "best") -> np.ndarray:
    """
    All-pairs quartet distance matrix of *trees*, via a temporary file.

    Raises ``MalformedTreeError`` for trees whose labels cannot be written
    unquoted; see ``tree_file``.
    """
    with tree_file(trees) as path:
        return all_pairs_quartet_distance_file(path, backend=backend)


def tq_ae(trees: Sequence[Union[Tree, str]], backend: str = "best") -> np.ndarray:
    """
    All-pairs (A, E) tensor of *trees*, via a temporary file.

    Same label restriction as ``tq_dist``.
    """
    with tree_file(trees) as path:
        return all_pairs_quartet_agreement_file(path, backend=backend)
