"""
_utils.py
=========
Small helpers shared by the tree, classifier and logging modules.
"""

from typing import AbstractSet, Hashable


def jaccard_similarity(set_a: AbstractSet[Hashable], set_b: AbstractSet[Hashable]) -> float:
    """
    |A ∩ B| / |A ∪ B|, or 0.0 when both sets are empty.

    Reported when a batch is rejected because two trees carry different
    leaf labels.

    Examples
    --------
    >>> jaccard_similarity({'A', 'B'}, {'B', 'C', 'D'})
    0.25
    """
    union = len(set_a | set_b)
    if union == 0:
        return 0.0
    return len(set_a & set_b) / union


def validate_leaf_tuple(leaves, size: int = 4) -> bool:
    """
    True when *leaves* is a tuple or list of *size* distinct leaves.

    Leaves may be labels or leaf IDs; a label and the ID it maps to are
    not recognised as the same leaf here (the classifier checks that after
    resolving labels).

    Examples
    --------
    >>> validate_leaf_tuple(('A', 'B', 'C', 'D'))
    True
    >>> validate_leaf_tuple((0, 1, 1), size=3)
    False
    """
    return (
        isinstance(leaves, (tuple, list))
        and len(leaves) == size
        and len(set(leaves)) == size
    )


def format_newick(newick: str) -> str:
    """Strip surrounding whitespace and make sure the string ends in ';'."""
    newick = newick.strip()
    return newick if newick.endswith(";") else newick + ";"
