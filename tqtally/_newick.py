"""
_newick.py
==========
Minimal NEWICK reader and writer.

Only the subset needed to move topologies in and out of the package is
supported: unquoted labels, optional internal-node labels (support values)
and optional ``:length`` suffixes.  Labels on internal nodes and branch
lengths are read past and discarded; quartet and triplet agreement depend
on topology alone.  Multifurcations are kept as they are.

Node-ID conventions of ``parse_newick`` (same as the array layout used by
``Tree``):
  Leaves   : 0 … n_leaves-1        (left-to-right in the NEWICK string)
  Internal : n_leaves … n_nodes-1  (post-order, in order of their ')')
  Root     : n_nodes-1
"""

from typing import List, Tuple

import numpy as np

from tqtally._errors import MalformedTreeError
from tqtally._utils import format_newick


_DELIMITERS = ":,();"
_WHITESPACE = " \t\r\n"
_UNWRITABLE = set(_DELIMITERS) | set(_WHITESPACE) | {"[", "]", "'"}


def _scan_token(s: str, i: int, n_chars: int) -> int:
    """Return the index just past the label/number token starting at *i*."""
    j = i
    while j < n_chars and s[j] not in _DELIMITERS and s[j] not in _WHITESPACE:
        j += 1
    return j


def _skip_whitespace(s: str, i: int, n_chars: int) -> int:
    while i < n_chars and s[i] in _WHITESPACE:
        i += 1
    return i


def _skip_length(s: str, i: int, n_chars: int) -> int:
    """Skip an optional ``:length`` suffix, validating the number."""
    i = _skip_whitespace(s, i, n_chars)
    if i < n_chars and s[i] == ":":
        i = _skip_whitespace(s, i + 1, n_chars)
        j = _scan_token(s, i, n_chars)
        try:
            float(s[i:j])
        except ValueError as exc:
            raise MalformedTreeError(
                f"Invalid branch length {s[i:j]!r} at position {i}."
            ) from exc
        i = j
    return i


def parse_newick(newick_string: str) -> Tuple[np.ndarray, List[str]]:
    """
    Parse a NEWICK string into a parent array and a per-node label list.

    Parameters
    ----------
    newick_string : str
        A NEWICK tree; the trailing ';' is optional.

    Returns
    -------
    parent : int32 [n_nodes]
        Parent node ID; -1 for the root.
    names : list[str]
        Leaf label for each leaf node, '' for internal nodes.

    Raises
    ------
    MalformedTreeError
        Unbalanced parentheses, empty groups, empty leaf labels, trailing
        top-level siblings or unparseable branch lengths.

    Notes
    -----
    Two passes, no recursion.  Pass 1 counts commas and parentheses to size
    the arrays exactly (``n_leaves = n_commas + 1`` holds for any rooted
    tree, and every '(' opens one internal node).  Pass 2 is the stack scan.
    """
    s = newick_string.strip()
    n_chars = len(s)
    if n_chars > 0 and s[n_chars - 1] == ";":
        n_chars -= 1
    if n_chars == 0:
        raise MalformedTreeError("Empty NEWICK string.")

    # ---- Pass 1: size the arrays ------------------------------------- #
    n_commas = 0
    n_open = 0
    n_close = 0
    for k in range(n_chars):
        c = s[k]
        if c == ",":
            n_commas += 1
        elif c == "(":
            n_open += 1
        elif c == ")":
            n_close += 1
        elif c == ";":
            raise MalformedTreeError(
                "Found ';' before the end of the string; "
                "pass one tree per NEWICK string."
            )

    if n_open != n_close:
        raise MalformedTreeError(
            f"Unbalanced parentheses: {n_open} '(' and {n_close} ')'."
        )

    n_leaves = n_commas + 1
    n_nodes = n_leaves + n_open

    parent = np.full(n_nodes, -1, dtype=np.int32)
    names = [""] * n_nodes

    # ---- Pass 2: iterative stack-based parse -------------------------- #
    OPEN_PAREN = -2
    stack: List[int] = []
    leaf_id = 0
    internal_id = n_leaves

    i = 0
    while i < n_chars:
        c = s[i]

        if c in _WHITESPACE:
            i += 1
            continue

        if c == "(":
            stack.append(OPEN_PAREN)
            i += 1
            continue

        if c == ",":
            i += 1
            continue

        if c == ")":
            i += 1
            children = []
            while stack and stack[-1] != OPEN_PAREN:
                children.append(stack.pop())
            if not stack:
                raise MalformedTreeError(f"Unmatched ')' at position {i - 1}.")
            stack.pop()  # discard OPEN_PAREN
            if not children:
                raise MalformedTreeError(f"Empty group '()' at position {i - 2}.")

            node_id = internal_id
            internal_id += 1
            for child in children:
                parent[child] = node_id

            # Internal label (support value) is read past and ignored.
            i = _skip_whitespace(s, i, n_chars)
            if i < n_chars and s[i] not in _DELIMITERS:
                i = _scan_token(s, i, n_chars)
            i = _skip_length(s, i, n_chars)

            stack.append(node_id)
            continue

        # Leaf
        j = _scan_token(s, i, n_chars)
        if j == i:
            raise MalformedTreeError(f"Missing leaf label at position {i}.")
        if leaf_id >= n_leaves:
            raise MalformedTreeError(
                f"Unexpected label {s[i:j]!r} at position {i}; "
                "labels must be separated by ',' or parentheses."
            )
        names[leaf_id] = s[i:j]
        leaf_id += 1
        i = _skip_length(s, j, n_chars)
        stack.append(leaf_id - 1)

    if leaf_id != n_leaves:
        raise MalformedTreeError(
            f"Expected {n_leaves} leaf labels from the commas, found {leaf_id}; "
            "leaf labels may not be empty."
        )
    if len(stack) != 1 or stack[0] == OPEN_PAREN:
        raise MalformedTreeError(
            "NEWICK string must describe a single tree enclosed in parentheses."
        )

    return parent, names


def write_newick(tree) -> str:
    """
    Serialise the topology of *tree* as a NEWICK string (no branch lengths).

    Raises
    ------
    MalformedTreeError
        If a leaf label cannot be written without quoting.
    """
    parts = {}
    stack = [(tree.root, False)]
    while stack:
        node, expanded = stack.pop()
        if tree.is_leaf(node):
            label = tree.names[node]
            if _UNWRITABLE.intersection(label):
                raise MalformedTreeError(
                    f"Leaf label {label!r} cannot be written as unquoted NEWICK."
                )
            parts[node] = label
            continue
        kids = tree.children_of(node)
        if expanded:
            parts[node] = "(" + ",".join(parts.pop(int(k)) for k in kids) + ")"
        else:
            stack.append((node, True))
            stack.extend((int(k), False) for k in reversed(kids))
    return format_newick(parts[tree.root])
