"""
_cache.py
=========
Caller-owned cache of per-tree classifiers.

A ``ClassifierCache`` is passed explicitly to ``Forest`` or to the pairwise
functions; there is no process-wide cache.  Entries are keyed by the
identity of the ``Tree`` object and hold a reference to it, so an id is
never reused while its entry is alive.
"""

import logging
import threading
from typing import Dict, Tuple

from tqtally._classifier import Classifier
from tqtally._tree import Tree


logger = logging.getLogger(__name__)


class ClassifierCache:
    """
    Thread-safe map from ``Tree`` to its ``Classifier``.

    ``get`` builds each classifier at most once, even when several threads
    ask for the same tree concurrently: the first caller builds under a
    per-tree lock, the others wait on that lock and reuse the result.

    Attributes
    ----------
    n_built : int   Classifiers constructed by this cache since creation.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, Tuple[Tree, Classifier]] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()
        self.n_built = 0

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, tree) -> bool:
        with self._guard:
            entry = self._entries.get(id(tree))
        return entry is not None and entry[0] is tree

    def __repr__(self) -> str:
        return f"ClassifierCache({len(self)} classifiers, {self.n_built} built)"

    def get(self, tree: Tree) -> Classifier:
        """Return the classifier of *tree*, building it on first request."""
        if not isinstance(tree, Tree):
            raise TypeError(f"ClassifierCache keys are Tree objects, not {type(tree)}.")
        key = id(tree)
        with self._guard:
            entry = self._entries.get(key)
            if entry is not None and entry[0] is tree:
                return entry[1]
            lock = self._locks.setdefault(key, threading.Lock())

        with lock:
            with self._guard:
                entry = self._entries.get(key)
            if entry is not None and entry[0] is tree:
                return entry[1]
            clf = Classifier(tree)
            with self._guard:
                self._entries[key] = (tree, clf)
                self.n_built += 1
            return clf

    def clear(self) -> None:
        """Drop every entry; ``n_built`` keeps counting."""
        with self._guard:
            self._entries.clear()
            self._locks.clear()
