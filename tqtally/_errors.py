"""
_errors.py
==========
Exception taxonomy for tqtally.

Every condition a caller can provoke with bad input has its own class so it
can be caught separately.  All of them derive from ``TreeDistanceError``,
which is itself a ``ValueError``; code that already guards calls with
``except ValueError`` keeps working.

  TreeDistanceError
  ├── MalformedTreeError         structural validation failed
  ├── UnsupportedTopologyError   multifurcation where bifurcation is required
  ├── LeafSetMismatchError       leaf labels / identifiers disagree or are absent
  ├── DuplicateLeafError         a queried leaf tuple repeats a leaf
  └── TipCountMismatchError      trees expected to share a tip count do not
"""


class TreeDistanceError(ValueError):
    """Base class for all input errors raised by tqtally."""


class MalformedTreeError(TreeDistanceError):
    """The tree description is not a valid leaf-labelled tree."""


class UnsupportedTopologyError(TreeDistanceError):
    """A multifurcating tree was given to an operation that needs a binary one."""


class LeafSetMismatchError(TreeDistanceError):
    """Trees disagree on their leaf labels, or a queried leaf is not present."""


class DuplicateLeafError(TreeDistanceError):
    """A queried quartet or triplet does not consist of distinct leaves."""


class TipCountMismatchError(TreeDistanceError):
    """Trees that must have the same number of tips do not."""
