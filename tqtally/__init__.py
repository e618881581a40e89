"""
tqtally
=======

Triplet and quartet distances between phylogenetic trees.

For two trees on the same leaf set, *tqtally* classifies every 4-leaf
subset (unrooted quartets) or 3-leaf subset (rooted triplets) as resolved
the same way in both trees (s), resolved differently (d), resolved in only
the first (r1) or only the second tree (r2), or unresolved in both (u).
Trees may be multifurcating.

Main Classes
------------
Tree : Rooted leaf-labelled tree with Newick parsing and O(1) LCA queries
Classifier : Per-tree index answering single quartet/triplet queries
Forest : Batch engine over many trees (all pairs, one-to-many, pairs)
ClassifierCache : Caller-owned cache of classifiers shared across calls

Pairwise Functions
------------------
quartet_tally, quartet_distance, quartet_agreement
triplet_tally, triplet_distance, triplet_agreement
matching_quartets : Reference tree against each tree, rows Q, s, d, r1, r2, u
compare : Tally of two classifiers with an explicit Strategy
tally_from_agreement : Expand (A, E) into a tally for bifurcating trees

File Functions
--------------
quartet_distance_file, quartet_agreement_file, pairs_quartet_distance_file,
one_to_many_quartet_agreement_file, all_pairs_quartet_distance_file,
all_pairs_quartet_agreement_file, triplet_distance_file,
pairs_triplet_distance_file, all_pairs_triplet_distance_file,
tq_dist, tq_ae, tree_file, read_trees

Context Managers
----------------
quiet : Suppress logging during operations
suppress_logger : Suppress specific logger
suppress_warnings : Suppress specific warnings
use_backend : Force specific computational backend
silent_benchmark : Combine quiet + backend selection + warning suppression

Examples
--------
Basic usage:

>>> from tqtally import quartet_tally
>>> quartet_tally('((A,B),(C,D));', '((A,C),(B,D));')
QuartetTally(s=0, d=1, r1=0, r2=0, u=0)

Many trees:

>>> from tqtally import Forest, quiet
>>> with quiet():
...     forest = Forest(newick_list)
...     d = forest.distances(n_workers=4)
"""

__version__ = "0.1.0"

# Main classes
from ._tree import Tree
from ._classifier import Classifier
from ._cache import ClassifierCache
from ._forest import Forest
from ._splits import SplitStructure
from ._paths import HeavyPaths

# Results
from ._results import (
    Measure,
    Tally,
    QuartetTally,
    TripletTally,
    CATEGORY_NAMES,
)

# Pairwise aggregation
from ._aggregate import (
    Strategy,
    compare,
    select_strategy,
    tally_from_agreement,
)

# Pairwise functions
from ._distance import (
    quartet_tally,
    quartet_distance,
    quartet_agreement,
    triplet_tally,
    triplet_distance,
    triplet_agreement,
    matching_quartets,
)

# File functions
from ._io import (
    tree_file,
    read_trees,
    validate_tree_file,
    quartet_distance_file,
    quartet_agreement_file,
    pairs_quartet_distance_file,
    one_to_many_quartet_agreement_file,
    all_pairs_quartet_distance_file,
    all_pairs_quartet_agreement_file,
    triplet_distance_file,
    pairs_triplet_distance_file,
    all_pairs_triplet_distance_file,
    tq_dist,
    tq_ae,
)

# Errors
from ._errors import (
    TreeDistanceError,
    MalformedTreeError,
    UnsupportedTopologyError,
    LeafSetMismatchError,
    DuplicateLeafError,
    TipCountMismatchError,
)

# Context managers (user-facing utilities)
from ._context import (
    suppress_logger,
    quiet,
    suppress_warnings,
    use_backend,
    silent_benchmark,
)

# Backend information (useful for checking capabilities)
from ._backend import (
    get_available_backends,
    get_backend_info,
)

# Public API
__all__ = [
    # Main classes
    "Tree",
    "Classifier",
    "ClassifierCache",
    "Forest",
    "SplitStructure",
    "HeavyPaths",
    # Results
    "Measure",
    "Tally",
    "QuartetTally",
    "TripletTally",
    "CATEGORY_NAMES",
    # Aggregation
    "Strategy",
    "compare",
    "select_strategy",
    "tally_from_agreement",
    # Pairwise functions
    "quartet_tally",
    "quartet_distance",
    "quartet_agreement",
    "triplet_tally",
    "triplet_distance",
    "triplet_agreement",
    "matching_quartets",
    # File functions
    "tree_file",
    "read_trees",
    "validate_tree_file",
    "quartet_distance_file",
    "quartet_agreement_file",
    "pairs_quartet_distance_file",
    "one_to_many_quartet_agreement_file",
    "all_pairs_quartet_distance_file",
    "all_pairs_quartet_agreement_file",
    "triplet_distance_file",
    "pairs_triplet_distance_file",
    "all_pairs_triplet_distance_file",
    "tq_dist",
    "tq_ae",
    # Errors
    "TreeDistanceError",
    "MalformedTreeError",
    "UnsupportedTopologyError",
    "LeafSetMismatchError",
    "DuplicateLeafError",
    "TipCountMismatchError",
    # Context managers
    "suppress_logger",
    "quiet",
    "suppress_warnings",
    "use_backend",
    "silent_benchmark",
    # Backend information
    "get_available_backends",
    "get_backend_info",
    # Version info
    "__version__",
]
