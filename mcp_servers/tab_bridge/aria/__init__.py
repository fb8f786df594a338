from .classifier import Classification, Classifier, normalize_whitespace
from .refs import ReferenceTable
from .roles import DEFAULT_TABLES, RoleTables
from .snapshot import SnapshotBuilder
from .walker import TreeWalker

__all__ = [
    "Classification",
    "Classifier",
    "DEFAULT_TABLES",
    "ReferenceTable",
    "RoleTables",
    "SnapshotBuilder",
    "TreeWalker",
    "normalize_whitespace",
]
