"""
Tea records, the starter catalogue and the effective-list merge.
"""

from .catalogue import get_starter, is_starter_id, starter_ids, starter_teas
from .merge import effective_teas, merge
from .types import DeletionMarker, Tea, TeaCollection, TeaType

__all__ = [
    "Tea",
    "TeaType",
    "TeaCollection",
    "DeletionMarker",
    "starter_teas",
    "starter_ids",
    "is_starter_id",
    "get_starter",
    "merge",
    "effective_teas",
]
