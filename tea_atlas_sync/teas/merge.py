"""
Effective tea list computation.

Pure, deterministic merge of the built-in starters with a user's saved
records and starter deletion markers. No I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from .types import Tea


def merge(
    starters: Sequence[Tea],
    saved: Sequence[Tea],
    deleted_ids: Iterable[str],
) -> list[Tea]:
    """Compute the list of teas shown to the user.

    Starters come first in catalogue order, minus any that are hidden or
    overridden by a saved record; saved records follow in storage order.
    A saved record with a hidden starter's id is still shown: a deletion
    marker only suppresses the catalogue entry.

    Args:
        starters: Built-in catalogue
        saved: The user's saved records (overrides and user-created teas)
        deleted_ids: Ids of hidden starters

    Returns:
        New list; the inputs are not modified
    """
    deleted = set(deleted_ids)
    saved_ids = {tea.id for tea in saved}
    visible_starters = [
        tea for tea in starters if tea.id not in deleted and tea.id not in saved_ids
    ]
    return visible_starters + list(saved)


class _MergeSources(Protocol):
    @property
    def starters(self) -> Sequence[Tea]: ...

    @property
    def saved(self) -> Sequence[Tea]: ...

    @property
    def deletions(self) -> Iterable[str]: ...


def effective_teas(context: _MergeSources) -> list[Tea]:
    """Effective list for a session context, for renderers."""
    return merge(context.starters, context.saved, context.deletions)
