from collections.abc import Iterable

from verus_etags.core.config import SortMode
from verus_etags.models import Tag


def order_tags(tags: Iterable[Tag], mode: SortMode) -> list[Tag]:
    """Order one file's tags by line, breaking ties on the name.

    ``UNSORTED`` keeps traversal order. Both sorts are stable.
    """
    if mode == SortMode.UNSORTED:
        return list(tags)
    if mode == SortMode.FOLDCASE:
        return sorted(tags, key=lambda tag: (tag.line, tag.name.lower()))
    return sorted(tags, key=lambda tag: (tag.line, tag.name))
