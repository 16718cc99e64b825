"""
feedgate/rss/models.py
Immutable RSS document model.

A channel's items may arrive as a single FeedItem or a sequence of them;
as_items() flattens both shapes to a tuple so nothing downstream branches
on it. The parser already normalises, but hand-built documents may not.
"""

from dataclasses import dataclass, field
from typing import Sequence, Union


@dataclass(frozen=True)
class FeedItem:
    title: str = ""
    link: str = ""
    description: str = ""


ItemsField = Union[FeedItem, Sequence[FeedItem], None]


def as_items(items: ItemsField) -> tuple[FeedItem, ...]:
    if items is None:
        return ()
    if isinstance(items, FeedItem):
        return (items,)
    return tuple(items)


@dataclass(frozen=True)
class FeedChannel:
    title: str = ""
    link: str = ""
    description: str = ""
    items: ItemsField = field(default_factory=tuple)

    @property
    def item_list(self) -> tuple[FeedItem, ...]:
        return as_items(self.items)


@dataclass(frozen=True)
class FeedDocument:
    channel: FeedChannel
