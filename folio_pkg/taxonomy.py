"""
Group posts by category, tag and date.

Every bucket lists posts newest first; posts with the same date are ordered by
source path so the result never depends on file-system listing order.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Iterable, List, Sequence, Tuple

from .content import Post, slugify


def ordered(posts: Iterable[Post]) -> Tuple[Post, ...]:
    """Reverse chronological, ties broken by path ascending."""
    by_path = sorted(posts, key=lambda post: post.rel_path)
    return tuple(sorted(by_path, key=lambda post: post.date, reverse=True))


class TaxonomyIndex:
    """Ordered mapping of a taxonomy key to the posts filed under it."""

    def __init__(self, buckets: Dict[Hashable, Sequence[Post]], key=None, reverse=False):
        keys = sorted(buckets, key=key, reverse=reverse)
        self._buckets = OrderedDict((k, ordered(buckets[k])) for k in keys)

    @classmethod
    def build(cls, posts: Iterable[Post], keys_of: Callable[[Post], Iterable[Hashable]],
              key=None, reverse=False) -> 'TaxonomyIndex':
        buckets: Dict[Hashable, List[Post]] = {}
        for post in posts:
            for k in dict.fromkeys(keys_of(post)):
                buckets.setdefault(k, []).append(post)
        return cls(buckets, key=key, reverse=reverse)

    def __getitem__(self, k) -> Tuple[Post, ...]:
        return self._buckets[k]

    def __contains__(self, k) -> bool:
        return k in self._buckets

    def __iter__(self):
        return iter(self._buckets)

    def __len__(self) -> int:
        return len(self._buckets)

    def get(self, k, default=()):
        return self._buckets.get(k, default)

    def keys(self):
        return self._buckets.keys()

    def items(self):
        return self._buckets.items()


@dataclass(frozen=True)
class TagCount:
    name: str
    slug: str
    count: int


@dataclass(frozen=True)
class Taxonomy:
    posts: Tuple[Post, ...]
    categories: TaxonomyIndex
    tags: TaxonomyIndex
    archive: TaxonomyIndex
    archive_months: TaxonomyIndex

    @property
    def tag_names(self) -> Tuple[TagCount, ...]:
        """Distinct tags with their post counts, for a tag cloud."""
        return tuple(TagCount(name, slugify(name), len(posts)) for name, posts in self.tags.items())

    def months_of(self, year: int) -> List[Tuple[int, Tuple[Post, ...]]]:
        return [(month, posts) for (y, month), posts in self.archive_months.items() if y == year]


def _label_key(label: str):
    return (label.casefold(), label)


def _merged_labels(posts, attr: str) -> Dict[str, str]:
    """Map every spelling of a label to one spelling per URL slug (`Python`, `python`)."""
    spellings: Dict[str, set] = {}
    for post in posts:
        for label in getattr(post, attr):
            spellings.setdefault(slugify(label), set()).add(label)
    return {label: min(variants, key=_label_key)
            for variants in spellings.values() for label in variants}


def build_taxonomy(posts: Iterable[Post]) -> Taxonomy:
    """Build every index from the complete post set; posts are not modified."""
    posts = list(posts)
    categories = _merged_labels(posts, 'categories')
    tags = _merged_labels(posts, 'tags')
    return Taxonomy(
        posts=ordered(posts),
        categories=TaxonomyIndex.build(
            posts, lambda p: [categories[label] for label in p.categories], key=_label_key),
        tags=TaxonomyIndex.build(posts, lambda p: [tags[label] for label in p.tags], key=_label_key),
        archive=TaxonomyIndex.build(posts, lambda p: [p.date.year], reverse=True),
        archive_months=TaxonomyIndex.build(
            posts, lambda p: [(p.date.year, p.date.month)], reverse=True),
    )


def paginate(items: Sequence, per_page: int) -> List[Sequence]:
    """Split items into pages; always at least one (possibly empty) page."""
    per_page = max(1, per_page)
    pages = [items[i:i + per_page] for i in range(0, len(items), per_page)]
    return pages or [items[:0]]


def pagination_links(current_page: int, total_pages: int) -> List:
    """
    Returns a list of page numbers (or ellipses) to display in pagination.
    Always shows page 1 and total_pages.
    Shows two pages before and after the current page.
    Inserts '...' when there is a gap.
    """
    delta = 2
    links: List = [1]

    start = max(current_page - delta, 2)
    end = min(current_page + delta, total_pages - 1)

    if start > 2:
        links.append('...')

    links.extend(range(start, end + 1))

    if end < total_pages - 1:
        links.append('...')

    if total_pages > 1:
        links.append(total_pages)

    return links
