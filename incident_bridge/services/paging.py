"""Batched retrieval of paginated result sets"""

from typing import Callable, Iterator, List, Optional, TypeVar

T = TypeVar("T")

PAGE_SIZE = 100


def iter_pages(
    fetch_page: Callable[[int, int], List[T]],
    page_size: int = PAGE_SIZE,
    total: Optional[int] = None,
    first_index: int = 0,
) -> Iterator[List[T]]:
    """Yield pages from `fetch_page(start, page_size)` in retrieval order.

    With a known `total` the loop is count-driven; otherwise it stops at the
    first empty page. `first_index` is 1 for APIs with 1-based start rows.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    start = first_index
    fetched = 0
    while total is None or fetched < total:
        page = fetch_page(start, page_size)
        if not page:
            return
        if total is not None and fetched + len(page) > total:
            page = page[: total - fetched]
        yield page
        fetched += len(page)
        start += page_size


def fetch_all(
    fetch_page: Callable[[int, int], List[T]],
    page_size: int = PAGE_SIZE,
    total: Optional[int] = None,
    first_index: int = 0,
) -> List[T]:
    """Concatenation of every page."""
    items: List[T] = []
    for page in iter_pages(fetch_page, page_size, total=total, first_index=first_index):
        items.extend(page)
    return items
