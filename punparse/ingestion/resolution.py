"""Cross-file topic resolution for posts.

A topic page that doesn't link to its own topic still contains the topic's
last post, and the forum page listing the topic names that post. Matching the
two gives the page its topic ID, whichever file is parsed first:

    forum page first:  the topic maps last_post_id -> topic ID; the topic page
                       later finds the mapping among its post IDs
    topic page first:  the page is filed as pending under each of its post
                       IDs; the topic later drains it by its last_post_id

Pages whose topic is never seen are written with a fallback topic ID once all
files are done.
"""
import threading
from typing import Callable, Optional, Sequence

from punparse.config import get_logger
from punparse.models import DerivedKeyConflictError, Post

logger = get_logger(__name__)

WriteFn = Callable[[Post, int], None]


class _PendingPage:
    """Unresolved posts of one topic page, filed under every post ID."""

    __slots__ = ("posts",)

    def __init__(self, posts: Sequence[Post]):
        self.posts = tuple(posts)

    @property
    def keys(self) -> list[int]:
        return [post.id for post in self.posts]


class ResolutionTable:
    """Maps derived keys (last post IDs) to topic IDs and holds pending pages.

    Thread safe. The mapping and the pending set change only under one lock,
    and a pending page leaves every one of its keys before any of its posts
    is handed to a write function, so each filed post is written by the
    table exactly once. Write functions are called after the lock is
    released and must not raise.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._topic_ids: dict[int, int] = {}
        self._pending: dict[int, list[_PendingPage]] = {}
        self._flushed = False

    # ========================================================================
    # Lookups
    # ========================================================================

    def try_resolve(self, derived_key: int) -> Optional[int]:
        """Topic ID for a derived key, if already known.

        Lock-free: entries are never removed or changed once set, so a hit is
        always valid. A miss must be confirmed with file_if_unresolved.
        """
        return self._topic_ids.get(derived_key)

    @property
    def resolved_count(self) -> int:
        return len(self._topic_ids)

    @property
    def pending_count(self) -> int:
        """Number of posts still waiting for their topic."""
        with self._lock:
            return sum(len(page.posts) for page in self._unique_pages())

    # ========================================================================
    # Mutations
    # ========================================================================

    def resolve_and_flush(self, derived_key: int, parent_id: int, write: WriteFn) -> int:
        """Register derived_key -> parent_id and write the pages waiting on it.

        Registering the same mapping twice is a no-op apart from the flush.

        Returns:
            Number of posts written

        Raises:
            DerivedKeyConflictError: If derived_key already maps to another
                topic. The existing mapping is kept.
        """
        with self._lock:
            existing = self._topic_ids.get(derived_key)
            if existing is not None and existing != parent_id:
                raise DerivedKeyConflictError(derived_key, existing, parent_id)
            self._topic_ids[derived_key] = parent_id
            pages = self._detach(self._pending.get(derived_key, []))

        flushed = 0
        for page in pages:
            for post in page.posts:
                write(post, parent_id)
                flushed += 1
        if flushed:
            logger.debug(f"Topic {parent_id} resolved {flushed} pending posts")
        return flushed

    def file_if_unresolved(self, posts: Sequence[Post], write: WriteFn) -> bool:
        """Write a page of posts if its topic is known, or file it as pending.

        Posts are checked last first, since the topic's last post is most
        likely at the end of the page.

        Returns:
            True if the posts were written, False if they were filed

        Raises:
            RuntimeError: If called after flush_all_remaining
        """
        if not posts:
            return True
        with self._lock:
            if self._flushed:
                raise RuntimeError("Resolution table already flushed")
            topic_id = None
            for post in reversed(posts):
                topic_id = self._topic_ids.get(post.id)
                if topic_id is not None:
                    break
            if topic_id is None:
                page = _PendingPage(posts)
                for key in page.keys:
                    self._pending.setdefault(key, []).append(page)
                return False

        for post in posts:
            write(post, topic_id)
        return True

    def flush_all_remaining(self, fallback_parent_id: int, write: WriteFn) -> int:
        """Write every pending post with fallback_parent_id.

        Called once, after every worker has finished. The table accepts no
        further pages afterwards.

        Returns:
            Number of posts written
        """
        with self._lock:
            if self._flushed:
                return 0
            self._flushed = True
            pages = self._unique_pages()
            self._pending.clear()

        flushed = 0
        for page in pages:
            for post in page.posts:
                write(post, fallback_parent_id)
                flushed += 1
        if flushed:
            logger.warning(f"{flushed} posts had no known topic, "
                           f"written with topic ID {fallback_parent_id}")
        return flushed

    # ========================================================================
    # Internals (lock held)
    # ========================================================================

    def _detach(self, pages: list[_PendingPage]) -> list[_PendingPage]:
        detached = list(pages)
        for page in detached:
            for key in page.keys:
                filed = self._pending.get(key)
                if filed is None:
                    continue
                filed[:] = [p for p in filed if p is not page]
                if not filed:
                    del self._pending[key]
        return detached

    def _unique_pages(self) -> list[_PendingPage]:
        seen: dict[int, _PendingPage] = {}
        for pages in self._pending.values():
            for page in pages:
                seen.setdefault(id(page), page)
        return list(seen.values())
