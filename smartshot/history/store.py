"""
History Store - bounded, searchable record of past recognitions

Eviction strategy:
- Capacity C applies to unpinned items only
- After an insert, the oldest unpinned item (by created_at) is evicted
  while more than C unpinned items remain
- Pinned items are never evicted

Dedup:
- content_hash = sha256(image bytes + 0x00 + recognized text)
- Appending a capture whose hash is already stored refreshes the existing
  item (last_accessed_at, tags, copy_count) instead of adding a record

Concurrency:
- One writer at a time (threading.Lock)
- Every mutation builds a new snapshot and publishes it with a single
  reference assignment, so readers never lock and never observe a
  half-applied mutation
"""
import hashlib
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Union
from uuid import uuid4

import structlog

from smartshot.ocr.analysis import dominant_language, implied_tags
from smartshot.ocr.base import BackendKind, OcrResult

logger = structlog.get_logger()

TITLE_LENGTH = 100
SHORT_TEXT_LENGTH = 50

Predicate = Callable[["ClipboardItem"], bool]


class HistoryItemNotFound(KeyError):
    """No history item with the given id"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def content_hash(image_bytes: bytes, text: str) -> str:
    """Dedup key for a capture and its recognized text"""
    digest = hashlib.sha256()
    digest.update(image_bytes)
    digest.update(b"\x00")
    digest.update(text.encode("utf-8"))
    return digest.hexdigest()


def image_ref_for(image_bytes: bytes) -> str:
    return hashlib.sha256(image_bytes).hexdigest()


def _normalize_tags(tags: Iterable[str]) -> FrozenSet[str]:
    return frozenset(t.strip() for t in tags if t and t.strip())


@dataclass(frozen=True)
class ClipboardItem:
    """
    One history record.

    Items are immutable snapshots; store operations publish a modified copy.

    Attributes:
        id: Unique id (uuid4 hex)
        image_ref: Content address of the capture (sha256 of image bytes)
        result: Recognition result
        content_hash: Dedup key (see content_hash())
        tags: User and capture tags
        pinned: Exempt from eviction
        note: Free-form user note
        created_at: First time this capture was stored
        last_accessed_at: Last time it was stored again or touched
        copy_count: Times the same capture was appended
        title: First characters of the recognized text
        image: Capture bytes carried into append(); the store keeps them in
            its blob map and stores the item without them
    """
    id: str
    image_ref: str
    result: OcrResult
    content_hash: str
    tags: FrozenSet[str] = frozenset()
    pinned: bool = False
    note: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    last_accessed_at: datetime = field(default_factory=utc_now)
    copy_count: int = 1
    title: str = ""
    image: bytes = field(default=b"", repr=False, compare=False)

    @classmethod
    def create(
        cls,
        image_bytes: bytes,
        result: OcrResult,
        tags: Iterable[str] = (),
        now: Optional[datetime] = None,
        auto_tag: bool = False,
    ) -> "ClipboardItem":
        """
        New item for a capture and its result.

        With auto_tag the smart tags implied by the recognized text
        (content type, language, markers) are added to `tags`.
        """
        now = now or utc_now()
        tags = set(_normalize_tags(tags))
        if auto_tag:
            tags |= implied_tags(result.text, dominant_language(result.regions))
        return cls(
            id=uuid4().hex,
            image_ref=image_ref_for(image_bytes),
            result=result,
            content_hash=content_hash(image_bytes, result.text),
            tags=frozenset(tags),
            created_at=now,
            last_accessed_at=now,
            title=result.text.strip()[:TITLE_LENGTH],
            image=image_bytes,
        )

    @property
    def text(self) -> str:
        return self.result.text

    @property
    def confidence(self) -> float:
        return self.result.confidence

    @property
    def backend(self) -> BackendKind:
        return self.result.backend

    @property
    def confidence_bucket(self) -> str:
        if self.confidence >= 0.9:
            return "high"
        if self.confidence >= 0.7:
            return "medium"
        return "low"

    @property
    def short_text(self) -> str:
        text = " ".join(self.text.split())
        if len(text) <= SHORT_TEXT_LENGTH:
            return text
        return text[:SHORT_TEXT_LENGTH] + "..."

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match over text, title, note and tags"""
        needle = query.strip().lower()
        if not needle:
            return True
        haystacks = [self.text, self.title, self.note or ""]
        haystacks.extend(self.tags)
        return any(needle in h.lower() for h in haystacks)


@dataclass(frozen=True)
class _Snapshot:
    items: Dict[str, ClipboardItem] = field(default_factory=dict)
    by_hash: Dict[str, str] = field(default_factory=dict)
    blobs: Dict[str, bytes] = field(default_factory=dict)
    refcounts: Dict[str, int] = field(default_factory=dict)


class HistoryStore:
    """
    Bounded history of recognitions with pinning, tags, notes and search.

    Safe to share between threads. All writes go through one lock; reads
    work on the snapshot current at the time of the call.
    """

    def __init__(
        self,
        capacity: int = 100,
        repository=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            capacity: Maximum number of unpinned items (>= 1)
            repository: Optional HistoryRepository written through on every mutation
            clock: Current time (injectable for tests)
        """
        if capacity < 1:
            raise ValueError(f"History capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.repository = repository
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = _Snapshot()

    @classmethod
    def load(cls, repository, capacity: int = 100, clock: Callable[[], datetime] = utc_now) -> "HistoryStore":
        """Store restored from a repository (oldest first), capacity applied"""
        store = cls(capacity=capacity, repository=repository, clock=clock)
        rows = repository.load_all()

        items: Dict[str, ClipboardItem] = {}
        by_hash: Dict[str, str] = {}
        blobs: Dict[str, bytes] = {}
        refcounts: Dict[str, int] = {}
        for item, image_bytes in rows:
            items[item.id] = item
            by_hash[item.content_hash] = item.id
            blobs.setdefault(item.image_ref, image_bytes)
            refcounts[item.image_ref] = refcounts.get(item.image_ref, 0) + 1

        snapshot = _Snapshot(items=items, by_hash=by_hash, blobs=blobs, refcounts=refcounts)
        snapshot, evicted = store._evict(snapshot)
        if evicted:
            repository.delete_many(evicted)
        store._snapshot = snapshot

        logger.info("history_loaded", items=len(items) - len(evicted), evicted=len(evicted))
        return store

    # ------------------------------------------------------------------
    # Mutations

    def append(self, item: ClipboardItem) -> ClipboardItem:
        """
        Store a new item, or refresh the stored duplicate.

        Returns:
            The stored item (the new one, or the updated duplicate)
        """
        with self._lock:
            current = self._snapshot
            existing_id = current.by_hash.get(item.content_hash)

            if existing_id is not None:
                existing = current.items[existing_id]
                merged = replace(
                    existing,
                    last_accessed_at=self._clock(),
                    tags=existing.tags | item.tags,
                    copy_count=existing.copy_count + 1,
                )
                self._write_through(merged)
                self._publish(replace(current, items={**current.items, merged.id: merged}))
                logger.debug("history_duplicate_refreshed",
                             item_id=merged.id,
                             copy_count=merged.copy_count)
                return merged

            image_bytes = item.image
            stored = replace(item, image=b"")

            blobs = dict(current.blobs)
            refcounts = dict(current.refcounts)
            blobs.setdefault(stored.image_ref, image_bytes)
            refcounts[stored.image_ref] = refcounts.get(stored.image_ref, 0) + 1

            snapshot = _Snapshot(
                items={**current.items, stored.id: stored},
                by_hash={**current.by_hash, stored.content_hash: stored.id},
                blobs=blobs,
                refcounts=refcounts,
            )
            snapshot, evicted = self._evict(snapshot)

            if self.repository is not None:
                self.repository.save(stored, image_bytes)
                if evicted:
                    self.repository.delete_many(evicted)
            self._publish(snapshot)

        logger.info("history_item_added",
                    item_id=stored.id,
                    backend=stored.backend.value,
                    chars=len(stored.text),
                    evicted=len(evicted))
        return stored

    def pin(self, item_id: str) -> ClipboardItem:
        return self._update(item_id, lambda item: {"pinned": True})

    def unpin(self, item_id: str) -> ClipboardItem:
        """Unpin; the store may evict immediately if over capacity"""
        with self._lock:
            updated, evicted = self._unpin_locked(self._require(item_id))
        if evicted:
            logger.info("history_evicted_after_unpin", item_id=item_id, evicted=len(evicted))
        return updated

    def toggle_pin(self, item_id: str) -> ClipboardItem:
        with self._lock:
            item = self._require(item_id)
            if not item.pinned:
                return self._replace_locked(item, pinned=True)
            updated, evicted = self._unpin_locked(item)
        if evicted:
            logger.info("history_evicted_after_unpin", item_id=item_id, evicted=len(evicted))
        return updated

    def tag(self, item_id: str, tag: str) -> ClipboardItem:
        tag = tag.strip()
        if not tag:
            raise ValueError("Tag must not be empty")
        return self._update(item_id, lambda item: {"tags": item.tags | {tag}})

    def untag(self, item_id: str, tag: str) -> ClipboardItem:
        tag = tag.strip()
        return self._update(item_id, lambda item: {"tags": item.tags - {tag}})

    def set_note(self, item_id: str, note: str) -> ClipboardItem:
        note = note.strip() or None
        return self._update(item_id, lambda item: {"note": note})

    def clear_note(self, item_id: str) -> ClipboardItem:
        return self._update(item_id, lambda item: {"note": None})

    def touch(self, item_id: str) -> ClipboardItem:
        """Mark an item as used now (e.g. copied back to the clipboard)"""
        return self._update(item_id, lambda item: {"last_accessed_at": self._clock()})

    def delete(self, item_id: str) -> None:
        with self._lock:
            self._require(item_id)
            if self.repository is not None:
                self.repository.delete(item_id)
            self._publish(self._without(self._snapshot, [item_id]))
        logger.info("history_item_deleted", item_id=item_id)

    def clear(self) -> int:
        """Delete all unpinned items; returns how many were removed"""
        with self._lock:
            current = self._snapshot
            doomed = [i.id for i in current.items.values() if not i.pinned]
            if self.repository is not None and doomed:
                self.repository.delete_many(doomed)
            self._publish(self._without(current, doomed))
        logger.info("history_cleared", removed=len(doomed))
        return len(doomed)

    def clear_all(self) -> int:
        with self._lock:
            removed = len(self._snapshot.items)
            if self.repository is not None:
                self.repository.clear()
            self._publish(_Snapshot())
        logger.info("history_cleared_all", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Reads (lock-free, on the current snapshot)

    def get(self, item_id: str) -> ClipboardItem:
        try:
            return self._snapshot.items[item_id]
        except KeyError:
            raise HistoryItemNotFound(item_id) from None

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._snapshot.items

    def __len__(self) -> int:
        return len(self._snapshot.items)

    def items(self) -> List[ClipboardItem]:
        """All items, most recently accessed first"""
        return self._by_recency(self._snapshot.items.values())

    def search(self, predicate: Union[str, Predicate, None] = None) -> List[ClipboardItem]:
        """
        Items matching a query string or predicate, most recently accessed first.

        An empty or missing query matches everything.
        """
        items = self._snapshot.items.values()
        if predicate is None:
            matched = list(items)
        elif isinstance(predicate, str):
            matched = [i for i in items if i.matches(predicate)]
        else:
            matched = [i for i in items if predicate(i)]
        return self._by_recency(matched)

    def pinned_items(self) -> List[ClipboardItem]:
        return self.search(lambda i: i.pinned)

    def unpinned_items(self) -> List[ClipboardItem]:
        return self.search(lambda i: not i.pinned)

    def items_by_tag(self, tag: str) -> List[ClipboardItem]:
        return self.search(lambda i: tag in i.tags)

    def items_by_backend(self, kind: BackendKind) -> List[ClipboardItem]:
        return self.search(lambda i: i.backend == kind)

    def items_by_confidence(self, minimum: float = 0.0, maximum: float = 1.0) -> List[ClipboardItem]:
        if minimum > maximum:
            raise ValueError(f"minimum {minimum} is greater than maximum {maximum}")
        return self.search(lambda i: minimum <= i.confidence <= maximum)

    def image_bytes(self, item: Union[ClipboardItem, str]) -> bytes:
        """Capture bytes for an item (or its id)"""
        snapshot = self._snapshot
        item_id = item if isinstance(item, str) else item.id
        try:
            stored = snapshot.items[item_id]
        except KeyError:
            raise HistoryItemNotFound(item_id) from None
        return snapshot.blobs[stored.image_ref]

    # ------------------------------------------------------------------
    # Internals (callers hold self._lock unless noted)

    @staticmethod
    def _by_recency(items: Iterable[ClipboardItem]) -> List[ClipboardItem]:
        return sorted(items, key=lambda i: (i.last_accessed_at, i.created_at), reverse=True)

    def _require(self, item_id: str) -> ClipboardItem:
        item = self._snapshot.items.get(item_id)
        if item is None:
            raise HistoryItemNotFound(item_id)
        return item

    def _update(self, item_id: str, changes: Callable[[ClipboardItem], dict]) -> ClipboardItem:
        """Apply `changes(item)` to the item as stored at the time the lock is held"""
        with self._lock:
            item = self._require(item_id)
            return self._replace_locked(item, **changes(item))

    def _replace_locked(self, item: ClipboardItem, **changes) -> ClipboardItem:
        updated = replace(item, **changes)
        self._write_through(updated)
        current = self._snapshot
        self._publish(replace(current, items={**current.items, updated.id: updated}))
        return updated

    def _unpin_locked(self, item: ClipboardItem):
        updated = replace(item, pinned=False)
        current = self._snapshot
        snapshot, evicted = self._evict(replace(current, items={**current.items, updated.id: updated}))
        if self.repository is not None:
            self.repository.save(updated, current.blobs[updated.image_ref])
            if evicted:
                self.repository.delete_many(evicted)
        self._publish(snapshot)
        return updated, evicted

    def _write_through(self, item: ClipboardItem) -> None:
        if self.repository is not None:
            self.repository.save(item, self._snapshot.blobs[item.image_ref])

    def _publish(self, snapshot: _Snapshot) -> None:
        self._snapshot = snapshot

    def _evict(self, snapshot: _Snapshot):
        """Drop oldest unpinned items beyond capacity; returns (snapshot, evicted ids)"""
        unpinned = [
            (item.created_at, position, item.id)
            for position, item in enumerate(snapshot.items.values())
            if not item.pinned
        ]
        overflow = len(unpinned) - self.capacity
        if overflow <= 0:
            return snapshot, []
        evicted = [item_id for _, _, item_id in sorted(unpinned)[:overflow]]
        logger.debug("history_evicting", count=len(evicted), capacity=self.capacity)
        return self._without(snapshot, evicted), evicted

    @staticmethod
    def _without(snapshot: _Snapshot, item_ids: Iterable[str]) -> _Snapshot:
        doomed = set(item_ids)
        if not doomed:
            return snapshot

        items = {k: v for k, v in snapshot.items.items() if k not in doomed}
        by_hash = {h: i for h, i in snapshot.by_hash.items() if i not in doomed}
        blobs = dict(snapshot.blobs)
        refcounts = dict(snapshot.refcounts)
        for item_id in doomed:
            ref = snapshot.items[item_id].image_ref
            refcounts[ref] -= 1
            if refcounts[ref] <= 0:
                del refcounts[ref]
                del blobs[ref]
        return _Snapshot(items=items, by_hash=by_hash, blobs=blobs, refcounts=refcounts)
