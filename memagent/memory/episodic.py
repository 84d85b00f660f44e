"""
Episodic Store
==============

Time-ordered interaction records scoped by (user, session).

Every appended record is linked to the previous record of the same
session (`relationships.previous` / `relationships.next`), so a session
can be walked in either direction.

Storage:
    With a storage path, all records live in one JSON file
    (`episodic.json`) that is rewritten after every write. File I/O runs
    in a worker thread so the event loop is never blocked. Without a
    storage path the store is purely in-memory.

Reads return records most recent first; the orchestration core only reads.
"""

import asyncio
import json
import uuid
from datetime import datetime
from pathlib import Path

from memagent.memory.models import EpisodicMemoryRecord, EpisodicMetadata, ScoredRecord, utc_now
from memagent.utils.logger import Logger

logger = Logger("EpisodicStore")


def _keywords(text: str) -> list[str]:
    return [word for word in text.lower().split() if word]


def _matches_text(record: EpisodicMemoryRecord, text: str) -> bool:
    """True when any keyword of `text` occurs in the content or a tag."""
    haystack = record.content.lower()
    tags = [tag.lower() for tag in record.metadata.tags]
    return any(kw in haystack or kw in tags for kw in _keywords(text))


class EpisodicStore:
    """
    Append-mostly store of EpisodicMemoryRecords.

    Example:
        store = EpisodicStore(Path("data/memory"))

        record = await store.append(EpisodicMemoryRecord(
            user_id="U1", session_id="S1", content="User: I like Python"
        ))
        recent = await store.query("U1", "S1", limit=10)
        hits = await store.search("U1", "python")
    """

    def __init__(self, storage_path: Path | None = None):
        """
        Args:
            storage_path: Directory for episodic.json; None keeps records in memory
        """
        self.storage_path = storage_path
        self._records: dict[str, EpisodicMemoryRecord] = {}
        self._lock = asyncio.Lock()

        if storage_path is not None:
            storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

        logger.info(f"Episodic store initialized with {len(self._records)} records")

    @property
    def _file(self) -> Path:
        return self.storage_path / "episodic.json"

    def _load(self) -> None:
        if not self._file.exists():
            return
        with open(self._file) as f:
            data = json.load(f)
        for item in data:
            record = EpisodicMemoryRecord.from_dict(item)
            self._records[record.id] = record

    def _save_sync(self) -> None:
        with open(self._file, "w") as f:
            json.dump([r.to_dict() for r in self._records.values()], f, indent=2, default=str)

    async def _persist(self) -> None:
        if self.storage_path is not None:
            await asyncio.to_thread(self._save_sync)

    def _session_records(self, user_id: str, session_id: str | None) -> list[EpisodicMemoryRecord]:
        return [
            r for r in self._records.values()
            if r.user_id == user_id and (session_id is None or r.session_id == session_id)
        ]

    @staticmethod
    def _newest_first(records: list[EpisodicMemoryRecord]) -> list[EpisodicMemoryRecord]:
        return sorted(records, key=lambda r: (r.timestamp, r.id), reverse=True)

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def append(self, record: EpisodicMemoryRecord) -> EpisodicMemoryRecord:
        """
        Store a new record, assigning its id and session links.

        Returns:
            The stored record (same object, with `id` set)
        """
        async with self._lock:
            if not record.id:
                record.id = uuid.uuid4().hex

            session = self._newest_first(self._session_records(record.user_id, record.session_id))
            if session:
                previous = session[0]
                previous.relationships.next = record.id
                record.relationships.previous = previous.id

            self._records[record.id] = record
            await self._persist()

        logger.debug(f"Appended episodic record {record.id}", {
            "user_id": record.user_id,
            "session_id": record.session_id,
        })
        return record

    async def update(
        self,
        record_id: str,
        user_id: str,
        content: str | None = None,
        importance: float | None = None,
        tags: list[str] | None = None
    ) -> EpisodicMemoryRecord:
        """
        Edit a record owned by `user_id`.

        Raises:
            KeyError: No such record
            PermissionError: The record belongs to another user
        """
        async with self._lock:
            record = self._owned(record_id, user_id)
            if content is not None:
                record.content = content
            if importance is not None:
                record.metadata.importance = max(0.0, min(1.0, float(importance)))
            if tags is not None:
                record.metadata.tags = sorted(set(tags))
            await self._persist()
        return record

    async def delete(self, record_id: str, user_id: str) -> bool:
        """Delete a record owned by `user_id`; False when it does not exist."""
        async with self._lock:
            if record_id not in self._records:
                return False
            record = self._owned(record_id, user_id)

            # Re-link the neighbours around the removed record
            previous = self._records.get(record.relationships.previous or "")
            following = self._records.get(record.relationships.next or "")
            if previous is not None:
                previous.relationships.next = following.id if following else None
            if following is not None:
                following.relationships.previous = previous.id if previous else None

            del self._records[record_id]
            await self._persist()
        return True

    async def clear_user(self, user_id: str) -> int:
        """Remove every record of a user. Returns the number removed."""
        async with self._lock:
            doomed = [rid for rid, r in self._records.items() if r.user_id == user_id]
            for rid in doomed:
                del self._records[rid]
            if doomed:
                await self._persist()
        logger.info(f"Cleared {len(doomed)} episodic records for {user_id}")
        return len(doomed)

    def _owned(self, record_id: str, user_id: str) -> EpisodicMemoryRecord:
        record = self._records.get(record_id)
        if record is None:
            raise KeyError(record_id)
        if record.user_id != user_id:
            raise PermissionError(f"Record {record_id} does not belong to {user_id}")
        return record

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get(self, record_id: str) -> EpisodicMemoryRecord | None:
        return self._records.get(record_id)

    async def query(
        self,
        user_id: str,
        session_id: str | None,
        text: str | None = None,
        tags: list[str] | None = None,
        since: datetime | None = None,
        limit: int | None = None
    ) -> list[EpisodicMemoryRecord]:
        """
        Records of a user's session, most recent first.

        Args:
            user_id: Owning user
            session_id: Session to read; None reads across all sessions
            text: Optional free-text filter (any keyword in content or tags)
            tags: Optional tags that must all be present
            since: Only records at or after this time
            limit: Maximum number of records
        """
        records = self._session_records(user_id, session_id)
        if text:
            records = [r for r in records if _matches_text(r, text)]
        if tags:
            wanted = set(tags)
            records = [r for r in records if wanted.issubset(r.metadata.tags)]
        if since is not None:
            records = [r for r in records if r.timestamp >= since]

        records = self._newest_first(records)
        return records if limit is None else records[:limit]

    async def search(
        self,
        user_id: str,
        free_text: str,
        session_id: str | None = None,
        limit: int = 10
    ) -> list[ScoredRecord]:
        """
        Keyword search over a user's records.

        The score is the fraction of query keywords found in the content
        or tags, so it lies in [0, 1]. Records with no match are omitted.
        """
        keywords = _keywords(free_text)
        if not keywords:
            return []

        hits: list[ScoredRecord] = []
        for record in self._session_records(user_id, session_id):
            haystack = record.content.lower()
            tags = [tag.lower() for tag in record.metadata.tags]
            matched = sum(1 for kw in keywords if kw in haystack or kw in tags)
            if matched:
                hits.append(ScoredRecord(record=record, score=matched / len(keywords)))

        hits.sort(key=lambda hit: (-hit.score, -hit.record.timestamp.timestamp(), hit.record.id))
        return hits[:limit]

    async def stats(self, user_id: str) -> dict:
        records = self._session_records(user_id, None)
        if not records:
            return {"count": 0, "sessions": 0, "oldest": None, "newest": None}
        ordered = self._newest_first(records)
        return {
            "count": len(records),
            "sessions": len({r.session_id for r in records}),
            "oldest": ordered[-1].timestamp.isoformat(),
            "newest": ordered[0].timestamp.isoformat(),
        }

    def __len__(self) -> int:
        return len(self._records)


def new_interaction_record(
    user_id: str,
    session_id: str,
    query: str,
    answer: str,
    importance: float,
    tags: list[str],
    context: dict | None = None
) -> EpisodicMemoryRecord:
    """Build the record stored for one question/answer turn."""
    return EpisodicMemoryRecord(
        user_id=user_id,
        session_id=session_id,
        content=f"User: {query}\nAssistant: {answer}",
        timestamp=utc_now(),
        context=dict(context or {}),
        metadata=EpisodicMetadata(importance=importance, tags=tags, source="agent"),
    )
