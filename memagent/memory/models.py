"""
Memory Data Model
=================

Two structurally different record types and the bounded context built
from them for a single request.

    EpisodicMemoryRecord  - one interaction turn, scoped to (user, session),
                            time-ordered and linked to its neighbours
    SemanticMemoryRecord  - one concept/fact with an embedding vector,
                            scoped to a user, independent of sessions
    MemoryContext         - the scored, truncated selection of both kinds
                            handed to the router

Serialization (`to_dict`) uses the camelCase keys of the public result
shape; `from_dict` accepts the same keys back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utc_now()


def _clamp_unit(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


# ==============================================================================
# Episodic
# ==============================================================================

@dataclass
class EpisodicMetadata:
    importance: float = 0.5
    tags: list[str] = field(default_factory=list)
    source: str = "agent"

    def __post_init__(self):
        self.importance = _clamp_unit(self.importance)
        # Tags behave as a set but keep a stable order for serialization
        self.tags = sorted(set(self.tags))


@dataclass
class EpisodicRelationships:
    previous: str | None = None
    next: str | None = None
    related: list[str] = field(default_factory=list)


@dataclass
class EpisodicMemoryRecord:
    """
    A time-ordered record of one interaction.

    Attributes:
        id: Store-assigned identifier ("" until appended)
        user_id: Owning user
        session_id: Session the interaction belongs to
        timestamp: When it happened (UTC)
        content: The interaction text
        context: Free-form key/value data (intent, confidence, ...)
        metadata: Importance in [0, 1] and tags
        relationships: Links to previous/next/related record ids
    """
    user_id: str
    session_id: str
    content: str
    id: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    context: dict[str, Any] = field(default_factory=dict)
    metadata: EpisodicMetadata = field(default_factory=EpisodicMetadata)
    relationships: EpisodicRelationships = field(default_factory=EpisodicRelationships)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "content": self.content,
            "context": self.context,
            "metadata": {
                "importance": self.metadata.importance,
                "tags": list(self.metadata.tags),
                "source": self.metadata.source,
            },
            "relationships": {
                "previous": self.relationships.previous,
                "next": self.relationships.next,
                "related": list(self.relationships.related),
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpisodicMemoryRecord":
        metadata = data.get("metadata") or {}
        relationships = data.get("relationships") or {}
        return cls(
            id=data.get("id", ""),
            user_id=data["userId"],
            session_id=data["sessionId"],
            timestamp=_parse_time(data.get("timestamp")),
            content=data.get("content", ""),
            context=dict(data.get("context") or {}),
            metadata=EpisodicMetadata(
                importance=metadata.get("importance", 0.5),
                tags=list(metadata.get("tags") or []),
                source=metadata.get("source", "agent"),
            ),
            relationships=EpisodicRelationships(
                previous=relationships.get("previous"),
                next=relationships.get("next"),
                related=list(relationships.get("related") or []),
            ),
        )


# ==============================================================================
# Semantic
# ==============================================================================

@dataclass
class SemanticMetadata:
    category: str = "general"
    confidence: float = 0.5
    access_count: int = 0
    last_accessed: datetime | None = None
    source: str = "agent"

    def __post_init__(self):
        self.confidence = _clamp_unit(self.confidence)


@dataclass
class SemanticRelationships:
    similar: list[str] = field(default_factory=list)
    parent: str | None = None
    children: list[str] = field(default_factory=list)


@dataclass
class SemanticMemoryRecord:
    """
    A concept or fact indexed by vector similarity.

    The vector is opaque to the orchestration core: it is produced by the
    embedding function and only ever handed to the semantic store.
    """
    user_id: str
    concept: str
    description: str
    id: str = ""
    vector: list[float] = field(default_factory=list)
    metadata: SemanticMetadata = field(default_factory=SemanticMetadata)
    relationships: SemanticRelationships = field(default_factory=SemanticRelationships)

    @property
    def text(self) -> str:
        """The text that gets embedded for this record."""
        return f"{self.concept}: {self.description}"

    def to_dict(self, include_vector: bool = True) -> dict:
        data = {
            "id": self.id,
            "userId": self.user_id,
            "concept": self.concept,
            "description": self.description,
            "metadata": {
                "category": self.metadata.category,
                "confidence": self.metadata.confidence,
                "accessCount": self.metadata.access_count,
                "lastAccessed": self.metadata.last_accessed.isoformat() if self.metadata.last_accessed else None,
                "source": self.metadata.source,
            },
            "relationships": {
                "similar": list(self.relationships.similar),
                "parent": self.relationships.parent,
                "children": list(self.relationships.children),
            },
        }
        if include_vector:
            data["vector"] = list(self.vector)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SemanticMemoryRecord":
        metadata = data.get("metadata") or {}
        relationships = data.get("relationships") or {}
        last_accessed = metadata.get("lastAccessed")
        return cls(
            id=data.get("id", ""),
            user_id=data["userId"],
            concept=data.get("concept", ""),
            description=data.get("description", ""),
            vector=list(data.get("vector") or []),
            metadata=SemanticMetadata(
                category=metadata.get("category", "general"),
                confidence=metadata.get("confidence", 0.5),
                access_count=int(metadata.get("accessCount", 0)),
                last_accessed=_parse_time(last_accessed) if last_accessed else None,
                source=metadata.get("source", "agent"),
            ),
            relationships=SemanticRelationships(
                similar=list(relationships.get("similar") or []),
                parent=relationships.get("parent"),
                children=list(relationships.get("children") or []),
            ),
        )


# ==============================================================================
# Assembled context
# ==============================================================================

@dataclass
class ScoredRecord:
    """A store hit: the record and the score it was ranked by."""
    record: EpisodicMemoryRecord | SemanticMemoryRecord
    score: float

    @property
    def id(self) -> str:
        return self.record.id


@dataclass
class ContextWindow:
    """
    Time span and quality of an assembled context.

    `degraded` is set when a store failed, in which case
    `relevance_score` is only a lower bound of what a full lookup would give.
    """
    start_time: datetime = field(default_factory=utc_now)
    end_time: datetime = field(default_factory=utc_now)
    relevance_score: float = 0.0
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "relevanceScore": self.relevance_score,
            "degraded": self.degraded,
        }


@dataclass
class MemoryContext:
    """
    The bounded, scored memory selected for one request.

    Both sequences are ordered most relevant first and kept separate.
    `scores` maps record id to the score it was ranked by; `failures`
    names the store branches that failed ("episodic", "semantic").
    """
    user_id: str
    session_id: str
    episodic_memories: list[EpisodicMemoryRecord] = field(default_factory=list)
    semantic_memories: list[SemanticMemoryRecord] = field(default_factory=list)
    context_window: ContextWindow = field(default_factory=ContextWindow)
    scores: dict[str, float] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, user_id: str, session_id: str, failures: list[str] | None = None) -> "MemoryContext":
        failures = list(failures or [])
        return cls(
            user_id=user_id,
            session_id=session_id,
            context_window=ContextWindow(degraded=bool(failures)),
            failures=failures,
        )

    @property
    def total(self) -> int:
        return len(self.episodic_memories) + len(self.semantic_memories)

    @property
    def degraded(self) -> bool:
        return self.context_window.degraded

    def is_empty(self) -> bool:
        return self.total == 0

    def score_of(self, record_id: str) -> float:
        return self.scores.get(record_id, 0.0)

    def to_dict(self, detail: str = "standard") -> dict:
        """
        Serialize for the result payload.

        Args:
            detail: "full" keeps vectors, "standard" strips them,
                    "minimal" reduces each record to its id and score
        """
        if detail == "minimal":
            episodic = [{"id": m.id, "score": self.score_of(m.id)} for m in self.episodic_memories]
            semantic = [{"id": m.id, "score": self.score_of(m.id)} for m in self.semantic_memories]
        else:
            episodic = [
                {**m.to_dict(), "score": self.score_of(m.id)}
                for m in self.episodic_memories
            ]
            semantic = [
                {**m.to_dict(include_vector=detail == "full"), "score": self.score_of(m.id)}
                for m in self.semantic_memories
            ]

        return {
            "userId": self.user_id,
            "sessionId": self.session_id,
            "episodicMemories": episodic,
            "semanticMemories": semantic,
            "contextWindow": self.context_window.to_dict(),
            "failures": list(self.failures),
        }
