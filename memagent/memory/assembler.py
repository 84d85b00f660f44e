"""
Memory Context Assembler
========================

Builds the bounded, scored MemoryContext for one request.

The assembly process:
1. Query the episodic and semantic stores concurrently, each under its
   own timeout and each for up to `candidate_limit` candidates. A failing
   branch is recorded and the other one proceeds.
2. Score the candidates:
     episodic  = (w_r * recency + w_i * importance) / (w_r + w_i)
                 where recency decays linearly from 1.0 (newest candidate)
                 to 0.0 (oldest candidate) over the candidates' time span
     semantic  = similarity reported by the store, already in [0, 1]
3. Sort each kind by score (ties: newer first, then id) and split the
   result cap between the two kinds proportionally to their candidate
   counts. Each kind that has candidates keeps at least one slot.
4. Describe the window: earliest returned episodic timestamp to now, with
   the mean of the returned scores as its relevance.

Nothing here raises on store failures: a total outage yields an empty,
degraded context.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable

from memagent.memory.episodic import EpisodicStore
from memagent.memory.models import (
    ContextWindow,
    EpisodicMemoryRecord,
    MemoryContext,
    ScoredRecord,
    utc_now,
)
from memagent.memory.semantic import SemanticStore
from memagent.utils.config import MemoryConfig, get_config
from memagent.utils.errors import MemoryUnavailableError, StepResult, ValidationError
from memagent.utils.logger import Logger
from memagent.utils.timing import Stopwatch

logger = Logger("MemoryAssembler")


@dataclass
class ContextOptions:
    """
    Per-call overrides; None means "use the configured value".

    Attributes:
        max_results: Cap on episodic + semantic records
        similarity_threshold: Minimum similarity for semantic hits
        recency_weight: Episodic weight of recency
        importance_weight: Episodic weight of metadata.importance
        text_filter: Only consider episodic records sharing a keyword with the query
        pin_record_id: Episodic record that must survive truncation
        timeout: Seconds allowed per store lookup
    """
    max_results: int | None = None
    similarity_threshold: float | None = None
    recency_weight: float | None = None
    importance_weight: float | None = None
    text_filter: bool = False
    pin_record_id: str | None = None
    timeout: float | None = None


def score_episodic(
    records: list[EpisodicMemoryRecord],
    recency_weight: float,
    importance_weight: float
) -> list[ScoredRecord]:
    """Score episodic candidates by recency and importance, best first."""
    if not records:
        return []

    stamps = [r.timestamp.timestamp() for r in records]
    oldest, newest = min(stamps), max(stamps)
    span = newest - oldest
    total_weight = recency_weight + importance_weight

    scored = []
    for record, stamp in zip(records, stamps):
        recency = 1.0 if span == 0 else (stamp - oldest) / span
        score = (recency_weight * recency + importance_weight * record.metadata.importance) / total_weight
        scored.append(ScoredRecord(record=record, score=round(score, 6)))

    scored.sort(key=lambda s: (-s.score, -s.record.timestamp.timestamp(), s.record.id))
    return scored


def allocate_slots(
    episodic_count: int,
    semantic_count: int,
    limit: int,
    episodic_top: float = 0.0,
    semantic_top: float = 0.0
) -> tuple[int, int]:
    """
    Split `limit` result slots between the two kinds.

    Proportional to the candidate counts, each non-empty side gets at
    least one slot, and slots one side cannot use go to the other. With a
    single slot the side with the better top score takes it.
    """
    if episodic_count + semantic_count <= limit:
        return episodic_count, semantic_count
    if episodic_count == 0:
        return 0, min(semantic_count, limit)
    if semantic_count == 0:
        return min(episodic_count, limit), 0
    if limit == 1:
        return (1, 0) if episodic_top >= semantic_top else (0, 1)

    episodic_share = round(limit * episodic_count / (episodic_count + semantic_count))
    episodic_share = max(1, min(limit - 1, episodic_share))
    semantic_share = limit - episodic_share

    if episodic_share > episodic_count:
        semantic_share += episodic_share - episodic_count
        episodic_share = episodic_count
    if semantic_share > semantic_count:
        episodic_share += semantic_share - semantic_count
        semantic_share = semantic_count

    return episodic_share, semantic_share


class MemoryContextAssembler:
    """
    Concurrent two-store lookup, scoring and truncation.

    Example:
        assembler = MemoryContextAssembler(episodic_store, semantic_store)

        context = await assembler.build_context(
            "U1", "S1", "What programming language do I like?",
            ContextOptions(max_results=5)
        )
        for record in context.episodic_memories:
            print(record.content, context.score_of(record.id))
    """

    def __init__(
        self,
        episodic: EpisodicStore,
        semantic: SemanticStore,
        settings: MemoryConfig | None = None
    ):
        self.episodic = episodic
        self.semantic = semantic
        self.settings = settings or get_config().memory

    def _resolve(self, options: ContextOptions | None) -> dict[str, Any]:
        options = options or ContextOptions()
        resolved = {
            "max_results": self.settings.max_results if options.max_results is None else options.max_results,
            "threshold": (
                self.settings.similarity_threshold
                if options.similarity_threshold is None else options.similarity_threshold
            ),
            "recency_weight": (
                self.settings.recency_weight if options.recency_weight is None else options.recency_weight
            ),
            "importance_weight": (
                self.settings.importance_weight if options.importance_weight is None else options.importance_weight
            ),
            "timeout": self.settings.lookup_timeout if options.timeout is None else options.timeout,
            "text_filter": options.text_filter,
            "pin": options.pin_record_id,
        }

        if resolved["max_results"] < 0:
            raise ValidationError("max_results must be >= 0", field="max_results")
        if not 0.0 <= resolved["threshold"] <= 1.0:
            raise ValidationError("similarity_threshold must be in [0, 1]", field="similarity_threshold")
        if resolved["recency_weight"] < 0 or resolved["importance_weight"] < 0:
            raise ValidationError("scoring weights must be >= 0", field="recency_weight")
        if resolved["recency_weight"] + resolved["importance_weight"] <= 0:
            raise ValidationError("at least one scoring weight must be positive", field="importance_weight")
        return resolved

    async def _lookup(self, store: str, work: Awaitable, timeout: float) -> StepResult:
        """Run one store branch, converting any failure into a StepResult."""
        with Stopwatch() as sw:
            try:
                value = await asyncio.wait_for(work, timeout=timeout)
            except asyncio.TimeoutError:
                error = MemoryUnavailableError(f"{store} lookup timed out after {timeout}s", store)
            except Exception as e:
                error = MemoryUnavailableError(f"{store} lookup failed: {e}", store)
            else:
                error = None

        if error is not None:
            logger.child(store).warning(str(error), {"duration_ms": sw.ms})
            return StepResult.failure(error, duration_ms=sw.ms)
        return StepResult.success(value, duration_ms=sw.ms)

    async def _episodic_candidates(self, user_id: str, session_id: str, query: str, text_filter: bool):
        return await self.episodic.query(
            user_id,
            session_id,
            text=query if text_filter else None,
            limit=self.settings.candidate_limit,
        )

    async def build_context(
        self,
        user_id: str,
        session_id: str,
        query: str,
        options: ContextOptions | None = None
    ) -> MemoryContext:
        """
        Assemble the memory context for a query.

        Args:
            user_id: Owning user of both stores' records
            session_id: Session whose episodic records are considered
            query: The request text (embedded for the semantic lookup)
            options: Per-call overrides

        Returns:
            MemoryContext; empty and degraded when both stores failed

        Raises:
            ValidationError: Option values out of range
        """
        params = self._resolve(options)
        limit = params["max_results"]
        if limit == 0:
            return MemoryContext.empty(user_id, session_id)

        episodic_result, semantic_result = await asyncio.gather(
            self._lookup(
                "episodic",
                self._episodic_candidates(user_id, session_id, query, params["text_filter"]),
                params["timeout"],
            ),
            self._lookup(
                "semantic",
                self.semantic.search_text(
                    user_id, query, threshold=params["threshold"], limit=max(limit, self.settings.candidate_limit)
                ),
                params["timeout"],
            ),
        )

        failures = [
            name for name, result in (("episodic", episodic_result), ("semantic", semantic_result))
            if not result.ok
        ]

        episodic = score_episodic(
            episodic_result.unwrap_or([]),
            params["recency_weight"],
            params["importance_weight"],
        )
        semantic = sorted(semantic_result.unwrap_or([]), key=lambda s: (-s.score, s.record.id))

        pinned = next((s for s in episodic if s.id == params["pin"]), None) if params["pin"] else None

        episodic_slots, semantic_slots = allocate_slots(
            len(episodic),
            len(semantic),
            limit,
            episodic_top=1.0 if pinned else (episodic[0].score if episodic else 0.0),
            semantic_top=semantic[0].score if semantic else 0.0,
        )

        kept_episodic = episodic[:episodic_slots]
        if pinned is not None and pinned not in kept_episodic:
            kept_episodic = kept_episodic[:-1] + [pinned]
            kept_episodic.sort(key=lambda s: (-s.score, -s.record.timestamp.timestamp(), s.record.id))
        kept_semantic = semantic[:semantic_slots]

        kept = kept_episodic + kept_semantic
        now = utc_now()
        window = ContextWindow(
            start_time=min((s.record.timestamp for s in kept_episodic), default=now),
            end_time=now,
            relevance_score=round(sum(s.score for s in kept) / len(kept), 6) if kept else 0.0,
            degraded=bool(failures),
        )

        context = MemoryContext(
            user_id=user_id,
            session_id=session_id,
            episodic_memories=[s.record for s in kept_episodic],
            semantic_memories=[s.record for s in kept_semantic],
            context_window=window,
            scores={s.id: s.score for s in kept},
            failures=failures,
        )

        logger.info("Memory context assembled", {
            "episodic": len(context.episodic_memories),
            "semantic": len(context.semantic_memories),
            "candidates": len(episodic) + len(semantic),
            "degraded": context.degraded,
        })
        return context
