from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .oracle import OracleError, extract_json_object
from .prompts import build_merge_prompt, build_similarity_prompt
from .similarity import jaccard
from .state import BuddyContext
from .types import (
    CandidateEntry,
    DedupResult,
    MatchTier,
    MemoryEntry,
    generate_id,
    now_iso,
    truncate_title,
    union_tags,
)

logger = logging.getLogger(__name__)

# Oracle replies that echo the merge instructions instead of real content.
PLACEHOLDER_RE = re.compile(
    r"^merged (title|content)|max \d+ chars|combine key points|remove duplicates",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class SimilarityVerdict:
    similar: bool = False
    score: float = 0.0
    reason: str = ""


@dataclass
class MatchSet:
    matches: list[MemoryEntry] = field(default_factory=list)
    tier: MatchTier = "lexical"


def _combined(title: str, content: str) -> str:
    return f"{title} {content}"


def concat_merge(existing: MemoryEntry, title: str, content: str) -> tuple[str, str]:
    return truncate_title(title), f"[Previous] {existing.content}\n\n{content}"


class DedupEngine:
    """Create, merge or skip a candidate entry against the stored memories.

    Tier 1 compares word-set Jaccard similarity with every stored entry.
    Tier 2 only runs when tier 1 finds nothing and the oracle is reachable:
    the most recent entries are each judged by the oracle. A single match is
    merged with the oracle's help; several matches, or one match without an
    oracle, are reported back as skipped for the caller to force.
    """

    def __init__(self, ctx: BuddyContext) -> None:
        self.ctx = ctx

    @property
    def lexical_threshold(self) -> float:
        return self.ctx.config.dedup_lexical_threshold

    @property
    def semantic_threshold(self) -> float:
        return self.ctx.config.dedup_semantic_threshold

    def lexical_matches(self, text: str, threshold: float | None = None) -> list[MemoryEntry]:
        limit = self.lexical_threshold if threshold is None else threshold
        return [
            entry
            for entry in self.ctx.memories
            if jaccard(text, _combined(entry.title, entry.content)) >= limit
        ]

    async def semantic_check(self, text_a: str, text_b: str) -> SimilarityVerdict:
        try:
            reply = await self.ctx.oracle.ask(build_similarity_prompt(text_a, text_b))
        except OracleError as exc:
            logger.warning("semantic similarity check failed", exc_info=exc)
            return SimilarityVerdict(reason="oracle error")
        parsed = extract_json_object(reply)
        if parsed is None:
            logger.info("semantic similarity reply was not json")
            return SimilarityVerdict(reason="parse error")
        score = parsed.get("score")
        reason = parsed.get("reason")
        return SimilarityVerdict(
            similar=parsed.get("similar") is True,
            score=float(score) if isinstance(score, (int, float)) else 0.0,
            reason=reason if isinstance(reason, str) else "",
        )

    async def find_similar(self, title: str, content: str, *, use_oracle: bool = True) -> MatchSet:
        combined = _combined(title, content)
        lexical = self.lexical_matches(combined)
        if lexical:
            return MatchSet(lexical, "lexical")
        if not use_oracle or not self.ctx.memories or not self.ctx.oracle_available():
            return MatchSet([], "lexical")
        window = self.ctx.memories[-self.ctx.config.dedup_semantic_window :]
        semantic: list[MemoryEntry] = []
        for entry in window:
            verdict = await self.semantic_check(combined, _combined(entry.title, entry.content))
            if verdict.similar and verdict.score >= self.semantic_threshold:
                logger.info(
                    "oracle judged entry similar",
                    extra={"memory_id": entry.id, "score": verdict.score},
                )
                semantic.append(entry)
        if semantic:
            return MatchSet(semantic, "semantic")
        return MatchSet([], "lexical")

    async def merge_text(self, existing: MemoryEntry, title: str, content: str) -> tuple[str, str]:
        try:
            reply = await self.ctx.oracle.ask(build_merge_prompt(existing, title, content))
        except OracleError as exc:
            logger.warning("oracle merge failed, concatenating", exc_info=exc)
            return concat_merge(existing, title, content)
        parsed = extract_json_object(reply)
        merged_title = parsed.get("title") if parsed else None
        merged_content = parsed.get("content") if parsed else None
        if not isinstance(merged_title, str) or not isinstance(merged_content, str):
            logger.info("oracle merge reply unusable, concatenating")
            return concat_merge(existing, title, content)
        if not merged_title.strip() or not merged_content.strip():
            return concat_merge(existing, title, content)
        if PLACEHOLDER_RE.search(merged_title) or PLACEHOLDER_RE.search(merged_content):
            logger.info("oracle echoed merge template, concatenating")
            return concat_merge(existing, title, content)
        return truncate_title(merged_title), merged_content.strip()

    def _create(self, candidate: CandidateEntry) -> MemoryEntry:
        entry = MemoryEntry(
            id=generate_id("mem"),
            type=candidate.type,
            title=candidate.title,
            content=candidate.content,
            tags=union_tags(candidate.tags),
            timestamp=now_iso(),
        )
        self.ctx.memories.append(entry)
        self.ctx.save_memories()
        self.ctx.stats.memories_created += 1
        return entry

    async def add_entry(self, candidate: CandidateEntry, force_save: bool = False) -> DedupResult:
        if force_save:
            entry = self._create(candidate)
            return DedupResult("created", f"Memory created: {entry.title}", entry=entry)

        found = await self.find_similar(candidate.title, candidate.content)
        if not found.matches:
            entry = self._create(candidate)
            return DedupResult("created", f"Memory created: {entry.title}", entry=entry)

        if len(found.matches) == 1 and self.ctx.oracle_available():
            existing = found.matches[0]
            title, content = await self.merge_text(existing, candidate.title, candidate.content)
            existing.title = title
            existing.content = content
            existing.timestamp = now_iso()
            existing.tags = union_tags(existing.tags, candidate.tags)
            self.ctx.save_memories()
            self.ctx.stats.memories_merged += 1
            return DedupResult(
                "merged",
                f"Memory merged with existing ({found.tier}): {title}",
                entry=existing,
                similar=list(found.matches),
                tier=found.tier,
            )

        count = len(found.matches)
        noun = "memory" if count == 1 else "memories"
        return DedupResult(
            "skipped",
            f"Found {count} similar {noun} (via {found.tier}). Use force to save anyway.",
            similar=list(found.matches),
            tier=found.tier,
        )

    def save_with_sync_dedup(self, entry: MemoryEntry) -> MemoryEntry:
        """Exit-time variant: no oracle, no skip path.

        The best lexical match at or above the sync threshold is overwritten
        in place by the newer entry; otherwise the entry is appended.
        """
        combined = _combined(entry.title, entry.content)
        threshold = self.ctx.config.sync_lexical_threshold
        best: MemoryEntry | None = None
        best_score = 0.0
        for existing in self.ctx.memories:
            score = jaccard(combined, _combined(existing.title, existing.content))
            if score >= threshold and score > best_score:
                best, best_score = existing, score

        if best is None:
            self.ctx.memories.append(entry)
            self.ctx.save_memories()
            self.ctx.stats.memories_created += 1
            return entry

        logger.info(
            "sync dedup merging into existing entry",
            extra={"memory_id": best.id, "score": round(best_score, 2)},
        )
        best.title = truncate_title(entry.title)
        best.content = entry.content
        best.timestamp = entry.timestamp
        best.tags = union_tags(best.tags, entry.tags)
        self.ctx.save_memories()
        self.ctx.stats.memories_merged += 1
        return best
