from __future__ import annotations

import asyncio
import json
from pathlib import Path

from codebuddy.config import CodeBuddyConfig
from codebuddy.dedup import DedupEngine, concat_merge
from codebuddy.oracle import OracleError
from codebuddy.state import BuddyContext
from codebuddy.store import MEMORIES_FILE, JsonStore
from codebuddy.types import CandidateEntry, MemoryEntry


class FakeOracle:
    def __init__(self, *replies: str | Exception, reachable: bool = True) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []
        self.reachable = reachable

    def available(self) -> bool:
        return self.reachable

    async def ask(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "{}"
        if isinstance(reply, Exception):
            raise reply
        return reply


def _ctx(tmp_path: Path, oracle: FakeOracle | None = None, *entries: MemoryEntry) -> BuddyContext:
    ctx = BuddyContext(CodeBuddyConfig(data_dir=str(tmp_path)), oracle=oracle)
    ctx.memories.extend(entries)
    return ctx


SNAKE = MemoryEntry(
    "m1",
    "feature",
    "Snake game canvas",
    "Snake game rendering on canvas with neon theme",
    tags=["canvas", "game"],
    timestamp="2026-01-01T00:00:00+00:00",
)
SNAKE_CANDIDATE = ("Snake game canvas", "Snake game rendering on canvas with neon glow")


def test_empty_store_creates(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    candidate = CandidateEntry("feature", "Login form", "Adds form")
    result = asyncio.run(DedupEngine(ctx).add_entry(candidate))
    assert result.action == "created"
    assert result.entry is not None
    assert result.entry.id.startswith("mem_")
    assert result.message == "Memory created: Login form"
    assert ctx.stats.memories_created == 1
    stored = JsonStore(tmp_path).read(MEMORIES_FILE, [])
    assert [item["id"] for item in stored] == [result.entry.id]


def test_force_save_bypasses_matches(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path, None, SNAKE)
    candidate = CandidateEntry("feature", *SNAKE_CANDIDATE)
    result = asyncio.run(DedupEngine(ctx).add_entry(candidate, force_save=True))
    assert result.action == "created"
    assert len(ctx.memories) == 2


def test_single_lexical_match_with_oracle_merges(tmp_path: Path) -> None:
    existing = MemoryEntry(**{**SNAKE.to_dict(), "tags": list(SNAKE.tags)})
    oracle = FakeOracle(json.dumps({"title": "Snake game on canvas", "content": "Merged body"}))
    ctx = _ctx(tmp_path, oracle, existing)
    candidate = CandidateEntry("feature", *SNAKE_CANDIDATE, tags=["neon", "game"])

    result = asyncio.run(DedupEngine(ctx).add_entry(candidate))

    assert result.action == "merged"
    assert result.tier == "lexical"
    assert result.entry is existing
    assert existing.title == "Snake game on canvas"
    assert existing.content == "Merged body"
    assert existing.tags == ["canvas", "game", "neon"]
    assert existing.timestamp != "2026-01-01T00:00:00+00:00"
    assert len(ctx.memories) == 1
    assert ctx.stats.memories_merged == 1
    # Lexical hit is authoritative: only the merge prompt reached the oracle.
    assert len(oracle.prompts) == 1


def test_merge_rejects_placeholder_echo(tmp_path: Path) -> None:
    existing = MemoryEntry(**{**SNAKE.to_dict(), "tags": list(SNAKE.tags)})
    oracle = FakeOracle(json.dumps({"title": "merged title", "content": "combine key points"}))
    ctx = _ctx(tmp_path, oracle, existing)
    title, content = SNAKE_CANDIDATE

    result = asyncio.run(DedupEngine(ctx).add_entry(CandidateEntry("feature", title, content)))

    assert result.action == "merged"
    assert existing.title == title
    assert existing.content == f"[Previous] {SNAKE.content}\n\n{content}"


def test_merge_falls_back_when_oracle_fails(tmp_path: Path) -> None:
    existing = MemoryEntry(**{**SNAKE.to_dict(), "tags": list(SNAKE.tags)})
    ctx = _ctx(tmp_path, FakeOracle(OracleError("boom")), existing)
    result = asyncio.run(DedupEngine(ctx).add_entry(CandidateEntry("feature", *SNAKE_CANDIDATE)))
    assert result.action == "merged"
    assert "[Previous]" in existing.content


def test_single_match_without_oracle_is_skipped(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path, None, SNAKE)
    result = asyncio.run(DedupEngine(ctx).add_entry(CandidateEntry("feature", *SNAKE_CANDIDATE)))
    assert result.action == "skipped"
    assert result.similar == [SNAKE]
    assert result.message == "Found 1 similar memory (via lexical). Use force to save anyway."
    assert len(ctx.memories) == 1


def test_two_matches_are_skipped_even_with_oracle(tmp_path: Path) -> None:
    twin = MemoryEntry("m2", "feature", SNAKE.title, SNAKE.content)
    oracle = FakeOracle()
    ctx = _ctx(tmp_path, oracle, SNAKE, twin)
    result = asyncio.run(DedupEngine(ctx).add_entry(CandidateEntry("feature", *SNAKE_CANDIDATE)))
    assert result.action == "skipped"
    assert len(result.similar) == 2
    assert oracle.prompts == []


def test_semantic_tier_runs_only_when_lexical_empty(tmp_path: Path) -> None:
    stored = [
        MemoryEntry(f"m{i}", "note", f"Unrelated topic {i}", f"alpha{i} beta{i} gamma{i}")
        for i in range(12)
    ]
    verdicts = [json.dumps({"similar": False, "score": 0.1})] * 9
    verdicts.append('Verdict: {"similar": true, "score": 0.8, "reason": "same idea"}')
    verdicts.append(json.dumps({"title": "Merged", "content": "Body"}))
    oracle = FakeOracle(*verdicts)
    ctx = _ctx(tmp_path, oracle, *stored)
    candidate = CandidateEntry("note", "Keyboard handling", "Arrow keys steer the player")

    result = asyncio.run(DedupEngine(ctx).add_entry(candidate))

    assert result.action == "merged"
    assert result.tier == "semantic"
    assert result.entry is stored[-1]
    # 10 most recent entries judged, then one merge call.
    assert len(oracle.prompts) == 11
    joined = "\n".join(oracle.prompts)
    assert "alpha0 beta0" not in joined
    assert "alpha1 beta1" not in joined
    assert "alpha2 beta2" in joined


def test_semantic_score_below_threshold_creates(tmp_path: Path) -> None:
    stored = MemoryEntry("m1", "note", "Unrelated", "alpha beta gamma")
    oracle = FakeOracle(json.dumps({"similar": True, "score": 0.7}))
    ctx = _ctx(tmp_path, oracle, stored)
    result = asyncio.run(DedupEngine(ctx).add_entry(CandidateEntry("note", "Keyboard", "Arrows")))
    assert result.action == "created"


def test_semantic_oracle_error_counts_as_not_similar(tmp_path: Path) -> None:
    stored = MemoryEntry("m1", "note", "Unrelated", "alpha beta gamma")
    oracle = FakeOracle(OracleError("timeout"), "not json at all")
    ctx = _ctx(tmp_path, oracle, stored)
    result = asyncio.run(DedupEngine(ctx).add_entry(CandidateEntry("note", "Keyboard", "Arrows")))
    assert result.action == "created"


def test_concat_merge_new_title_wins() -> None:
    title, content = concat_merge(SNAKE, "New title", "New body")
    assert title == "New title"
    assert content == f"[Previous] {SNAKE.content}\n\nNew body"


def test_sync_dedup_merges_at_lower_threshold(tmp_path: Path) -> None:
    existing = MemoryEntry("m1", "feature", "alpha beta", "gamma delta", tags=["old"])
    ctx = _ctx(tmp_path, None, existing)
    incoming = MemoryEntry("m2", "feature", "alpha beta", "gamma epsilon", tags=["new"])

    saved = DedupEngine(ctx).save_with_sync_dedup(incoming)

    assert saved is existing
    assert existing.content == "gamma epsilon"
    assert existing.tags == ["old", "new"]
    assert len(ctx.memories) == 1
    assert ctx.stats.memories_merged == 1


def test_sync_dedup_appends_when_nothing_matches(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path, None, SNAKE)
    incoming = MemoryEntry("m2", "note", "Login form", "Validates email input")
    assert DedupEngine(ctx).save_with_sync_dedup(incoming) is incoming
    assert [m.id for m in ctx.memories] == ["m1", "m2"]
