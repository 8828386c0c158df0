"""Tests for the review client, its answer parsing and the conflict-marker parser."""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from hive.config import AIConfig, DEFAULT_AI_MODELS
from hive.core.errors import AIUnavailableError
from hive.core.tasks import new_task
from hive.db.models import ChangeType, DiffStats, FileChange, FileDiffStat, FileOverlap, TaskDiffAnalysis
from hive.integrations import ai
from hive.integrations.ai import (
    ConflictBlock,
    ReviewClient,
    ReviewResult,
    extract_json,
    parse_conflict_markers,
)


class FakeTransport:
    """Records prompts and replays canned answers."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    async def __call__(self, prompt, model, temperature):
        self.calls.append((prompt, model, temperature))
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def enabled_config(**overrides) -> AIConfig:
    return AIConfig(enabled=True, api_key="test-key", **overrides)


REVIEW_ANSWER = {
    "concerns": [
        {
            "severity": "warning",
            "file": "app.py",
            "line": 12,
            "title": "Unchecked input",
            "description": "The value is used without validation.",
        }
    ],
    "positives": ["Small, focused change"],
    "summary": "Looks mostly fine.",
    "recommendation": "comment",
}


class TestClientConfiguration:
    def test_disabled(self):
        with pytest.raises(AIUnavailableError) as exc_info:
            ReviewClient.from_config(AIConfig())
        assert "ai.enabled" in exc_info.value.hint

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(AIUnavailableError) as exc_info:
            ReviewClient.from_config(AIConfig(enabled=True))
        assert "ANTHROPIC_API_KEY" in exc_info.value.hint

    def test_unsupported_provider(self, monkeypatch):
        monkeypatch.delitem(ai._TRANSPORTS, "openai")
        with pytest.raises(AIUnavailableError) as exc_info:
            ReviewClient.from_config(enabled_config(provider="openai"))
        assert "anthropic" in exc_info.value.hint

    def test_config_rejects_unknown_provider(self):
        with pytest.raises(PydanticValidationError):
            AIConfig(provider="google")

    def test_key_from_environment(self, monkeypatch):
        seen = []
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        monkeypatch.setitem(ai._TRANSPORTS, "openai", lambda key: seen.append(key) or FakeTransport())
        client = ReviewClient.from_config(AIConfig(enabled=True, provider="openai", model=DEFAULT_AI_MODELS["openai"]))
        assert seen == ["env-key"]
        assert client.model == DEFAULT_AI_MODELS["openai"]


class TestGenerate:
    @pytest.mark.asyncio
    async def test_parses_fenced_json(self):
        transport = FakeTransport("Here you go:\n```json\n" + json.dumps(REVIEW_ANSWER) + "\n```")
        client = ReviewClient(enabled_config(), transport)
        result = await client.generate("Review this", ReviewResult)
        assert result.recommendation == "comment"
        assert result.concerns[0].line == 12
        prompt, model, _ = transport.calls[0]
        assert prompt.startswith("Review this")
        assert '"recommendation"' in prompt
        assert model == DEFAULT_AI_MODELS["anthropic"]

    @pytest.mark.asyncio
    async def test_malformed_answer(self):
        client = ReviewClient(enabled_config(), FakeTransport('{"summary": "no recommendation"}'))
        with pytest.raises(AIUnavailableError):
            await client.generate("Review this", ReviewResult)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        client = ReviewClient(enabled_config(), FakeTransport(RuntimeError("connection reset")))
        with pytest.raises(AIUnavailableError) as exc_info:
            await client.generate("Review this", ReviewResult)
        assert "connection reset" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_review_task(self):
        transport = FakeTransport(json.dumps(REVIEW_ANSWER))
        client = ReviewClient(enabled_config(), transport)
        task = new_task("add-login", "Add login", "/repo", ".worktrees")
        stats = DiffStats(files=[FileDiffStat(file="app.py", insertions=4, deletions=1, change_type=ChangeType.MODIFIED)])
        result = await ai.review_task(client, task, "diff --git a/app.py b/app.py\n", stats)
        assert result.summary == "Looks mostly fine."
        assert "app.py (+4 -1)" in transport.calls[0][0]

    @pytest.mark.asyncio
    async def test_analyze_batch_accepts_camel_case(self):
        answer = {
            "taskSummaries": [{"slug": "x", "summary": "Does x", "impact": "low"}],
            "conflicts": [
                {
                    "file": "README.md",
                    "severity": "info",
                    "conflictType": "content",
                    "analysis": "Both edit the title.",
                    "suggestedResolution": "Keep both headings.",
                    "affectedTasks": ["x", "y"],
                }
            ],
            "mergeStrategy": {
                "recommendedOrder": ["x", "y"],
                "reasoning": "x is smaller.",
                "estimatedDifficulty": "easy",
            },
            "overallAssessment": "Low risk.",
        }
        transport = FakeTransport(json.dumps(answer))
        client = ReviewClient(enabled_config(), transport)
        analyses = [
            TaskDiffAnalysis(
                task=new_task(slug, slug, "/repo", ".worktrees"),
                files=[FileChange(path="README.md", type=ChangeType.MODIFIED, additions=1)],
                total_additions=1,
            )
            for slug in ("x", "y")
        ]
        report = await ai.analyze_batch(client, analyses, [FileOverlap(file="README.md", tasks=["x", "y"])])
        assert report.merge_strategy.recommended_order == ["x", "y"]
        assert report.conflicts[0].affected_tasks == ["x", "y"]
        assert "OVERLAPPING FILES" in transport.calls[0][0]

    @pytest.mark.asyncio
    async def test_detailed_conflict_names_tasks(self):
        answer = {
            "file": "whatever",
            "severity": "warning",
            "conflictType": "content",
            "analysis": "Same function edited.",
            "suggestedResolution": "Merge by hand.",
        }
        client = ReviewClient(enabled_config(), FakeTransport(json.dumps(answer)))
        tasks = [new_task(s, s, "/repo", ".worktrees") for s in ("x", "y")]
        prediction = await ai.analyze_detailed_conflict(
            client, "app.py", {"main": "a", "x": "b", "y": "c"}, tasks
        )
        assert prediction.file == "app.py"
        assert prediction.affected_tasks == ["x", "y"]

    @pytest.mark.asyncio
    async def test_resolve_conflict(self):
        answer = {
            "analysis": "Both add a line.",
            "suggestedResolution": "a\nb",
            "confidence": 80,
            "reasoning": "Order does not matter.",
        }
        transport = FakeTransport(json.dumps(answer))
        client = ReviewClient(enabled_config(), transport)
        block = ConflictBlock(file="notes.txt", start_line=3, main_version="a", feature_version="b")
        resolution = await ai.resolve_conflict(client, block, context="surrounding text")
        assert resolution.file == "notes.txt"
        assert resolution.confidence == 80
        assert "surrounding text" in transport.calls[0][0]

    @pytest.mark.asyncio
    async def test_confidence_out_of_range(self):
        answer = {"analysis": "x", "suggestedResolution": "y", "confidence": 150, "reasoning": "z"}
        client = ReviewClient(enabled_config(), FakeTransport(json.dumps(answer)))
        block = ConflictBlock(file="f", start_line=1, main_version="a", feature_version="b")
        with pytest.raises(AIUnavailableError):
            await ai.resolve_conflict(client, block)


class TestParsing:
    def test_extract_json_balanced(self):
        text = 'Sure! {"a": {"b": "}"}, "c": "say \\"hi\\""} and then more {junk}'
        assert json.loads(extract_json(text)) == {"a": {"b": "}"}, "c": 'say "hi"'}

    def test_extract_json_without_object(self):
        assert extract_json("  nothing here ") == "nothing here"

    def test_conflict_markers(self):
        content = (
            "line one\n"
            "<<<<<<< HEAD\n"
            "ours 1\n"
            "ours 2\n"
            "=======\n"
            "theirs\n"
            ">>>>>>> hive/feature\n"
            "middle\n"
            "<<<<<<< HEAD\n"
            "mine\n"
            "||||||| base\n"
            "original\n"
            "=======\n"
            "yours\n"
            ">>>>>>> hive/other\n"
        )
        blocks = parse_conflict_markers(content, "notes.txt")
        assert len(blocks) == 2
        assert blocks[0].start_line == 2
        assert blocks[0].main_version == "ours 1\nours 2"
        assert blocks[0].feature_version == "theirs"
        assert blocks[1].start_line == 9
        assert blocks[1].main_version == "mine"
        assert blocks[1].feature_version == "yours"

    def test_no_markers(self):
        assert parse_conflict_markers("clean\nfile\n", "f") == []
