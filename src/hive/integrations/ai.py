"""Generative review client: code review, batch sync reports and conflict resolution.

The model is asked for a JSON object, which is validated against a pydantic
schema. Every way the service can fail (feature disabled, missing key or SDK,
API error, malformed answer) surfaces as AIUnavailableError.
"""

import json
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from hive.config import AIConfig, DEFAULT_AI_MODELS
from hive.core.errors import AIUnavailableError
from hive.db.models import DiffStats, FileOverlap, Task, TaskDiffAnalysis

logger = logging.getLogger(__name__)

Severity = Literal["critical", "warning", "info"]
Transport = Callable[[str, str, float], Awaitable[str]]
M = TypeVar("M", bound=BaseModel)

API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}
MAX_DIFF_CHARS = 60_000
MAX_VERSION_CHARS = 2_000


# ── Result schemas ────────────────────────────────────────────────────────────


class ReviewConcern(BaseModel):
    severity: Severity
    file: str
    line: int | None = None
    title: str
    description: str
    suggestion: str | None = None


class ReviewResult(BaseModel):
    concerns: list[ReviewConcern] = Field(default_factory=list)
    positives: list[str] = Field(default_factory=list)
    summary: str
    recommendation: Literal["approve", "request-changes", "comment"]


class TaskSummary(BaseModel):
    slug: str
    summary: str
    impact: Literal["low", "medium", "high"]
    concerns: list[str] = Field(default_factory=list)


class ConflictPrediction(BaseModel):
    file: str
    severity: Severity
    conflict_type: str = Field(alias="conflictType")
    analysis: str
    suggested_resolution: str = Field(alias="suggestedResolution")
    affected_tasks: list[str] = Field(default_factory=list, alias="affectedTasks")

    model_config = {"populate_by_name": True}


class MergeStrategy(BaseModel):
    recommended_order: list[str] = Field(alias="recommendedOrder")
    reasoning: str
    estimated_difficulty: Literal["easy", "medium", "hard"] = Field(alias="estimatedDifficulty")
    alternatives: list[str] | None = None

    model_config = {"populate_by_name": True}


class SyncReport(BaseModel):
    task_summaries: list[TaskSummary] = Field(default_factory=list, alias="taskSummaries")
    conflicts: list[ConflictPrediction] = Field(default_factory=list)
    merge_strategy: MergeStrategy = Field(alias="mergeStrategy")
    overall_assessment: str = Field(alias="overallAssessment")

    model_config = {"populate_by_name": True}


class ConflictResolution(BaseModel):
    file: str = ""
    analysis: str
    suggested_resolution: str = Field(alias="suggestedResolution")
    confidence: int = Field(ge=0, le=100)
    reasoning: str

    model_config = {"populate_by_name": True}


@dataclass
class ConflictBlock:
    file: str
    start_line: int
    main_version: str
    feature_version: str


# ── Response parsing ──────────────────────────────────────────────────────────


def extract_json(text: str) -> str:
    """Pull the first balanced JSON object out of a model answer.

    Tolerates code fences and prose around the object.
    """
    start = text.find("{")
    if start == -1:
        return text.strip()

    depth = 0
    in_string = False
    escape_next = False
    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    end = text.rfind("}")
    return text[start : end + 1] if end > start else text[start:]


def parse_conflict_markers(content: str, file_path: str) -> list[ConflictBlock]:
    """Find <<<<<<< / ======= / >>>>>>> blocks in a conflicted file."""
    blocks = []
    lines = content.split("\n")
    i = 0
    while i < len(lines):
        if lines[i].startswith("<<<<<<<"):
            start = i
            ours: list[str] = []
            theirs: list[str] = []
            i += 1
            while i < len(lines) and not lines[i].startswith(("=======", "|||||||")):
                ours.append(lines[i])
                i += 1
            if i < len(lines) and lines[i].startswith("|||||||"):
                while i < len(lines) and not lines[i].startswith("======="):
                    i += 1
            i += 1
            while i < len(lines) and not lines[i].startswith(">>>>>>>"):
                theirs.append(lines[i])
                i += 1
            blocks.append(
                ConflictBlock(
                    file=file_path,
                    start_line=start + 1,
                    main_version="\n".join(ours).strip(),
                    feature_version="\n".join(theirs).strip(),
                )
            )
        i += 1
    return blocks


# ── Transports ────────────────────────────────────────────────────────────────


def _anthropic_transport(api_key: str) -> Transport:
    try:
        import anthropic
    except ImportError as exc:
        raise AIUnavailableError(
            "anthropic package not installed",
            hint="Install the AI extra: pip install 'hive-worktrees[ai]'",
        ) from exc

    client = anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(prompt: str, model: str, temperature: float) -> str:
        response = await client.messages.create(
            model=model,
            max_tokens=4096,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(getattr(block, "text", "") or "" for block in response.content)

    return complete


def _openai_transport(api_key: str) -> Transport:
    try:
        import openai
    except ImportError as exc:
        raise AIUnavailableError(
            "openai package not installed",
            hint="Install the AI extra: pip install 'hive-worktrees[ai]'",
        ) from exc

    client = openai.AsyncOpenAI(api_key=api_key)

    async def complete(prompt: str, model: str, temperature: float) -> str:
        response = await client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    return complete


_TRANSPORTS = {
    "anthropic": _anthropic_transport,
    "openai": _openai_transport,
}


class ReviewClient:
    """Sends prompts to the configured provider and validates structured answers."""

    def __init__(self, config: AIConfig, transport: Transport | None = None):
        self.config = config
        self._transport = transport

    @classmethod
    def from_config(cls, config: AIConfig) -> "ReviewClient":
        """Build a client, raising AIUnavailableError if the feature cannot be used."""
        if not config.enabled:
            raise AIUnavailableError(
                "AI features are disabled",
                hint="Enable them with: hive config set ai.enabled true",
            )
        if config.provider not in _TRANSPORTS:
            raise AIUnavailableError(
                f'Unsupported AI provider "{config.provider}"',
                hint=f"Set one of: hive config set ai.provider {'|'.join(_TRANSPORTS)}",
            )
        api_key = config.api_key or os.environ.get(API_KEY_ENV[config.provider])
        if not api_key:
            raise AIUnavailableError(
                f'AI API key not configured for provider "{config.provider}"',
                hint=f"Set it with: hive config set ai.apiKey YOUR_KEY (or export {API_KEY_ENV[config.provider]})",
            )
        return cls(config, _TRANSPORTS[config.provider](api_key))

    @property
    def model(self) -> str:
        return self.config.model or DEFAULT_AI_MODELS[self.config.provider]

    async def generate(self, prompt: str, schema: type[M], temperature: float = 0.3) -> M:
        if self._transport is None:
            raise AIUnavailableError("No AI transport configured")

        instructions = (
            f"{prompt}\n\nRespond with a single JSON object matching this JSON schema, "
            f"and nothing else:\n{json.dumps(schema.model_json_schema(by_alias=True))}"
        )
        try:
            answer = await self._transport(instructions, self.model, temperature)
        except AIUnavailableError:
            raise
        except Exception as exc:
            logger.warning("AI request to %s failed: %s", self.config.provider, exc)
            raise AIUnavailableError(
                f"AI request failed: {exc}",
                hint="Check your network connection, API key and model name",
            ) from exc

        try:
            return schema.model_validate_json(extract_json(answer))
        except SchemaError as exc:
            logger.debug("Malformed AI answer: %s", answer)
            raise AIUnavailableError(f"AI returned a malformed response: {exc.error_count()} validation error(s)") from exc


# ── Prompts ───────────────────────────────────────────────────────────────────


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


def build_review_prompt(task: Task, diff: str, stats: DiffStats) -> str:
    files = "\n".join(f"  - {f.file} (+{f.insertions} -{f.deletions})" for f in stats.files)
    return (
        "You are an expert code reviewer. Review the following changes from a feature branch.\n\n"
        f"Task: {task.slug}\nDescription: {task.description}\n\n"
        f"Files changed: {stats.total_files}\n{files}\n"
        f"Insertions: {stats.total_insertions}, deletions: {stats.total_deletions}\n\n"
        f"Diff:\n```diff\n{_clip(diff, MAX_DIFF_CHARS)}\n```\n\n"
        "Provide concerns (severity critical/warning/info, file, optional line, title, "
        "description, optional suggestion), positives, a short summary, and a "
        "recommendation of approve, request-changes or comment."
    )


def build_batch_prompt(analyses: list[TaskDiffAnalysis], overlaps: list[FileOverlap]) -> str:
    parts = [
        "You are a master code reviewer analyzing multiple parallel development tasks "
        "that need to be merged into the main branch.\n\nTASKS:\n"
    ]
    for analysis in analyses:
        files = "\n".join(
            f"  - {f.path} ({f.type.value}, +{f.additions} -{f.deletions})" for f in analysis.files
        )
        parts.append(
            f"\n{analysis.task.slug}:\n  Description: {analysis.task.description}\n"
            f"  Files changed: {len(analysis.files)}\n{files}\n"
            f"  Total: +{analysis.total_additions} -{analysis.total_deletions}\n"
        )
    if overlaps:
        parts.append("\nOVERLAPPING FILES (modified by multiple tasks):\n")
        for overlap in overlaps:
            parts.append(f"  - {overlap.file}\n    Modified by: {', '.join(overlap.tasks)}\n")
    parts.append(
        "\nProvide task summaries (impact low/medium/high, concerns), conflict predictions "
        "for overlapping files (severity, conflict type, analysis, suggested resolution, "
        "affected tasks), a merge strategy (recommended order, reasoning, estimated "
        "difficulty easy/medium/hard, alternatives) and a one-paragraph overall assessment."
    )
    return "".join(parts)


def build_conflict_prompt(file_path: str, versions: dict[str, str]) -> str:
    parts = [f"Analyze a potential merge conflict for file: {file_path}\n\n"]
    parts.append(f"This file is modified by {len(versions) - ('main' in versions)} parallel tasks.\n")
    for source, content in versions.items():
        parts.append(f"\nVersion from {source}:\n```\n{_clip(content, MAX_VERSION_CHARS)}\n```\n")
    parts.append(
        "\nProvide severity, conflictType, a 2-3 sentence analysis, concrete "
        "suggestedResolution steps and the affectedTasks."
    )
    return "".join(parts)


def build_resolution_prompt(block: ConflictBlock, context: str | None = None) -> str:
    prompt = (
        "You are resolving a git merge conflict. Analyze both versions and suggest the best resolution.\n\n"
        f"File: {block.file}\nLine: {block.start_line}\n\n"
        f"Main branch version:\n```\n{block.main_version}\n```\n\n"
        f"Feature branch version:\n```\n{block.feature_version}\n```\n"
    )
    if context:
        prompt += f"\nFile context:\n{_clip(context, MAX_VERSION_CHARS)}\n"
    prompt += (
        "\nProvide analysis (1-2 sentences), suggestedResolution (the complete resolved code), "
        "confidence (0-100) and reasoning (1-2 sentences)."
    )
    return prompt


# ── Services ──────────────────────────────────────────────────────────────────


async def review_task(client: ReviewClient, task: Task, diff: str, stats: DiffStats) -> ReviewResult:
    return await client.generate(build_review_prompt(task, diff, stats), ReviewResult)


async def analyze_batch(
    client: ReviewClient,
    analyses: list[TaskDiffAnalysis],
    overlaps: list[FileOverlap],
) -> SyncReport:
    return await client.generate(build_batch_prompt(analyses, overlaps), SyncReport)


async def analyze_detailed_conflict(
    client: ReviewClient,
    file_path: str,
    versions: dict[str, str],
    tasks: list[Task],
) -> ConflictPrediction:
    prediction = await client.generate(build_conflict_prompt(file_path, versions), ConflictPrediction)
    return prediction.model_copy(update={"file": file_path, "affected_tasks": [t.slug for t in tasks]})


async def resolve_conflict(
    client: ReviewClient,
    block: ConflictBlock,
    context: str | None = None,
) -> ConflictResolution:
    resolution = await client.generate(build_resolution_prompt(block, context), ConflictResolution)
    return resolution.model_copy(update={"file": block.file})
