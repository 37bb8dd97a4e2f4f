"""Per-type job handlers.

A handler turns a claimed ``JobRecord`` into a ``HandlerResult``. Every model
call goes through ``HandlerContext.invoke_model`` so the model policy and
transport retries apply uniformly; handlers raise ``AgentHubError`` subclasses
and the runner turns them into the job's failed state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_hub.errors import PathError, ValidationError
from agent_hub.jobs.memory import ConversationMemory, ConversationTurn, format_context
from agent_hub.jobs.models import JobRecord, JobType
from agent_hub.search.base import DEFAULT_MAX_RESULTS, SearchProvider, SearchResult

logger = logging.getLogger(__name__)

CODE_PROMPT_TEMPLATE = (
    "Write code for: {prompt}\n\n"
    "Requirements:\n"
    "- Include comments\n"
    "- Follow best practices\n"
    "- Provide usage example"
)
FILE_PROMPT_TEMPLATE = (
    "File operation request: {prompt}\n\n"
    "Describe the exact steps and file contents needed to carry it out."
)


@dataclass(slots=True)
class HandlerResult:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HandlerContext:
    """Collaborators a handler may use while running one job."""

    invoke_model: Callable[[str, str], str]
    search: SearchProvider
    workspace_root: Path
    memory: ConversationMemory | None = None
    search_max_results: int = DEFAULT_MAX_RESULTS
    # Maps a requested model id to the one that actually answered.
    effective_model: Callable[[str], str] = str


Handler = Callable[[JobRecord, HandlerContext], HandlerResult]


def handle_chat(job: JobRecord, context: HandlerContext) -> HandlerResult:
    """Plain generation, with the chat's recent history as a prompt prefix."""

    history: list[ConversationTurn] = []
    if job.chat_id and context.memory is not None:
        history = context.memory.context(job.chat_id)
    prompt = job.prompt
    if history:
        prompt = f"{format_context(history)}User: {job.prompt}"

    text = context.invoke_model(prompt, job.model)

    if job.chat_id and context.memory is not None:
        context.memory.add(job.chat_id, "user", job.prompt)
        context.memory.add(
            job.chat_id,
            "assistant",
            text,
            model=context.effective_model(job.model),
        )
    return HandlerResult(text=text, metadata={"context_messages": len(history)})


def handle_code(job: JobRecord, context: HandlerContext) -> HandlerResult:
    target: Path | None = None
    if job.save_to:
        # Reject unsafe targets before the model call.
        target = resolve_workspace_path(context.workspace_root, job.save_to)

    text = context.invoke_model(CODE_PROMPT_TEMPLATE.format(prompt=job.prompt), job.model)

    metadata: dict[str, Any] = {}
    if target is not None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        except OSError as error:
            raise PathError(message=f"Cannot write {job.save_to}: {error}") from error
        logger.info("Job %s saved generated code to %s", job.job_id, target)
        metadata["saved_to"] = str(target)
    return HandlerResult(text=text, metadata=metadata)


def handle_research(job: JobRecord, context: HandlerContext) -> HandlerResult:
    results = context.search.search(job.prompt, context.search_max_results)
    prompt = build_research_prompt(job.prompt, results)
    text = context.invoke_model(prompt, job.model)
    return HandlerResult(
        text=text,
        metadata={
            "search_results": len(results),
            "sources": [result.url for result in results],
        },
    )


def handle_file(job: JobRecord, context: HandlerContext) -> HandlerResult:
    text = context.invoke_model(FILE_PROMPT_TEMPLATE.format(prompt=job.prompt), job.model)
    return HandlerResult(text=text)


HANDLERS: dict[JobType, Handler] = {
    JobType.CHAT: handle_chat,
    JobType.CODE: handle_code,
    JobType.RESEARCH: handle_research,
    JobType.FILE: handle_file,
    JobType.GENERIC: handle_chat,
}


def build_research_prompt(question: str, results: list[SearchResult]) -> str:
    """Synthesis prompt with the search snippets embedded verbatim."""

    if not results:
        return (
            f'No web results were found for: "{question}".\n\n'
            "Answer the question from your own knowledge and say clearly that "
            "no web sources were available.\n\n"
            f"Question: {question}"
        )
    entries = [
        f"{index}. {result.title}\n   {result.snippet}\n   URL: {result.url}"
        for index, result in enumerate(results, start=1)
    ]
    return (
        f'Web search results for: "{question}"\n\n'
        + "\n\n".join(entries)
        + "\n\nUsing the search results above, answer the question and cite the URLs you rely on."
        + f"\n\nQuestion: {question}"
    )


def resolve_workspace_path(workspace_root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` under ``workspace_root`` or raise ``PathError``."""

    if not relative_path.strip():
        raise ValidationError(message="save_to must not be empty.")
    candidate = Path(relative_path)
    if candidate.is_absolute():
        raise PathError(message=f"save_to must be a relative path: {relative_path}")
    root = workspace_root.resolve()
    resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root) or resolved == root:
        raise PathError(message=f"save_to escapes the workspace root: {relative_path}")
    return resolved
