"""CLI entrypoint for agent-hub."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from agent_hub import __version__
from agent_hub.errors import AgentHubError
from agent_hub.feeds.controllers import (
    FeedsCheckCommand,
    FeedsCliController,
    FeedsResetCommand,
    FeedsSubscribeCommand,
    FeedsSubscriptionsCommand,
    FeedsUnsubscribeCommand,
    FeedsWatchCommand,
)
from agent_hub.jobs.controllers import (
    ChatMemoryCommand,
    ChatModelCommand,
    JobsCliController,
    JobsEnqueueCommand,
    JobsListCommand,
    JobsRecoverCommand,
    JobsShowCommand,
    JobsStatusCommand,
    JobsWorkerCommand,
)
from agent_hub.jobs.models import JOB_PRIORITIES, JobStatus, JobType

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()
FEEDS_CONTROLLER = FeedsCliController()

CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="agent-hub")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def agent_hub(log_level: str) -> None:
    """Personal job queue and feed monitor."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_hub.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "job_type",
    type=click.Choice([item.value for item in JobType], case_sensitive=False),
    required=True,
    help="Job type.",
)
@click.option("--prompt", required=True, help="Job prompt.")
@click.option("--model", default=None, help="Requested model id; the local default when omitted.")
@click.option(
    "--priority",
    type=click.Choice(list(JOB_PRIORITIES), case_sensitive=False),
    default="normal",
    show_default=True,
    help="Priority label.",
)
@click.option("--chat-id", default=None, help="Chat that receives the result.")
@click.option(
    "--save-to",
    default=None,
    help="Workspace-relative file for `code` job output.",
)
@click.option(
    "--notify/--no-notify",
    default=False,
    show_default=True,
    help="Send the submission notification.",
)
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    job_type: str,
    prompt: str,
    model: str | None,
    priority: str,
    chat_id: str | None,
    save_to: str | None,
    notify: bool,
) -> None:
    """Write a job into the pending area."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.enqueue,
            JobsEnqueueCommand(
                db_path=db_path,
                job_type=job_type,
                prompt=prompt,
                model=model,
                priority=priority,
                chat_id=chat_id,
                save_to=save_to,
                notify=notify,
            ),
        ),
    )


@jobs.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, default=False, help="Process at most one job and exit.")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many jobs.",
)
@click.option(
    "--forever/--until-idle",
    default=False,
    show_default=True,
    help="Keep polling an empty queue instead of exiting when it is idle.",
)
def jobs_worker(db_path: Path | None, once: bool, max_jobs: int | None, forever: bool) -> None:
    """Run the job runner."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.run_worker,
            JobsWorkerCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
                max_idle_polls=None if forever else 1,
            ),
        ),
    )


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([item.value for item in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=10,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent jobs, newest first."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.list_jobs,
            JobsListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@jobs.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_show(db_path: Path | None, job_id: str) -> None:
    """Show one job with its event history."""

    _emit_lines(_run(JOBS_CONTROLLER.show_job, JobsShowCommand(db_path=db_path, job_id=job_id)))


@jobs.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--stale-after-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Claim age that counts as abandoned; defaults to AGENT_HUB_STALE_AFTER_SECONDS.",
)
@click.option(
    "--all",
    "recover_all",
    is_flag=True,
    default=False,
    help="Return every processing job to pending regardless of age.",
)
def jobs_recover(db_path: Path | None, stale_after_seconds: int | None, recover_all: bool) -> None:
    """Return abandoned claims to the pending area."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.recover,
            JobsRecoverCommand(
                db_path=db_path,
                stale_after_seconds=0 if recover_all else stale_after_seconds,
            ),
        ),
    )


@jobs.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def jobs_status(db_path: Path | None) -> None:
    """Show per-area counts and the latest jobs."""

    _emit_lines(_run(JOBS_CONTROLLER.status, JobsStatusCommand(db_path=db_path)))


@agent_hub.group()
def feeds() -> None:
    """Feed monitor commands."""


@feeds.command("check")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", default=None, help="Check only the target with this name.")
def feeds_check(db_path: Path | None, name: str | None) -> None:
    """Poll every configured and subscribed feed once."""

    _emit_lines(_run(FEEDS_CONTROLLER.check, FeedsCheckCommand(db_path=db_path, name=name)))


@feeds.command("watch")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many polling rounds.",
)
def feeds_watch(db_path: Path | None, max_ticks: int | None) -> None:
    """Poll feeds every AGENT_HUB_FEED_INTERVAL_SECONDS until interrupted."""

    _emit_lines(
        _run(FEEDS_CONTROLLER.watch, FeedsWatchCommand(db_path=db_path, max_ticks=max_ticks)),
    )


@feeds.command("subscribe")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--chat-id", required=True, help="Chat receiving new posts.")
@click.option("--name", default=None, help="Display name; the feed title when omitted.")
@click.argument("url")
def feeds_subscribe(db_path: Path | None, chat_id: str, name: str | None, url: str) -> None:
    """Subscribe a chat to an RSS/Atom feed."""

    _emit_lines(
        _run(
            FEEDS_CONTROLLER.subscribe,
            FeedsSubscribeCommand(db_path=db_path, chat_id=chat_id, url=url, name=name),
        ),
    )


@feeds.command("unsubscribe")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--chat-id", required=True, help="Chat id.")
@click.argument("index", type=int)
def feeds_unsubscribe(db_path: Path | None, chat_id: str, index: int) -> None:
    """Remove the INDEX-th subscription as numbered by `feeds subscriptions`."""

    _emit_lines(
        _run(
            FEEDS_CONTROLLER.unsubscribe,
            FeedsUnsubscribeCommand(db_path=db_path, chat_id=chat_id, index=index),
        ),
    )


@feeds.command("subscriptions")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--chat-id", required=True, help="Chat id.")
def feeds_subscriptions(db_path: Path | None, chat_id: str) -> None:
    """List a chat's subscriptions."""

    _emit_lines(
        _run(
            FEEDS_CONTROLLER.subscriptions,
            FeedsSubscriptionsCommand(db_path=db_path, chat_id=chat_id),
        ),
    )


@feeds.command("reset")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--scope", default="", help="Chat id for subscription state; empty for channels.")
@click.argument("url")
def feeds_reset(db_path: Path | None, scope: str, url: str) -> None:
    """Forget stored state for a feed; the next poll records a new baseline."""

    _emit_lines(
        _run(FEEDS_CONTROLLER.reset, FeedsResetCommand(db_path=db_path, url=url, scope=scope)),
    )


@agent_hub.group()
def chat() -> None:
    """Chat model and conversation memory commands."""


@chat.command("model")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("model", required=False)
def chat_model(db_path: Path | None, model: str | None) -> None:
    """Show which model a request for MODEL would run on."""

    _emit_lines(_run(JOBS_CONTROLLER.chat_model, ChatModelCommand(db_path=db_path, model=model)))


@chat.command("history")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--chat-id", required=True, help="Chat id.")
def chat_history(db_path: Path | None, chat_id: str) -> None:
    """Show conversation memory stats and the recent context."""

    _emit_lines(
        _run(JOBS_CONTROLLER.chat_history, ChatMemoryCommand(db_path=db_path, chat_id=chat_id)),
    )


@chat.command("reset")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--chat-id", required=True, help="Chat id.")
def chat_reset(db_path: Path | None, chat_id: str) -> None:
    """Clear the conversation memory of a chat."""

    _emit_lines(
        _run(JOBS_CONTROLLER.chat_reset, ChatMemoryCommand(db_path=db_path, chat_id=chat_id)),
    )


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except (AgentHubError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_hub()
