# src/stageboard/cli/commands.py

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.models import CLEAR, Task
from ..core.stages import STAGES, StageId, get_stage
from ..core.state import AppState
from .bootstrap import start_remote_sync

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

# Background jobs started by commands (kept referenced until done).
_background: set[asyncio.Task] = set()


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _stage(raw: str) -> StageId | None:
    return StageId.try_parse(raw)


def _stage_names() -> str:
    return ", ".join(s.id.value for s in STAGES)


def _resolve(state: AppState, stage: StageId, prefix: str) -> Task | str:
    """Find a task in the stage by full id or unique id prefix; error text otherwise."""
    matches = [t for t in state.engine.tasks(stage) if t.id.startswith(prefix)]
    exact = [t for t in matches if t.id == prefix]
    if exact:
        return exact[0]
    if not matches:
        return f"No task {prefix!r} in {stage.value}."
    if len(matches) > 1:
        return f"Ambiguous id {prefix!r} in {stage.value} ({len(matches)} matches)."
    return matches[0]


def _parse_due(raw: str) -> int:
    """YYYY-MM-DD (local midnight) -> epoch millis."""
    dt = datetime.strptime(raw, "%Y-%m-%d").astimezone()
    return int(dt.timestamp() * 1000)


def _fmt_due(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).astimezone().strftime("%Y-%m-%d")


def format_task(task: Task) -> str:
    mark = "x" if task.done else " "
    extra: list[str] = []
    if task.due_at is not None:
        extra.append(f"due {_fmt_due(task.due_at)}")
    if task.client_tag:
        extra.append(f"@{task.client_tag}")
    if task.links:
        extra.append(f"{len(task.links)} link(s)")
    if task.content:
        extra.append("note")
    suffix = f"  ({', '.join(extra)})" if extra else ""
    return f"[{mark}] {task.id[:8]}  {task.text}{suffix}"


def format_stage(state: AppState, stage: StageId) -> str:
    meta = get_stage(stage)
    lines = [f"{meta.title} [{stage.value}] - {state.engine.stage_progress(stage)}"]
    tasks = state.engine.tasks(stage)
    if not tasks:
        lines.append("  (empty)")
    for task in tasks:
        lines.append(f"  {format_task(task)}")
    return "\n".join(lines)


def _usage(text: str) -> str:
    return f"Usage: {text}"


# ---- handlers ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    st = state.engine.sync_status()
    lines = ["Status:"]
    for stage in STAGES:
        lines.append(f"  {stage.title:<11} {state.engine.stage_progress(stage.id)}")
    lines.append(f"  Sync: {st.state.value}" + (f" (uid={st.uid})" if st.uid else ""))
    if st.pending_writes:
        lines.append(f"  Pending remote writes: {st.pending_writes}")
    if st.error:
        lines.append(f"  Sync error: {st.error}")
    return "\n".join(lines)


def cmd_list(state: AppState, args: list[str]) -> str:
    if args:
        stage = _stage(args[0])
        if stage is None:
            return f"Unknown stage {args[0]!r}. Stages: {_stage_names()}"
        return format_stage(state, stage)
    return "\n\n".join(format_stage(state, s.id) for s in STAGES)


def cmd_add(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return _usage("/add <stage> <text>")
    stage = _stage(args[0])
    if stage is None:
        return f"Unknown stage {args[0]!r}. Stages: {_stage_names()}"
    task = state.engine.add_task(stage, " ".join(args[1:]))
    if task is None:
        return "Task text is empty; nothing added."
    return f"Added to {stage.value}: {format_task(task)}"


def cmd_template(state: AppState, args: list[str]) -> str:
    if len(args) != 1 or _stage(args[0]) is None:
        return _usage(f"/template <stage>  (stages: {_stage_names()})")
    added = state.engine.add_template_tasks(args[0])
    return f"Added {len(added)} template tasks to {args[0]}."


def _with_task(state: AppState, args: list[str], min_args: int, usage: str) -> tuple[StageId, Task] | str:
    if len(args) < min_args:
        return _usage(usage)
    stage = _stage(args[0])
    if stage is None:
        return f"Unknown stage {args[0]!r}. Stages: {_stage_names()}"
    found = _resolve(state, stage, args[1])
    if isinstance(found, str):
        return found
    return stage, found


def cmd_done(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 2, "/done <stage> <id>")
    if isinstance(found, str):
        return found
    stage, task = found
    updated = state.engine.toggle_task(stage, task.id)
    return format_task(updated) if updated else f"No task {task.id!r}."


def cmd_edit(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 3, "/edit <stage> <id> <new text>")
    if isinstance(found, str):
        return found
    stage, task = found
    updated = state.engine.update_task(stage, task.id, text=" ".join(args[2:]))
    return format_task(updated) if updated else "Task text is empty; nothing changed."


def cmd_due(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 3, "/due <stage> <id> <YYYY-MM-DD | ->")
    if isinstance(found, str):
        return found
    stage, task = found
    if args[2] == "-":
        updated = state.engine.update_task(stage, task.id, due_at=CLEAR)
    else:
        try:
            due = _parse_due(args[2])
        except ValueError:
            return _usage("/due <stage> <id> <YYYY-MM-DD | ->")
        updated = state.engine.update_task(stage, task.id, due_at=due)
    return format_task(updated) if updated else f"No task {task.id!r}."


def cmd_tag(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 3, "/tag <stage> <id> <client tag | ->")
    if isinstance(found, str):
        return found
    stage, task = found
    value = " ".join(args[2:])
    updated = state.engine.update_task(
        stage, task.id, client_tag=CLEAR if value == "-" else value
    )
    return format_task(updated) if updated else f"No task {task.id!r}."


def cmd_links(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 3, "/links <stage> <id> <url> [url ...] | -")
    if isinstance(found, str):
        return found
    stage, task = found
    links = CLEAR if args[2:] == ["-"] else args[2:]
    updated = state.engine.update_task(stage, task.id, links=links)
    if updated is None:
        return f"No task {task.id!r}."
    return "\n".join([format_task(updated), *(f"  {link}" for link in updated.links or ())])


def cmd_note(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 2, "/note <stage> <id> [text | -]")
    if isinstance(found, str):
        return found
    stage, task = found
    if len(args) == 2:
        return task.content or "(no note)"
    value = " ".join(args[2:]).replace("\\n", "\n")
    updated = state.engine.update_task(stage, task.id, content=CLEAR if value == "-" else value)
    return format_task(updated) if updated else f"No task {task.id!r}."


def cmd_rm(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 2, "/rm <stage> <id>")
    if isinstance(found, str):
        return found
    stage, task = found
    state.engine.delete_task(stage, task.id)
    return f"Deleted: {task.text}"


def cmd_clear(state: AppState, args: list[str]) -> str:
    if len(args) != 1 or _stage(args[0]) is None:
        return _usage(f"/clear <stage>  (stages: {_stage_names()})")
    removed = state.engine.clear_completed(args[0])
    return f"Cleared {removed} completed task(s) from {args[0]}."


def cmd_mv(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 3, "/mv <from stage> <id> <to stage>")
    if isinstance(found, str):
        return found
    stage, task = found
    dst = _stage(args[2])
    if dst is None:
        return f"Unknown stage {args[2]!r}. Stages: {_stage_names()}"
    moved = state.engine.move_task_to_stage(stage, task.id, dst)
    if moved is None:
        return "Nothing moved (same stage)."
    return f"Moved to {dst.value}: {format_task(moved)}"


def cmd_reorder(state: AppState, args: list[str]) -> str:
    found = _with_task(state, args, 3, "/reorder <stage> <dragged id> <target id>")
    if isinstance(found, str):
        return found
    stage, dragged = found
    target = _resolve(state, stage, args[2])
    if isinstance(target, str):
        return target
    if not state.engine.reorder_task(stage, dragged.id, target.id):
        return "Nothing to reorder."
    return format_stage(state, stage)


def cmd_tags(state: AppState, args: list[str]) -> str:
    """
    /tags                -> list the tag catalog
    /tags add <tag>      -> remember a tag
    /tags forget <tag>   -> forget a remembered tag
    """
    if not args:
        tags = state.engine.client_tags
        return "Client tags: " + (", ".join(tags) if tags else "(none)")

    sub = args[0].lower()
    value = " ".join(args[1:])
    if sub == "add" and value:
        ok = state.engine.remember_client_tag(value)
        return f"Remembered {value.strip()!r}." if ok else "Already known (or empty)."
    if sub == "forget" and value:
        ok = state.engine.forget_client_tag(value)
        return f"Forgot {value.strip()!r}." if ok else "Not a remembered tag."
    return _usage("/tags | /tags add <tag> | /tags forget <tag>")


def cmd_sync(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /sync        -> show sync status
    /sync on     -> identify, migrate once, subscribe
    /sync off    -> stop the live subscription
    """
    if not args:
        st = state.engine.sync_status()
        return f"Sync: {st.state.value}" + (f" - error: {st.error}" if st.error else "")

    arg = args[0].lower()
    if arg in ("on", "start"):
        if state.remote is None:
            return "Remote sync is not configured (set STAGEBOARD_SYNC_DB_PATH)."
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return "Sync can only be started from the running console."

        async def _start() -> None:
            status = await start_remote_sync(state)
            if emit is not None:
                emit(f"[SYNC] {status.state.value}" + (f" - {status.error}" if status.error else ""))

        job = loop.create_task(_start())
        _background.add(job)
        job.add_done_callback(_background.discard)
        return "Starting remote sync..."

    if arg in ("off", "stop"):
        state.engine.stop_sync()
        return "Remote sync stopped."

    return _usage("/sync on | /sync off")


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Per-stage progress and sync state.")
registry.register("list", cmd_list, help_text="List tasks: /list [stage].", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add <stage> <text>.")
registry.register("template", cmd_template, help_text="Add the stage's template tasks.")
registry.register("done", cmd_done, help_text="Toggle done: /done <stage> <id>.", aliases=["toggle"])
registry.register("edit", cmd_edit, help_text="Change text: /edit <stage> <id> <text>.")
registry.register("due", cmd_due, help_text="Set/clear due date: /due <stage> <id> <YYYY-MM-DD|->.")
registry.register("tag", cmd_tag, help_text="Set/clear client tag: /tag <stage> <id> <tag|->.")
registry.register("links", cmd_links, help_text="Set/clear links: /links <stage> <id> <url...|->.")
registry.register("note", cmd_note, help_text="Show/set/clear note: /note <stage> <id> [text|-].")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <stage> <id>.", aliases=["del"])
registry.register("clear", cmd_clear, help_text="Remove completed tasks: /clear <stage>.")
registry.register("mv", cmd_mv, help_text="Move to another stage: /mv <from> <id> <to>.")
registry.register("reorder", cmd_reorder, help_text="Move a task onto another's slot.")
registry.register("tags", cmd_tags, help_text="Tag catalog: /tags | /tags add|forget <tag>.")
registry.register("sync", cmd_sync, help_text="Remote sync: /sync | /sync on | /sync off.")
