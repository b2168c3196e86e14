"""CLI interface for stealthyai."""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from datetime import datetime
from pathlib import Path
from uuid import UUID

import click

from . import __version__
from .app import App, create_app
from .config import DATA_DIR, EXPORT_SUFFIX, REPLY_CHAR_DELAY
from .conversations import ConversationStore
from .models import Conversation, FlagColor, MessageRole
from .navigation import ConversationSelection, ProjectSelection, resolve_selection

FLAG_COLORS = [c.value for c in FlagColor]


def _format_ts(ts: datetime | None) -> str:
    if ts is None:
        return "-"
    return ts.astimezone().strftime("%Y-%m-%d %H:%M")


def _get_app(ctx: click.Context) -> App:
    """Create the app on first use and flush it when the command ends."""
    obj = ctx.ensure_object(dict)
    if "app" not in obj:
        app = create_app(obj["data_dir"])
        ctx.call_on_close(app.close)
        obj["app"] = app
    return obj["app"]


def _resolve(ids: list[UUID], prefix: str, kind: str) -> UUID:
    matches = [i for i in ids if str(i).startswith(prefix.lower())]
    if not matches:
        raise click.ClickException(f"No {kind} matches '{prefix}'")
    if len(matches) > 1:
        raise click.ClickException(f"'{prefix}' matches {len(matches)} {kind}s; use more characters")
    return matches[0]


def _conversation_id(app: App, prefix: str) -> UUID:
    return _resolve([c.id for c in app.conversations.conversations], prefix, "conversation")


def _project_id(app: App, prefix: str) -> UUID:
    return _resolve([p.id for p in app.projects.projects], prefix, "project")


def _echo_alert(store: ConversationStore) -> None:
    alert = store.alert
    if alert is None:
        return
    store.dismiss_alert()
    if alert.title.endswith("Failed"):
        raise click.ClickException(f"{alert.title}: {alert.message}")
    click.echo(click.style(alert.title, fg="green", bold=True))
    click.echo(f"  {alert.message}")


def _conversation_line(conv: Conversation) -> str:
    marks = ""
    if conv.is_pinned:
        marks += "📌"
    if conv.is_flagged:
        marks += click.style("⚑", fg=conv.flag_color.value if conv.flag_color else None)
    return (
        f"{str(conv.id)[:8]}  {_format_ts(conv.updated_at)}  "
        f"{len(conv.messages):>4} msgs  {conv.title} {marks}".rstrip()
    )


@click.group()
@click.version_option(version=__version__, prog_name="stealthyai")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DATA_DIR,
    envvar="STEALTHYAI_DATA_DIR",
    show_default=True,
    help="Where conversations, projects and the pairing secret live.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def cli(ctx: click.Context, data_dir: Path, verbose: bool):
    """stealthyai: chat and notes with a simulated assistant.

    Conversations and projects are kept as JSON files in the data directory.
    Conversation ids may be abbreviated to any unique prefix.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)["data_dir"] = data_dir


@cli.command("list")
@click.option("--archived", is_flag=True, help="Show archived conversations instead")
@click.option("--search", "query", default="", help="Filter by title")
@click.pass_context
def list_cmd(ctx: click.Context, archived: bool, query: str):
    """List conversations, flagged first."""
    store = _get_app(ctx).conversations

    if archived:
        rows = store.archived_conversations
    elif query:
        rows = store.search(query)
    else:
        rows = store.flagged_conversations + store.unflagged_conversations

    if not rows:
        click.echo("No conversations.")
        return
    for conv in rows:
        click.echo(_conversation_line(conv))


@cli.command()
@click.argument("conversation")
@click.pass_context
def show(ctx: click.Context, conversation: str):
    """Print a conversation transcript.

    Conversations inside projects can be shown too.
    """
    app = _get_app(ctx)
    ids = [c.id for c in app.conversations.conversations] + [
        c.id for p in app.projects.projects for c in p.conversations
    ]
    conversation_id = _resolve(ids, conversation, "conversation")
    conv = resolve_selection(
        ConversationSelection(conversation_id), app.conversations, app.projects
    )

    click.echo()
    click.echo(click.style(conv.title, bold=True))
    click.echo(f"  Created: {_format_ts(conv.created_at)}   Updated: {_format_ts(conv.updated_at)}")
    if conv.tags:
        click.echo(f"  Tags:    {', '.join(conv.tags)}")
    click.echo()
    for msg in conv.messages:
        label = "You" if msg.role == MessageRole.USER else msg.role.value.capitalize()
        click.echo(click.style(f"{label}:", bold=True) + f" {msg.content}")
    click.echo()


async def _send_and_stream(store: ConversationStore, text: str) -> None:
    """Send ``text`` and echo the assistant reply as it streams in."""
    conversation_id = store.send(text)
    if conversation_id is None:
        return
    conversation = store.get(conversation_id)
    reply_index = len(conversation.messages)
    shown = 0

    click.echo(click.style("Assistant: ", bold=True), nl=False)
    while True:
        streaming = store.replies.is_streaming(conversation_id)
        conversation = store.get(conversation_id)
        if conversation is not None and len(conversation.messages) > reply_index:
            content = conversation.messages[reply_index].content
            click.echo(content[shown:], nl=False)
            shown = len(content)
        if not streaming:
            break
        await asyncio.sleep(REPLY_CHAR_DELAY)
    click.echo()


@cli.command()
@click.argument("conversation", required=False)
@click.pass_context
def chat(ctx: click.Context, conversation: str | None):
    """Chat in a conversation, or start a new one.

    Enter an empty line or press Ctrl-D to leave. A new conversation that
    never received a message is discarded.
    """
    app = _get_app(ctx)
    store = app.conversations

    if conversation:
        store.select(_conversation_id(app, conversation))
        click.echo(click.style(store.selected_conversation.title, bold=True))
    else:
        store.start_new_conversation_draft()
        click.echo(click.style("New conversation", bold=True))

    while True:
        try:
            text = click.prompt("You", default="", show_default=False)
        except click.Abort:
            break
        if not text.strip():
            break
        asyncio.run(_send_and_stream(store, text))

    store.select(None)


@cli.command()
@click.argument("conversation")
@click.argument("title")
@click.pass_context
def rename(ctx: click.Context, conversation: str, title: str):
    """Rename a conversation."""
    app = _get_app(ctx)
    app.conversations.rename_conversation(_conversation_id(app, conversation), title)


@cli.command()
@click.argument("conversation")
@click.pass_context
def archive(ctx: click.Context, conversation: str):
    """Hide a conversation from the active list."""
    app = _get_app(ctx)
    app.conversations.archive_conversation(_conversation_id(app, conversation))


@cli.command()
@click.argument("conversation")
@click.pass_context
def unarchive(ctx: click.Context, conversation: str):
    """Return an archived conversation to the active list."""
    app = _get_app(ctx)
    app.conversations.unarchive_conversation(_conversation_id(app, conversation))


@cli.command()
@click.argument("conversation")
@click.option("--color", type=click.Choice(FLAG_COLORS), default=FlagColor.ORANGE.value, show_default=True)
@click.pass_context
def flag(ctx: click.Context, conversation: str, color: str):
    """Flag a conversation."""
    app = _get_app(ctx)
    app.conversations.flag_conversation(_conversation_id(app, conversation), FlagColor(color))


@cli.command()
@click.argument("conversation")
@click.pass_context
def unflag(ctx: click.Context, conversation: str):
    """Remove a conversation's flag."""
    app = _get_app(ctx)
    app.conversations.unflag_conversation(_conversation_id(app, conversation))


@cli.command()
@click.argument("conversation")
@click.pass_context
def pin(ctx: click.Context, conversation: str):
    """Pin or unpin a conversation."""
    app = _get_app(ctx)
    conversation_id = _conversation_id(app, conversation)
    app.conversations.toggle_pin(conversation_id)
    state = "Pinned" if app.conversations.get(conversation_id).is_pinned else "Unpinned"
    click.echo(state)


@cli.command()
@click.argument("conversation")
@click.argument("tags", nargs=-1)
@click.pass_context
def tag(ctx: click.Context, conversation: str, tags: tuple[str, ...]):
    """Replace a conversation's tags (at most 10 are kept)."""
    app = _get_app(ctx)
    app.conversations.set_conversation_tags(_conversation_id(app, conversation), list(tags))


@cli.command()
@click.argument("conversation")
@click.confirmation_option(prompt="Delete this conversation?")
@click.pass_context
def delete(ctx: click.Context, conversation: str):
    """Delete a conversation."""
    app = _get_app(ctx)
    app.conversations.delete_conversation(_conversation_id(app, conversation))


@cli.command("export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def export_cmd(ctx: click.Context, path: Path):
    """Export every conversation to a JSON archive.

    Example:
        stealthyai export ~/Desktop/backup.stealthyai.json
    """
    if path.suffix != ".json":
        path = path.with_name(path.name + EXPORT_SUFFIX)
    store = _get_app(ctx).conversations
    store.export_to(path)
    _echo_alert(store)


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", is_flag=True, help="Replace without asking")
@click.pass_context
def import_cmd(ctx: click.Context, path: Path, yes: bool):
    """Replace all conversations with those in an exported archive.

    Both the versioned archive and the older bare-list format are accepted.
    """
    store = _get_app(ctx).conversations
    if not store.handle_import(path):
        _echo_alert(store)
        return

    count = len(store.pending_import.conversations)
    click.echo(f"Found {count} conversation(s) in {path.name}.")
    if yes or click.confirm(
        f"This replaces your {len(store.conversations)} current conversation(s). Continue?"
    ):
        store.confirm_import()
        _echo_alert(store)
    else:
        store.cancel_import()
        click.echo("Import cancelled.")


@cli.command()
@click.pass_context
def pair(ctx: click.Context):
    """Print a signed deep link for pairing a companion device."""
    store = _get_app(ctx).conversations
    store.open_pairing_sheet()
    token = store.pairing_token

    click.echo()
    click.echo(click.style("Pairing link", bold=True))
    click.echo(f"  {store.pairing_deep_link}")
    click.echo(f"  Expires: {_format_ts(token.expires_at)}")
    click.echo()
    store.close_pairing_sheet()


@cli.command("reset-secret")
@click.confirmation_option(prompt="Existing pairing links will stop working. Continue?")
@click.pass_context
def reset_secret(ctx: click.Context):
    """Discard the pairing secret; a new one is created on next use."""
    _get_app(ctx).secrets.reset()
    click.echo("Pairing secret reset.")


@cli.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show statistics about stored conversations and projects."""
    app = _get_app(ctx)
    store = app.conversations
    total_messages = sum(len(c.messages) for c in store.conversations)
    nested = sum(len(p.conversations) for p in app.projects.projects)

    click.echo()
    click.echo(click.style("StealthyAI Statistics", bold=True))
    click.echo(f"  Conversations:  {len(store.conversations):,}")
    click.echo(f"    Archived:     {len(store.archived_conversations):,}")
    click.echo(f"    Flagged:      {len(store.flagged_conversations):,}")
    click.echo(f"    Pinned:       {len(store.pinned_conversations):,}")
    click.echo(f"  Messages:       {total_messages:,}")
    click.echo(f"  Projects:       {len(app.projects.projects):,} ({nested:,} conversations)")
    click.echo(f"  Location:       {ctx.obj['data_dir']}")
    click.echo()


@cli.command()
@click.confirmation_option(prompt="This will delete all conversations and projects. Are you sure?")
@click.pass_context
def reset(ctx: click.Context):
    """Delete all data and start fresh."""
    data_dir: Path = ctx.obj["data_dir"]
    if data_dir.exists():
        shutil.rmtree(data_dir)
        click.echo(f"Deleted {data_dir}")
    else:
        click.echo("No data to delete.")


# -- projects ----------------------------------------------------------------


@cli.group()
def projects():
    """Manage projects and their conversations."""


@projects.command("list")
@click.option("--search", "query", default="", help="Filter by title or description")
@click.pass_context
def projects_list(ctx: click.Context, query: str):
    """List projects, flagged first then by recent activity."""
    rows = _get_app(ctx).projects.sorted_projects(query)
    if not rows:
        click.echo("No projects.")
        return
    for project in rows:
        flag_mark = " ⚑" if project.is_flagged else ""
        tags = f"  [{', '.join(project.tags)}]" if project.tags else ""
        click.echo(
            f"{str(project.id)[:8]}  {_format_ts(project.updated_at)}  "
            f"{len(project.conversations):>3} convs  {project.title}{flag_mark}{tags}"
        )


@projects.command("show")
@click.argument("project")
@click.pass_context
def projects_show(ctx: click.Context, project: str):
    """Show a project and its conversations."""
    app = _get_app(ctx)
    found = resolve_selection(
        ProjectSelection(_project_id(app, project)), app.conversations, app.projects
    )

    click.echo()
    click.echo(click.style(found.title, bold=True))
    if found.description:
        click.echo(f"  {found.description}")
    click.echo(f"  Updated: {_format_ts(found.updated_at)}")
    if found.tags:
        click.echo(f"  Tags:    {', '.join(found.tags)}")
    click.echo()
    visible = app.projects.visible_conversations(found.id)
    if not visible:
        click.echo("No conversations.")
    for conv in visible:
        click.echo(_conversation_line(conv))


@projects.command("create")
@click.argument("title")
@click.option("--description", default="")
@click.option("--tag", "tags", multiple=True, help="Repeat for several tags")
@click.option("--icon", default=None, help="Icon symbol name")
@click.option("--color", type=click.Choice(FLAG_COLORS), default=None)
@click.pass_context
def projects_create(
    ctx: click.Context,
    title: str,
    description: str,
    tags: tuple[str, ...],
    icon: str | None,
    color: str | None,
):
    """Create a project."""
    project_id = _get_app(ctx).projects.create_project(
        title,
        description,
        icon_symbol=icon,
        icon_color=FlagColor(color) if color else None,
        tags=list(tags),
    )
    click.echo(str(project_id))


@projects.command("delete")
@click.argument("project")
@click.confirmation_option(prompt="Delete this project and all of its conversations?")
@click.pass_context
def projects_delete(ctx: click.Context, project: str):
    """Delete a project and everything in it."""
    app = _get_app(ctx)
    app.projects.delete_project(_project_id(app, project))


@projects.command("flag")
@click.argument("project")
@click.pass_context
def projects_flag(ctx: click.Context, project: str):
    """Flag or unflag a project."""
    app = _get_app(ctx)
    app.projects.toggle_project_flag(_project_id(app, project))


@projects.command("send")
@click.argument("project")
@click.argument("text")
@click.option("--conversation", default=None, help="Existing conversation id prefix")
@click.pass_context
def projects_send(ctx: click.Context, project: str, text: str, conversation: str | None):
    """Send a message inside a project and print the reply."""
    app = _get_app(ctx)
    store = app.projects
    project_id = _project_id(app, project)
    if not text.strip():
        raise click.ClickException("Nothing to send.")

    if conversation:
        ids = [c.id for c in store.get(project_id).conversations]
        conversation_id = _resolve(ids, conversation, "conversation")
    else:
        conversation_id = store.create_conversation(project_id)

    async def _run() -> None:
        store.send(project_id, conversation_id, text)
        await store.wait_for_replies()

    asyncio.run(_run())
    reply = store.get_conversation(project_id, conversation_id).messages[-1]
    click.echo(click.style("Assistant:", bold=True) + f" {reply.content}")


@projects.command("pinned")
@click.pass_context
def projects_pinned(ctx: click.Context):
    """List pinned conversations across all projects."""
    store = _get_app(ctx).projects
    entries = store.pinned_conversations()
    if not entries:
        click.echo("No pinned conversations.")
        return
    for entry in entries:
        project = store.get(entry.project_id)
        click.echo(f"{project.title} / {_conversation_line(entry.conversation)}")
