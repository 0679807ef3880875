"""CLI interface for transcript-miner."""

from __future__ import annotations

import logging
import sys

import click

from . import __version__
from .config import DATA_DIR, DEFAULT_PAGE_SIZE, SQLITE_PATH
from .errors import TranscriptError
from .storage import ConversationStore


@click.group()
@click.version_option(version=__version__, prog_name="transcript-miner")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
def cli(verbose: bool):
    """transcript-miner — Mine coding-assistant transcripts.

    Parse .jsonl event logs and .txt transcripts into a deduplicated store,
    then extract tool calls, results and code blocks for later search.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@click.option("--project", "project_id", help="Associate parsed conversations with this project")
def parse(paths: tuple[str, ...], project_id: str | None):
    """Parse one or more transcript files.

    Only content added since the last run is stored.

    Example:
        transcript-miner parse ~/.claude/projects/my-app/*.jsonl
    """
    from .parser import parse_file

    store = ConversationStore(SQLITE_PATH)
    failures = 0
    try:
        for path in paths:
            try:
                r = parse_file(store, path, project_id)
            except TranscriptError as e:
                click.echo(click.style(str(e), fg="red"), err=True)
                failures += 1
                continue
            click.echo(
                f"{path}: conversation {r.conversation_id}, "
                f"{r.new_entries} new, {r.skipped} duplicates"
            )
    finally:
        store.close()

    if failures:
        raise click.ClickException(f"{failures} of {len(paths)} files could not be parsed")


@cli.command()
@click.argument("conversation_id", type=int)
def extract(conversation_id: int):
    """Extract artifacts from a parsed conversation."""
    from .extractor import extract_artifacts

    store = ConversationStore(SQLITE_PATH)
    try:
        r = extract_artifacts(store, conversation_id)
    except TranscriptError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    click.echo(click.style("Extraction complete!", fg="green", bold=True))
    click.echo(f"  Tool calls:    {r.tool_calls}")
    click.echo(f"  Tool results:  {r.tool_results}")
    click.echo(f"  Code blocks:   {r.code_blocks}")
    click.echo(f"  JSON objects:  {r.json_objects}")
    if r.skipped:
        click.echo(f"  Skipped:       {r.skipped} (already extracted)")


@cli.command()
@click.option("--project", "project_id", help="Only this project")
@click.option("--since", help="Only conversations started at or after this ISO timestamp")
@click.option("--errors", "has_errors", is_flag=True, help="Only conversations with failed tool calls")
@click.option("--limit", default=DEFAULT_PAGE_SIZE, show_default=True)
@click.option("--offset", default=0)
def conversations(project_id, since, has_errors, limit, offset):
    """List conversations, most recent first."""
    store = ConversationStore(SQLITE_PATH)
    rows = store.list_conversations(
        project_id=project_id, since=since, has_errors=has_errors, limit=limit, offset=offset
    )
    store.close()

    if not rows:
        click.echo("No conversations found.")
        return

    for c in rows:
        errors = click.style(f"{c.error_count} errors", fg="red") if c.error_count else "0 errors"
        click.echo(
            f"{c.id:>5}  {c.started_at or '-':<27} {c.session_id}  "
            f"{c.message_count} msgs, {c.artifact_count} artifacts, {errors}"
        )


@cli.command()
@click.argument("conversation_id", type=int)
@click.option("--type", "artifact_type", type=click.Choice(["code_block", "tool_call", "tool_result", "json_object"]))
@click.option("--tool", "tool_name", help="Only artifacts of this tool")
@click.option("--outcome", type=click.Choice(["success", "error", "pending"]))
@click.option("--limit", default=DEFAULT_PAGE_SIZE, show_default=True)
@click.option("--offset", default=0)
def artifacts(conversation_id, artifact_type, tool_name, outcome, limit, offset):
    """List the artifacts of a conversation."""
    store = ConversationStore(SQLITE_PATH)
    rows = store.list_artifacts(
        conversation_id, artifact_type=artifact_type, tool_name=tool_name,
        outcome=outcome, limit=limit, offset=offset,
    )
    store.close()
    _echo_artifacts(rows)


@cli.command()
@click.argument("query")
@click.option("--project", "project_id", help="Only this project")
@click.option("--type", "artifact_type", type=click.Choice(["code_block", "tool_call", "tool_result", "json_object"]))
@click.option("--limit", default=DEFAULT_PAGE_SIZE, show_default=True)
@click.option("--offset", default=0)
def search(query, project_id, artifact_type, limit, offset):
    """Search artifact content across all conversations."""
    store = ConversationStore(SQLITE_PATH)
    rows = store.search_artifacts(
        query, project_id=project_id, artifact_type=artifact_type, limit=limit, offset=offset
    )
    store.close()
    _echo_artifacts(rows)


def _echo_artifacts(rows):
    if not rows:
        click.echo("No artifacts found.")
        return

    for a in rows:
        label = a.tool_name or a.language or ""
        outcome = a.outcome or ""
        if a.outcome == "error":
            outcome = click.style(f"error/{a.error_type}", fg="red")
        preview = (a.content or "").replace("\n", " ")[:80]
        click.echo(f"{a.id:>5}  [{a.conversation_id}] {a.artifact_type:<11} {label:<12} {outcome:<10} {preview}")


@cli.command()
@click.argument("conversation_id", type=int, required=False)
def stats(conversation_id: int | None):
    """Show artifact counts for one conversation or all of them."""
    if not SQLITE_PATH.exists():
        click.echo("No data found. Parse a transcript first:")
        click.echo("  transcript-miner parse path/to/session.jsonl")
        return

    store = ConversationStore(SQLITE_PATH)
    if conversation_id is not None and store.get_conversation(conversation_id) is None:
        store.close()
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    s = store.artifact_stats(conversation_id)
    store.close()

    click.echo()
    click.echo(click.style("Artifact Statistics", bold=True))
    click.echo(f"  Total:         {s.total:,}")
    click.echo(f"  Tool calls:    {s.tool_calls:,}")
    click.echo(f"  Tool results:  {s.tool_results:,}")
    click.echo(f"  Code blocks:   {s.code_blocks:,}")
    click.echo(f"  JSON objects:  {s.json_objects:,}")
    click.echo(f"  Errors:        {s.errors:,}")
    click.echo(f"  Location:      {DATA_DIR}")
    click.echo()


@cli.command()
def serve():
    """Start the MCP server (stdio transport)."""
    from .server import mcp

    mcp.run(transport="stdio")
