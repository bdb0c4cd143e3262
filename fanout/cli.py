# fanout/cli.py
import asyncio
import json
from typing import Optional

import typer

from fanout.db import init_db
from fanout.errors import ConfigurationError
from fanout.services import seeder
from fanout.services.cleanup import CascadeDeleter, delete_old_posts
from fanout.services.hashtags import index_post_hashtags
from fanout.services.moderation import moderate
from fanout.services.path_index import PathIndex, load_rules
from fanout.services.store import SqlTreeStore

app = typer.Typer(help="Fan-out consistency CLI with subcommands")


def _path_index(rules: Optional[str]) -> PathIndex:
    return PathIndex(load_rules(rules)) if rules else PathIndex()


@app.command("seed")
def seed_cmd(
    users: int = typer.Option(20, help="Number of users"),
    posts: int = typer.Option(100, help="Number of posts"),
):
    """Replace the store contents with deterministic demo data."""
    seeder.seed_random_generators()
    init_db()
    tree = seeder.build_tree(n_users=users, n_posts=posts)
    asyncio.run(SqlTreeStore().write("", tree))
    typer.echo(f"Seed complete: users={users}, posts={posts}")


@app.command("paths")
def paths_cmd(
    kind: str = typer.Argument(..., help="Entity kind, e.g. user or post"),
    entity_id: str = typer.Argument(..., help="Root entity id"),
    rules: Optional[str] = typer.Option(None, "--rules", help="JSON file with cascade rules"),
):
    """Show the path templates a cascade of this entity would scan."""
    try:
        index = _path_index(rules)
        for template in index.paths_for(kind, entity_id):
            typer.echo(str(template))
        for target in index.storage_for(kind, entity_id):
            typer.echo(f"storage: {target}")
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)


@app.command("cascade")
def cascade_cmd(
    kind: str = typer.Argument(..., help="Entity kind, e.g. user or post"),
    entity_id: str = typer.Argument(..., help="Root entity id"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only print the planned deletions"),
    concurrency: int = typer.Option(3, "--concurrency", "-c", min=1, max=100, help="Parallel deletions"),
    rules: Optional[str] = typer.Option(None, "--rules", help="JSON file with cascade rules"),
):
    """Delete an entity and every denormalized path that references it."""
    init_db()
    try:
        deleter = CascadeDeleter(SqlTreeStore(), path_index=_path_index(rules), concurrency=concurrency)
        if dry_run:
            plan = asyncio.run(deleter.plan(kind, entity_id))
            for path in plan.paths:
                typer.echo(path)
            for target in plan.storage_targets:
                typer.echo(f"storage: {target}")
            typer.echo(f"\n{len(plan.paths)} path(s) would be deleted")
            return
        report = asyncio.run(deleter.run(kind, entity_id))
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Deleted {report.completion.succeeded} of {report.completion.processed} unit(s)")
    for failure in report.completion.failures:
        typer.echo(f"  failed: {failure}", err=True)
    for failure in report.plan.scan_failures:
        typer.echo(f"  scan failed: {failure}", err=True)
    if not report.complete:
        raise typer.Exit(1)


@app.command("moderate")
def moderate_cmd(text: str = typer.Argument(..., help="Text to filter")):
    """Print the moderated form of a piece of text."""
    verdict = moderate(text)
    typer.echo(verdict.text)
    if verdict.was_modified:
        typer.echo(f"modified: {', '.join(r.value for r in verdict.reasons)}", err=True)


@app.command("delete-old-posts")
def delete_old_posts_cmd(
    days: int = typer.Option(30, "--days", "-d", min=1, max=3650, help="Maximum post age in days"),
    concurrency: int = typer.Option(3, "--concurrency", "-c", min=1, max=100, help="Parallel cascades"),
):
    """Cascade-delete every post older than the given number of days."""
    init_db()
    deleter = CascadeDeleter(SqlTreeStore(), concurrency=concurrency)
    report = asyncio.run(delete_old_posts(deleter, max_age_days=days, concurrency=concurrency))
    typer.echo(json.dumps(report.to_dict(), indent=2))
    if not report.ok:
        raise typer.Exit(1)


@app.command("index-hashtags")
def index_hashtags_cmd(post_id: str = typer.Argument(..., help="Post to index")):
    """Add a post to the index of every hashtag in its text."""
    init_db()
    items = asyncio.run(index_post_hashtags(SqlTreeStore(), post_id))
    if not items:
        typer.echo(f"No hashtags found for post {post_id}")
        return
    for item in sorted(items, key=lambda i: i.path):
        typer.echo(item.path)


if __name__ == "__main__":
    app()
