"""Command-line interface for sharded counters backed by DynamoDB."""

import asyncio
import json
import sys
from collections.abc import Callable
from typing import Any

import click

from .counter import ShardedCounter
from .exceptions import DocumentNotFoundError, ShardCounterError
from .models import CounterDefinition, DocumentRef
from .repository import Repository
from .schema import DEFAULT_TABLE_NAME


def store_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """DynamoDB connection options shared by every command."""
    func = click.option(
        "--endpoint-url",
        envvar="AWS_ENDPOINT_URL",
        help=(
            "AWS endpoint URL "
            "(e.g., http://localhost:4566 for LocalStack, or other AWS-compatible services)"
        ),
    )(func)
    func = click.option(
        "--region",
        envvar="AWS_REGION",
        help="AWS region (default: use boto3 defaults)",
    )(func)
    func = click.option(
        "--table-name",
        envvar="TABLE_NAME",
        default=DEFAULT_TABLE_NAME,
        show_default=True,
        help="DynamoDB table name",
    )(func)
    return func


def counter_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Counter definition options."""
    func = click.option(
        "--template",
        envvar="SHARD_TEMPLATE",
        default="{}",
        help="Default shard fields as a JSON object",
    )(func)
    func = click.option(
        "--rollup-interval",
        envvar="ROLLUP_INTERVAL",
        type=click.FloatRange(min=0, min_open=True),
        default=60,
        show_default=True,
        help="Seconds per tick",
    )(func)
    func = click.option(
        "--shard-count",
        envvar="SHARD_COUNT",
        type=click.IntRange(min=1),
        default=10,
        show_default=True,
        help="Number of shards per parent document",
    )(func)
    func = click.option(
        "--name",
        envvar="COUNTER_NAME",
        required=True,
        help="Counter name (shard sub-collection)",
    )(func)
    return func


def _definition(name: str, shard_count: int, rollup_interval: float, template: str) -> CounterDefinition:
    try:
        default_template = json.loads(template)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--template") from e
    if not isinstance(default_template, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--template")
    try:
        return CounterDefinition(
            name=name,
            shard_count=shard_count,
            default_shard_template=default_template,
            rollup_interval=rollup_interval,
        )
    except ShardCounterError as e:
        raise click.BadParameter(str(e)) from e


def _parent(path: str) -> DocumentRef:
    try:
        return DocumentRef.from_path(path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="PARENT") from e


def _parse_delta(assignment: str) -> tuple[str, int | float]:
    """Parse ``FIELD=DELTA`` into a field name and a number."""
    field, sep, raw = assignment.partition("=")
    if not sep or not field:
        raise click.BadParameter(f"expected FIELD=DELTA, got {assignment!r}")
    try:
        return field, int(raw)
    except ValueError:
        pass
    try:
        return field, float(raw)
    except ValueError:
        raise click.BadParameter(f"delta for {field!r} is not a number: {raw!r}") from None


@click.group()
@click.version_option(package_name="sharded-counters")
def cli() -> None:
    """Sharded counter management CLI."""
    pass


@cli.command("create-table")
@store_options
def create_table(table_name: str, region: str | None, endpoint_url: str | None) -> None:
    """Create the DynamoDB table used to store counters."""

    async def _create() -> None:
        async with Repository(table_name, region, endpoint_url) as repo:
            await repo.create_table()

    try:
        asyncio.run(_create())
    except Exception as e:
        click.echo(f"✗ Failed to create table: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Table '{table_name}' is ready")


@cli.command("init-shards")
@store_options
@counter_options
@click.argument("parent")
def init_shards(
    table_name: str,
    region: str | None,
    endpoint_url: str | None,
    name: str,
    shard_count: int,
    rollup_interval: float,
    template: str,
    parent: str,
) -> None:
    """Create every shard of PARENT (e.g. posts/p1), overwriting existing shards."""
    definition = _definition(name, shard_count, rollup_interval, template)
    parent_ref = _parent(parent)

    async def _init() -> list[DocumentRef]:
        async with ShardedCounter(definition, Repository(table_name, region, endpoint_url)) as counter:
            return await counter.create_shards(parent_ref)

    try:
        refs = asyncio.run(_init())
    except Exception as e:
        click.echo(f"✗ Failed to create shards: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Created {len(refs)} shards under {parent_ref.path}")


@cli.command()
@store_options
@counter_options
@click.argument("parent")
@click.argument("deltas", nargs=-1, required=True)
def increment(
    table_name: str,
    region: str | None,
    endpoint_url: str | None,
    name: str,
    shard_count: int,
    rollup_interval: float,
    template: str,
    parent: str,
    deltas: tuple[str, ...],
) -> None:
    """Add FIELD=DELTA values to a random shard of PARENT."""
    definition = _definition(name, shard_count, rollup_interval, template)
    parent_ref = _parent(parent)
    parsed = [_parse_delta(d) for d in deltas]

    async def _increment() -> str:
        async with ShardedCounter(definition, Repository(table_name, region, endpoint_url)) as counter:
            handle = counter.handle()
            for field, delta in parsed:
                handle.increment_field(field, delta)
            result = await handle.update(parent_ref)
            return result.path

    try:
        shard_path = asyncio.run(_increment())
    except Exception as e:
        click.echo(f"✗ Increment failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Updated {shard_path}")


@cli.command()
@store_options
@counter_options
def rollup(
    table_name: str,
    region: str | None,
    endpoint_url: str | None,
    name: str,
    shard_count: int,
    rollup_interval: float,
    template: str,
) -> None:
    """Fold stale shards of every parent into the parent documents."""
    definition = _definition(name, shard_count, rollup_interval, template)

    async def _rollup() -> dict[str, Any]:
        async with ShardedCounter(definition, Repository(table_name, region, endpoint_url)) as counter:
            result = await counter.rollup()
            return result.to_dict()

    try:
        summary = asyncio.run(_rollup())
    except Exception as e:
        click.echo(f"✗ Rollup failed: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"✓ Rolled up {summary['shards_deleted']} shards into "
        f"{summary['parents_rolled_up']} parents ({summary['pages_fetched']} pages)"
    )


@cli.command()
@store_options
@counter_options
@click.argument("parent")
def show(
    table_name: str,
    region: str | None,
    endpoint_url: str | None,
    name: str,
    shard_count: int,
    rollup_interval: float,
    template: str,
    parent: str,
) -> None:
    """Print PARENT and its shards as JSON."""
    definition = _definition(name, shard_count, rollup_interval, template)
    parent_ref = _parent(parent)

    async def _show() -> dict[str, Any]:
        output: dict[str, Any] = {"parent": None, "shards": {}}
        async with Repository(table_name, region, endpoint_url) as repo:
            try:
                output["parent"] = (await repo.get(parent_ref)).fields
            except DocumentNotFoundError:
                pass
            for shard_id in definition.shard_ids():
                try:
                    doc = await repo.get(parent_ref.child(definition.name, shard_id))
                except DocumentNotFoundError:
                    continue
                output["shards"][shard_id] = doc.fields
        return output

    try:
        output = asyncio.run(_show())
    except Exception as e:
        click.echo(f"✗ Failed to read {parent_ref.path}: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(output, indent=2, sort_keys=True))


if __name__ == "__main__":
    cli()
