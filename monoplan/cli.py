"""CLI entry point for monoplan."""

from __future__ import annotations

import functools
import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from .config import EngineConfig, PropagationPolicy, load_config
from .engine import Engine
from .errors import EXIT_CANCELLED, EXIT_VALIDATION, EngineError
from .models import BumpKind, ChangesetStatus
from .shell import fatal, git
from .validator import has_errors

CONFIG_FILE = "monoplan.toml"

F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """Turn engine errors into an error message and the matching exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except EngineError as e:
            diagnostics = e.diagnostics()
            if len(diagnostics) > 1:
                for d in diagnostics:
                    click.echo(f"  {d.severity.value}: [{d.category}] {d.message}", err=True)
            fatal(str(e), e.exit_code)
        except KeyboardInterrupt:
            fatal("Interrupted", EXIT_CANCELLED)

    return wrapper  # type: ignore[return-value]


def _load_config(root: Path, config_path: Path | None) -> EngineConfig:
    if config_path is not None:
        return load_config(config_path)
    if (root / CONFIG_FILE).is_file():
        return load_config(root / CONFIG_FILE)
    return EngineConfig()


def _engine(ctx: click.Context, *, verbose: bool = True) -> Engine:
    root, config_path = ctx.obj
    return Engine(root, _load_config(root, config_path), verbose=verbose)


def _default_author() -> str:
    try:
        name = git("config", "user.email", check=False) or git("config", "user.name", check=False)
    except OSError:
        name = ""
    return name or os.environ.get("USER", "")


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.version_option(package_name="monoplan")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Workspace root (the directory holding the root package.json).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Configuration file (default: <root>/{CONFIG_FILE} if present).",
)
@click.pass_context
def cli(ctx: click.Context, root: Path, config_path: Path | None) -> None:
    """Change impact and version planning for JavaScript monorepos."""
    ctx.obj = (root, config_path)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.pass_context
@handle_errors
def packages(ctx: click.Context, as_json: bool) -> None:
    """List the workspace packages."""
    workspace = _engine(ctx, verbose=not as_json).discover()
    if as_json:
        click.echo(workspace.model_dump_json(indent=2))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.pass_context
@handle_errors
def graph(ctx: click.Context, as_json: bool) -> None:
    """Show internal edges, cycles and external dependencies."""
    engine = _engine(ctx, verbose=False)
    g = engine.graph
    if as_json:
        _echo_json(
            {
                "packages": list(g.names),
                "edges": [e.model_dump(mode="json") for e in g.edges],
                "cycles": [list(c) for c in g.cycles],
                "externals": [e.model_dump(mode="json") for e in g.externals],
            }
        )
        return
    for name in g.names:
        deps = g.dependencies(name)
        click.echo(f"{name} → [{', '.join(deps)}]" if deps else name)
    for cycle in g.cycles:
        click.echo(f"cycle: {' -> '.join(cycle + cycle[:1])}")
    if g.external_names:
        click.echo(f"external: {', '.join(g.external_names)}")


@cli.command()
@click.option("--base", required=True, help="Revision to diff from.")
@click.option("--head", default=None, help="Revision to diff to (default: working tree).")
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.argument("files", nargs=-1)
@click.pass_context
@handle_errors
def affected(
    ctx: click.Context, base: str, head: str | None, as_json: bool, files: tuple[str, ...]
) -> None:
    """Show packages affected by changes since BASE (or by FILES)."""
    engine = _engine(ctx, verbose=not as_json)
    attribution = engine.affected(base, head, changes=list(files) if files else None)
    if as_json:
        click.echo(attribution.model_dump_json(indent=2))


def _plan_options(func: F) -> F:
    options = [
        click.option(
            "--policy",
            type=click.Choice([p.value for p in PropagationPolicy]),
            default=None,
            help="Propagation policy (default: from configuration).",
        ),
        click.option("--revision", default=None, help="Revision id for snapshot versions."),
        click.option("--env", "environment", default=None, help="Only changesets for this environment."),
        click.option("--base", default=None, help="Also bump packages changed since this revision."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@_plan_options
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.option("--changelog", "with_changelog", is_flag=True, help="Print changelog entries.")
@click.pass_context
@handle_errors
def plan(
    ctx: click.Context,
    policy: str | None,
    revision: str | None,
    environment: str | None,
    base: str | None,
    as_json: bool,
    with_changelog: bool,
) -> None:
    """Compute the next versions from pending changesets."""
    engine = _engine(ctx, verbose=not (as_json or with_changelog))
    result = engine.plan(
        policy=PropagationPolicy(policy) if policy else None,
        revision=revision,
        environment=environment,
        base=base,
    )
    if as_json:
        click.echo(result.model_dump_json(indent=2))
    elif with_changelog:
        for package, text in engine.changelog(result).items():
            click.echo(f"# {package}\n")
            click.echo(text)


@cli.command()
@click.option("--plan", "with_plan", is_flag=True, help="Also build and validate a plan.")
@_plan_options
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.pass_context
@handle_errors
def validate(
    ctx: click.Context,
    with_plan: bool,
    policy: str | None,
    revision: str | None,
    environment: str | None,
    base: str | None,
    as_json: bool,
) -> None:
    """Check the workspace (and optionally a plan); exit 1 on errors."""
    engine = _engine(ctx, verbose=not as_json)
    result = None
    if with_plan:
        result = engine.plan(
            policy=PropagationPolicy(policy) if policy else None,
            revision=revision,
            environment=environment,
            base=base,
        )
    issues = engine.validate(result)
    if as_json:
        _echo_json([i.model_dump(mode="json") for i in issues])
    if has_errors(issues):
        ctx.exit(EXIT_VALIDATION)


@cli.group()
def changeset() -> None:
    """Create and manage changesets."""


@changeset.command("add")
@click.argument("package")
@click.option(
    "--bump",
    type=click.Choice([b.value for b in BumpKind if b is not BumpKind.NONE]),
    default=None,
    help="Bump kind (default: configured default_bump).",
)
@click.option("-m", "--message", "description", required=True, help="What changed.")
@click.option("--author", default=None, help="Author (default: git user.email).")
@click.option("--env", "environments", multiple=True, help="Target environment; repeatable.")
@click.option("--production", is_flag=True, help="Mark as a production deployment.")
@click.pass_context
@handle_errors
def changeset_add(
    ctx: click.Context,
    package: str,
    bump: str | None,
    description: str,
    author: str | None,
    environments: tuple[str, ...],
    production: bool,
) -> None:
    """Record a pending changeset for PACKAGE."""
    engine = _engine(ctx, verbose=False)
    created = engine.changesets.create(
        engine.workspace,
        package,
        BumpKind(bump) if bump else engine.config.default_bump,
        description,
        author if author is not None else _default_author(),
        environments=environments or engine.config.environments,
        production_deployment=production,
    )
    click.echo(f"✓ Created changeset {created.id} ({created.package}: {created.bump.value})")


@changeset.command("list")
@click.option("--status", type=click.Choice([s.value for s in ChangesetStatus]), default=None)
@click.option("--package", default=None)
@click.option("--author", default=None)
@click.option("--env", "environment", default=None)
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.pass_context
@handle_errors
def changeset_list(
    ctx: click.Context,
    status: str | None,
    package: str | None,
    author: str | None,
    environment: str | None,
    as_json: bool,
) -> None:
    """List changesets."""
    engine = _engine(ctx, verbose=False)
    found = engine.changesets.list(
        status=ChangesetStatus(status) if status else None,
        package=package,
        author=author,
        environment=environment,
    )
    if as_json:
        _echo_json([c.model_dump(mode="json") for c in found])
        return
    for c in found:
        envs = f" [{', '.join(c.environments)}]" if c.environments else ""
        click.echo(f"{c.id}  {c.status.value:<9} {c.package}: {c.bump.value}{envs}  {c.description}")


@changeset.command("applied")
@click.argument("changeset_id")
@click.pass_context
@handle_errors
def changeset_applied(ctx: click.Context, changeset_id: str) -> None:
    """Mark a pending changeset as applied."""
    _engine(ctx, verbose=False).changesets.mark_applied(changeset_id)
    click.echo(f"✓ Marked {changeset_id} applied")


@changeset.command("discard")
@click.argument("changeset_id")
@click.pass_context
@handle_errors
def changeset_discard(ctx: click.Context, changeset_id: str) -> None:
    """Discard a pending changeset."""
    _engine(ctx, verbose=False).changesets.discard(changeset_id)
    click.echo(f"✓ Discarded {changeset_id}")


@changeset.command("compact")
@click.pass_context
@handle_errors
def changeset_compact(ctx: click.Context) -> None:
    """Delete applied and discarded changesets."""
    removed = _engine(ctx, verbose=False).changesets.compact()
    click.echo(f"✓ Removed {len(removed)} changeset(s)")
