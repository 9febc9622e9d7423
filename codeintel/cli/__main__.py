"""codeintel CLI - Main Entry Point.

Commands:
    init-db  - Create metadata tables and storage directories
    enqueue  - Queue a bundle for conversion
    process  - Run the conversion worker
    purge    - Run one retention pass
    config   - Show the effective configuration
"""

import asyncio
import logging
import sys
from typing import Optional

import click

from . import __version__, __cli_name__
from ..config import ConfigLoader, ConfigStore, WorkerConfig
from ..faults import Fault
from .utils.colors import success, error, warning, info, section, kv, _CHECK, _CROSS


def configure_logging(level: str, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(ctx: click.Context) -> WorkerConfig:
    return ctx.obj["config"]


@click.group()
@click.version_option(version=__version__, prog_name=__cli_name__)
@click.option("--config", "config_files", multiple=True, type=click.Path(dir_okay=False),
              help="YAML or JSON config file (repeatable)")
@click.option("--env-file", type=click.Path(dir_okay=False), help=".env file with LSIF_* keys")
@click.option("--storage-root", type=str, help="Override storage root")
@click.option("--database-url", type=str, help="Override database URL")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx, config_files, env_file: Optional[str], storage_root: Optional[str],
        database_url: Optional[str], verbose: bool):
    """Code-intelligence upload ingestion and retention worker.

    \b
    Quick start:
      codeintel init-db
      codeintel enqueue github.com/org/repo <sha> dump.lsif.gz
      LSIF_CONVERTER=mypkg.convert:Converter codeintel process --once
    """
    try:
        loader = ConfigLoader.load(
            paths=list(config_files),
            env_file=env_file,
            overrides={"storage_root": storage_root, "database_url": database_url},
        )
        config = loader.get_worker_config()
    except Fault as e:
        error(f"  {_CROSS} {e}")
        sys.exit(2)

    configure_logging(config.log_level, verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create metadata tables and storage directories."""
    from .commands.storage import init_db as _init_db

    config = _load_config(ctx)
    try:
        created = asyncio.run(_init_db(config))
    except Fault as e:
        error(f"  {_CROSS} Failed to initialise database: {e}")
        sys.exit(1)

    if created:
        success(f"  {_CHECK} Created tables: {', '.join(created)}")
    else:
        info("  Schema already up to date")
    kv("Storage root", config.storage_root)


@cli.command()
@click.argument("repository")
@click.argument("commit")
@click.argument("bundle", type=click.Path(exists=True, dir_okay=False))
@click.option("--root", default="", help="Path prefix of the indexed project within the repository")
@click.pass_context
def enqueue(ctx, repository: str, commit: str, bundle: str, root: str):
    """
    Queue a bundle for conversion.

    Examples:
      codeintel enqueue github.com/org/repo 4b0c...e1 dump.lsif.gz
      codeintel enqueue github.com/org/repo 4b0c...e1 web.lsif.gz --root web/
    """
    from .commands.storage import enqueue as _enqueue

    try:
        upload = asyncio.run(_enqueue(_load_config(ctx), repository, commit, bundle, root))
    except Fault as e:
        error(f"  {_CROSS} Failed to enqueue upload: {e}")
        sys.exit(1)

    success(f"  {_CHECK} Enqueued upload {upload.id}")
    kv("Repository", upload.repository)
    kv("Commit", upload.commit)
    kv("Root", upload.root or "(repository root)")


@cli.command()
@click.option("--once", is_flag=True, help="Drain the queue and exit instead of polling")
@click.pass_context
def process(ctx, once: bool):
    """Run the conversion worker."""
    from .commands.worker import process as _process

    store = ConfigStore(_load_config(ctx))
    try:
        handled = asyncio.run(_process(store, once=once))
    except KeyboardInterrupt:
        warning("  Interrupted")
        sys.exit(130)
    except Fault as e:
        error(f"  {_CROSS} Worker stopped: {e}")
        sys.exit(1)

    info(f"  Handled {handled} upload(s)")


@cli.command()
@click.option("--max-bytes", type=int, default=None,
              help="Size budget for the dbs directory (default: configured value)")
@click.pass_context
def purge(ctx, max_bytes: Optional[int]):
    """Evict old dumps until the dbs directory fits its budget."""
    from .commands.storage import purge as _purge

    try:
        pruned = asyncio.run(_purge(_load_config(ctx), max_bytes))
    except Fault as e:
        error(f"  {_CROSS} Purge failed: {e}")
        sys.exit(1)

    if not pruned:
        info("  Nothing pruned")
        return
    success(f"  {_CHECK} Pruned {len(pruned)} dump(s)")
    for dump in pruned:
        kv(f"#{dump.id}", f"{dump.repository}@{dump.commit} {dump.root}".rstrip())


@cli.command("config")
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    section("Configuration")
    for key, value in _load_config(ctx).to_dict().items():
        kv(key, value)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
