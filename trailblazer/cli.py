import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import httpx
import typer
import uvicorn

from trailblazer.config import ApiConfig, TrailblazerConfig, load_config, read_config_file, save_config
from trailblazer.errors import ConfigError
from trailblazer.storage.database import init_db
from trailblazer.storage.record_store import ASSIGNMENTS, NODES, RecordStore

app = typer.Typer()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _api_url(host: Optional[str] = None, port: Optional[int] = None) -> str:
    config = load_config()
    return f"http://{host or config.api_host}:{port or config.api_port}"


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Driver API bind host"),
    port: Optional[int] = typer.Option(None, help="Driver API bind port"),
):
    """Run the tab recording service in the foreground."""
    config = load_config()
    _configure_logging(config.log_level)
    typer.echo(f"Serving Trailblazer API on {host or config.api_host}:{port or config.api_port}")
    uvicorn.run(
        "trailblazer.api.app:app",
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower(),
    )


@app.command("init-db")
def init_db_command(db_path: Optional[Path] = typer.Option(None, help="SQLite file to initialize")):
    """Create the record store tables."""
    config = load_config()
    _configure_logging(config.log_level)
    target = db_path or config.db_path
    asyncio.run(init_db(target))
    typer.echo(f"Initialized record store at {target}")


@app.command()
def state(
    host: Optional[str] = typer.Option(None),
    port: Optional[int] = typer.Option(None),
):
    """Show tracked tabs from the running service."""
    url = _api_url(host, port)
    try:
        response = httpx.get(f"{url}/state", timeout=5.0)
    except (httpx.ConnectError, httpx.TimeoutException):
        typer.echo("Trailblazer: NOT RESPONDING (Connection refused)")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        typer.echo(f"Trailblazer: UNHEALTHY (HTTP {response.status_code})")
        raise typer.Exit(code=1)
    tabs = response.json().get("tabs", [])
    typer.echo(f"Tracked tabs: {len(tabs)}")
    for tab in tabs:
        assignment = tab.get("assignment") or {}
        suffix = f" -> {assignment.get('title')} (#{assignment.get('local_id')})" if assignment else ""
        typer.echo(f" - tab {tab['tab_id']} [{tab['state']}]{suffix}")


@app.command()
def assignments(
    limit: int = typer.Option(20, help="Maximum assignments to list"),
    with_nodes: bool = typer.Option(False, "--nodes", help="Include nodes per assignment"),
    json_output: bool = typer.Option(False, "--json", help="Print JSON"),
):
    """List stored assignments, newest first."""
    config = load_config()
    store = RecordStore(config.db_path)

    async def _collect() -> list[dict]:
        await store.initialize()
        rows = []
        for record in await store.list_records(ASSIGNMENTS, limit=limit):
            item = record.model_dump()
            if with_nodes:
                nodes = await store.index_lookup(NODES, "local_assignment_id", record.local_id)
                item["nodes"] = [node.model_dump() for node in nodes]
            rows.append(item)
        return rows

    rows = asyncio.run(_collect())
    if json_output:
        typer.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        typer.echo("No assignments recorded.")
        return
    for row in rows:
        typer.echo(f"#{row['local_id']} {row['title']} - {row['description']}")
        for node in row.get("nodes", []):
            typer.echo(f"    node #{node['local_id']} tab {node['tab_id']}: {node['title']} <{node['url']}>")


@app.command("config-show")
def config_show():
    """Print the effective configuration."""
    typer.echo(load_config().model_dump_json(indent=2))


@app.command("config-set")
def config_set(key: str, value: str):
    """Set one top-level configuration value."""
    field = TrailblazerConfig.model_fields.get(key)
    if field is None or field.annotation is ApiConfig:
        typer.echo(f"Unknown config key: {key}")
        raise typer.Exit(code=1)
    config = read_config_file()
    config[key] = value
    try:
        saved = save_config(config)
    except ConfigError as exc:
        typer.echo(f"Invalid value for {key}: {exc}")
        raise typer.Exit(code=1)
    typer.echo(f"{key} = {getattr(saved, key)}")


if __name__ == "__main__":
    app()
