"""CLI commands for procmeter."""

import dataclasses
import json
import time
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from procmeter.config import Config, build_monitor
from procmeter.formatting import format_bandwidth, format_byte_count
from procmeter.logging import configure
from procmeter.models import ProcessFilter, SystemSnapshot


def _load_config(path: Path | None) -> Config:
    try:
        return Config.load(path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e


def _render(snapshot: SystemSnapshot) -> Table:
    cpu = "-" if snapshot.cpu_percent is None else f"{snapshot.cpu_percent:.1f}%"
    net = snapshot.network
    table = Table(
        title=(
            f"tick {snapshot.tick}  cpu {cpu}  "
            f"mem {format_byte_count(snapshot.memory_used)}/{format_byte_count(snapshot.memory_total)}  "
            f"net ↓{format_bandwidth(net.recv_rate / 1024)} ↑{format_bandwidth(net.sent_rate / 1024)}"
        ),
        title_justify="left",
    )
    table.add_column("PID", justify="right")
    table.add_column("Name")
    table.add_column("Display name")
    table.add_column("CPU%", justify="right")
    table.add_column("Read", justify="right")
    table.add_column("Write", justify="right")
    table.add_column("RSS", justify="right")
    for row in snapshot.processes:
        table.add_row(
            str(row.pid),
            row.name,
            row.display_name,
            "-" if row.cpu_percent is None else f"{row.cpu_percent:.1f}",
            format_bandwidth(row.read_rate / 1024),
            format_bandwidth(row.write_rate / 1024),
            format_byte_count(row.memory_rss),
        )
    return table


@click.group()
@click.version_option(package_name="procmeter")
def main() -> None:
    """Sample process and system metrics from /proc."""
    pass


@main.command()
@click.option("--count", "-c", default=2, show_default=True, help="Number of ticks to run")
@click.option("--interval", "-i", type=float, help="Seconds between ticks")
@click.option("--top", "-n", type=int, help="Processes to show per tick (0 for all)")
@click.option(
    "--filter",
    "process_filter",
    type=click.Choice([f.value for f in ProcessFilter]),
    help="Which processes to list",
)
@click.option("--proc-root", type=click.Path(file_okay=False, path_type=Path), help="Proc root")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print one JSON record per tick")
def sample(
    count: int,
    interval: float | None,
    top: int | None,
    process_filter: str | None,
    proc_root: Path | None,
    config_path: Path | None,
    as_json: bool,
) -> None:
    """Run a few ticks in the foreground and print each record.

    CPU percentages need two ticks; the first record shows them as pending.
    """
    config = _load_config(config_path)
    if interval is not None:
        config.sampling.interval = interval
    if top is not None:
        config.sampling.top = top
    if process_filter is not None:
        config.sampling.filter = process_filter
    if proc_root is not None:
        config.sampling.proc_root = str(proc_root)
    try:
        config.validate()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    configure(config.logging)
    monitor = build_monitor(config)
    console = Console(highlight=False)

    for i in range(count):
        if i:
            time.sleep(config.sampling.interval)
        snapshot = monitor.tick()
        if as_json:
            click.echo(json.dumps(dataclasses.asdict(snapshot), ensure_ascii=False))
        else:
            console.print(_render(snapshot))


@main.group("config")
def config_group() -> None:
    """Manage the configuration file."""
    pass


@config_group.command("init")
@click.option("--path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path: Path | None, force: bool) -> None:
    """Write the default configuration."""
    config = Config()
    path = path or config.config_path
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    config.save(path)
    click.echo(f"Wrote {path}")


@config_group.command("show")
@click.option("--path", type=click.Path(dir_okay=False, path_type=Path))
def config_show(path: Path | None) -> None:
    """Print the effective configuration."""
    click.echo(_load_config(path).dumps())
