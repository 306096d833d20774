"""Command-line interface for rwlockfile.

Commands:
    - status: Show who holds the lock on a resource
    - run: Run a command while holding a read or write lock

\b
Examples:
    rwlockfile status ~/.cache/mytool
    rwlockfile run ~/.cache/mytool --write --reason rebuild -- make cache
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rwlockfile import __version__
from rwlockfile.errors import LockTimeoutError, RWLockfileError
from rwlockfile.models import Job, LockStatus, LockType, format_timestamp
from rwlockfile.process_liveness import is_process_alive
from rwlockfile.record_store import load_record
from rwlockfile.rwlock import RWLockfile

__all__ = ["main"]


@click.group()
@click.version_option(__version__, prog_name="rwlockfile")
def main():
    """Cross-process read/write locks backed by a lock file."""
    pass


@main.command()
@click.argument("base", type=click.Path(path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the raw lock record as JSON")
def status(base: Path, as_json: bool):
    """Show the holders recorded for BASE without modifying the record.

    \b
    Examples:
        rwlockfile status /tmp/cache
        rwlockfile status /tmp/cache --json
    """
    lock_file = Path(f"{base}.lock").resolve()
    record = load_record(lock_file)
    console = Console()

    if as_json:
        click.echo(json.dumps(record.to_dict(), indent=2))
        return

    if record.is_empty:
        console.print(f"[green]open[/green] {escape(str(lock_file))}")
        return

    table = Table(title=escape(str(lock_file)))
    table.add_column("Type", style="bold")
    table.add_column("PID", justify="right")
    table.add_column("Alive")
    table.add_column("Reason")
    table.add_column("Since")
    table.add_column("ID", style="dim")

    if record.writer is not None:
        _add_job_row(table, "write", record.writer)
    for job in record.readers:
        _add_job_row(table, "read", job)

    console.print(table)


def _add_job_row(table: Table, kind: str, job: Job) -> None:
    alive = "[green]yes[/green]" if is_process_alive(job.pid) else "[red]no (stale)[/red]"
    table.add_row(
        kind,
        str(job.pid),
        alive,
        escape(job.reason or "-"),
        format_timestamp(job.created),
        job.id,
    )


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("base", type=click.Path(path_type=Path))
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--write", "lock_type", flag_value="write", help="Take the exclusive write lock")
@click.option(
    "--read", "lock_type", flag_value="read", default=True, help="Take a shared read lock (default)"
)
@click.option("--reason", help="Reason recorded with the lock", type=str)
@click.option("--timeout", help="Seconds to wait for the lock (negative: don't wait)", type=float)
def run(
    base: Path,
    command: tuple[str, ...],
    lock_type: str,
    reason: str | None,
    timeout: float | None,
):
    """Run COMMAND while holding a lock on BASE.

    The exit code is the command's exit code, or 1 if the lock could not be
    acquired.

    \b
    Examples:
        rwlockfile run /tmp/cache -- ls /tmp/cache
        rwlockfile run /tmp/cache --write --reason rebuild -- ./rebuild.sh
    """
    try:
        exit_code = asyncio.run(
            _run_locked(base, LockType(lock_type), reason or " ".join(command), timeout, command)
        )
    except LockTimeoutError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo(f"Inspect holders with: rwlockfile status {base}", err=True)
        sys.exit(1)
    except RWLockfileError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except FileNotFoundError as e:
        click.echo(f"Error: command not found: {e.filename or command[0]}", err=True)
        sys.exit(127)
    except KeyboardInterrupt:
        click.echo("\nCancelled by user.")
        sys.exit(130)
    sys.exit(exit_code)


async def _run_locked(
    base: Path,
    lock_type: LockType,
    reason: str | None,
    timeout: float | None,
    command: tuple[str, ...],
) -> int:
    err_console = Console(stderr=True)

    def waiting(status: LockStatus) -> None:
        err_console.print(
            f"[yellow]Waiting for {lock_type.value} lock:[/yellow] {escape(status.describe())}"
        )

    lock = RWLockfile(base, on_blocked=waiting)
    async with lock.lock(lock_type, reason=reason, timeout=timeout):
        process = await asyncio.create_subprocess_exec(*command)
        return await process.wait()


if __name__ == "__main__":
    main()
