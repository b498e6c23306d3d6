"""emutest CLI: emulator image management and golden-snapshot workflow."""

from pathlib import Path
from typing import Annotated

import typer

from emutest import __version__
from emutest.cli._helpers import console, print_results, setup_logging, start_options
from emutest.lib.asset_store import AssetStore
from emutest.lib.config import DEFAULT_EMU_IMG, KILL_TIMEOUT_MS, connection_from_env
from emutest.lib.errors import ComparisonFailure, EmuTestError
from emutest.lib.report_generator import generate_report
from emutest.lib.session import Session

app = typer.Typer(
    name="emutest",
    help="Golden-snapshot UI testing against a containerized device emulator.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"emutest {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version", "-V",
            help="Show version",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Debug logging")
    ] = False,
) -> None:
    """emutest: drive firmware in an emulator and assert on its screen."""
    setup_logging(verbose)


# ── Emulator image and containers ──────────────────────────


@app.command()
def pull(
    image: Annotated[
        str, typer.Option("--image", "-i", help="Emulator image")
    ] = DEFAULT_EMU_IMG,
) -> None:
    """Pull the emulator image unless it is already present."""
    try:
        pulled = Session.check_and_pull_image(image)
    except EmuTestError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"Pulled {image}" if pulled else f"{image} already present")


@app.command()
def cleanup(
    timeout: Annotated[
        int, typer.Option("--timeout", help="Give up after this many ms")
    ] = KILL_TIMEOUT_MS,
) -> None:
    """Remove every emulator container started by emutest."""
    try:
        Session.stop_all_emulators(timeout)
    except EmuTestError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print("Emulator containers removed")


# ── Sessions ───────────────────────────────────────────────


@app.command()
def capture(
    elf: Annotated[Path, typer.Argument(help="Firmware ELF")],
    output: Annotated[Path, typer.Argument(help="PNG file to write")],
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="YAML start options")
    ] = None,
) -> None:
    """Start the firmware, save its first screen, stop it."""
    options = start_options(config)
    try:
        session = Session(elf, **connection_from_env())
        try:
            session.start(options)
            snapshot = session.snapshot(output)
        finally:
            session.close()
    except EmuTestError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"Saved {snapshot.width}x{snapshot.height} screen to {snapshot.path}")


@app.command()
def record(
    elf: Annotated[Path, typer.Argument(help="Firmware ELF")],
    base: Annotated[Path, typer.Argument(help="Directory holding snapshots/ and snapshots-tmp/")],
    case: Annotated[str, typer.Argument(help="Test case name")],
    count: Annotated[int, typer.Argument(help="Number of compared snapshots", min=1)],
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="YAML start options")
    ] = None,
) -> None:
    """Run the navigation sequence and compare it against golden."""
    options = start_options(config)
    try:
        session = Session(elf, **connection_from_env())
        try:
            session.start(options)
            results = session.compare_snapshots_and_accept(base, case, count)
        finally:
            session.close()
    except ComparisonFailure as e:
        print_results(e.results)
        console.print(f"Review with [bold]emutest compare {base} {case} {count} --report DIR[/bold]")
        raise typer.Exit(1) from None
    except EmuTestError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    print_results(results)


# ── Golden snapshots ───────────────────────────────────────


@app.command()
def compare(
    base: Annotated[Path, typer.Argument(help="Directory holding snapshots/ and snapshots-tmp/")],
    case: Annotated[str, typer.Argument(help="Test case name")],
    count: Annotated[int, typer.Argument(help="Number of compared snapshots", min=1)],
    report: Annotated[
        Path | None, typer.Option("--report", "-r", help="Write an HTML report here")
    ] = None,
) -> None:
    """Compare an existing candidate sequence against golden (no emulator)."""
    results = Session.compare_snapshots(base, case, count)
    failed = print_results(results)
    if report is not None:
        path = generate_report(report, results, title=f"emutest: {case}")
        console.print(f"Report: {path}")
    if failed:
        raise typer.Exit(1)


@app.command()
def accept(
    base: Annotated[Path, typer.Argument(help="Directory holding snapshots/ and snapshots-tmp/")],
    case: Annotated[str, typer.Argument(help="Test case name")],
) -> None:
    """Promote the candidate sequence to golden."""
    store = AssetStore(base, case)
    try:
        accepted = store.accept()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"Accepted {len(accepted)} snapshot(s) into {store.golden_dir}")
