import json
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from podcast_history_converter.core.context import ApplicationContext
from podcast_history_converter.core.errors import ConversionError, StoreError
from podcast_history_converter.matching.episodes import DEFAULT_DURATION_TOLERANCE
from podcast_history_converter.matching.feeds import FeedMatchResult
from podcast_history_converter.model.feed import FeedIdentity
from podcast_history_converter.model.result import RunReport
from podcast_history_converter.pipeline.converter import ConverterPipeline
from podcast_history_converter.players import PLAYER_REGISTRY
from podcast_history_converter.players.base import Player
from podcast_history_converter.utils.opml_parser import parse_opml_file

app = typer.Typer(
    help="Podcast History Converter: move listening history between podcast apps",
    no_args_is_help=True,
)

SUCCESS_SYMBOL = "✓"
FAILURE_SYMBOL = "❌"
INFO_SYMBOL = "ℹ️"

FORMAT_HELP = f"Player format ({', '.join(sorted(PLAYER_REGISTRY))})"


def _load_opml(
    opml_path: Path, destination_opml_path: Optional[Path]
) -> Tuple[List[FeedIdentity], List[FeedIdentity]]:
    """Parse the OPML exports; a single file serves both sides."""
    source_opml = parse_opml_file(opml_path)
    if destination_opml_path is None:
        return source_opml, source_opml
    return source_opml, parse_opml_file(destination_opml_path)


def _create_pipeline(
    app_ctx: ApplicationContext,
    source: Player,
    destination: Player,
    dry_run: bool = False,
) -> ConverterPipeline:
    """Build a pipeline between two open stores, configured from settings."""
    return ConverterPipeline(
        source=source,
        destination=destination,
        logger_manager=app_ctx.logger_manager,
        duration_tolerance=app_ctx.conf.get_int(
            "matching.duration_tolerance_seconds", DEFAULT_DURATION_TOLERANCE
        ),
        title_fallback=app_ctx.conf.get_bool("matching.title_fallback", True),
        dry_run=dry_run,
    )


def _plan_destinations(
    destination_formats: List[str],
    destination_paths: List[Path],
    output_paths: List[Path],
    destination_opml_paths: List[Path],
    dry_run: bool,
) -> List[Tuple[str, Path, Optional[Path], Optional[Path]]]:
    """Line up repeated destination options into (format, store, output, opml) rows.

    Raises:
        ValueError: If the repeated options don't pair up
        StoreError: If an output would overwrite a destination store
    """
    count = len(destination_paths)
    if len(destination_formats) != count:
        raise ValueError("Give one --to format for every --destination")
    if output_paths and len(output_paths) != count:
        raise ValueError("Give one --output for every --destination")
    if not output_paths and not dry_run:
        raise ValueError("--output is required unless --dry-run is given")
    if destination_opml_paths and len(destination_opml_paths) not in (1, count):
        raise ValueError("Give one --destination-opml, or one for every --destination")

    destinations = {path.resolve() for path in destination_paths}
    for output_path in output_paths:
        if output_path.resolve() in destinations:
            raise StoreError(
                f"Output {output_path} would overwrite the destination store"
            )
    if len({path.resolve() for path in output_paths}) != len(output_paths):
        raise ValueError("Every --output must be a different file")

    outputs = output_paths or [None] * count
    if len(destination_opml_paths) == 1:
        opmls = destination_opml_paths * count
    else:
        opmls = destination_opml_paths or [None] * count
    return list(zip(destination_formats, destination_paths, outputs, opmls))


def _print_feed_match(result: FeedMatchResult) -> None:
    """Print feed pairs and everything left over."""
    typer.echo(f"\nMatched feeds ({len(result.matched)}):")
    for pair in result.matched:
        typer.echo(f"  {SUCCESS_SYMBOL} {pair.source.identity} -> {pair.destination.identity}")

    if result.unmatched_source:
        typer.echo(f"\nUnmatched source feeds ({len(result.unmatched_source)}):")
        for feed in sorted(result.unmatched_source):
            typer.echo(f"  {FAILURE_SYMBOL} {feed}")

    if result.unmatched_destination:
        typer.echo(
            f"\nUnmatched destination feeds ({len(result.unmatched_destination)}):"
        )
        for feed in sorted(result.unmatched_destination):
            typer.echo(f"  {FAILURE_SYMBOL} {feed}")

    for skip in result.skips:
        typer.secho(f"{INFO_SYMBOL}  {skip}", fg="yellow")


def _print_report(report: RunReport) -> None:
    """Print conversion results, listing every skip for manual follow-up."""
    typer.echo(f"\n{report.source_format} -> {report.destination_format}")
    for feed in report.per_feed:
        status = SUCCESS_SYMBOL if not feed.unmatched_source_episodes else INFO_SYMBOL
        typer.echo(
            f"{status} {feed.feed}: {feed.matched_episodes} episodes matched"
        )
        for episode in feed.unmatched_source_episodes:
            typer.echo(f"    unmatched source episode {episode}")
        for skip in feed.skips:
            typer.secho(f"    {skip}", fg="yellow")

    for feed in report.unmatched_source_feeds:
        typer.echo(f"{FAILURE_SYMBOL} unmatched source feed {feed}")
    for feed in report.unmatched_destination_feeds:
        typer.echo(f"{FAILURE_SYMBOL} unmatched destination feed {feed}")
    for skip in report.feed_skips:
        typer.secho(f"{INFO_SYMBOL}  {skip}", fg="yellow")

    typer.echo(f"\nMetrics: {report.metrics}")
    if report.dry_run:
        typer.echo(f"{INFO_SYMBOL}  Dry run: no output written")


@app.command()
def formats() -> None:
    """List supported player formats."""
    typer.echo("\nSupported formats:")
    for cli_name, player_class in sorted(PLAYER_REGISTRY.items()):
        typer.echo(f"  • {cli_name} ({player_class.name})")


@app.command()
def match_feeds(
    source_format: str = typer.Option(..., "--from", "-f", help=FORMAT_HELP),
    source_path: Path = typer.Option(..., "--source", "-s", help="Source store file"),
    destination_format: str = typer.Option(..., "--to", "-t", help=FORMAT_HELP),
    destination_path: Path = typer.Option(
        ..., "--destination", "-d", help="Destination store file"
    ),
    opml_path: Path = typer.Option(
        ..., "--opml", help="OPML export of the source app"
    ),
    destination_opml_path: Optional[Path] = typer.Option(
        None, "--destination-opml", help="OPML export of the destination app"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config file"
    ),
) -> None:
    """Preview how feeds pair up without converting anything."""
    with ApplicationContext(config_path) as app_ctx:
        try:
            source_opml, destination_opml = _load_opml(opml_path, destination_opml_path)
            pipeline = _create_pipeline(
                app_ctx,
                app_ctx.open_player(source_format, source_path),
                app_ctx.open_player(destination_format, destination_path),
            )
            result = pipeline.match_feeds(source_opml, destination_opml)
        except (ConversionError, ValueError) as e:
            app_ctx.logger.error(f"Feed matching failed: {e}")
            typer.echo(f"{FAILURE_SYMBOL} {e}")
            raise typer.Exit(1)

        _print_feed_match(result)


@app.command()
def convert(
    ctx: typer.Context,
    source_format: str = typer.Option(..., "--from", "-f", help=FORMAT_HELP),
    source_path: Path = typer.Option(..., "--source", "-s", help="Source store file"),
    destination_formats: List[str] = typer.Option(
        ..., "--to", "-t", help=f"{FORMAT_HELP}, once per --destination"
    ),
    destination_paths: List[Path] = typer.Option(
        ...,
        "--destination",
        "-d",
        help="Destination store file (left untouched), may be repeated",
    ),
    output_paths: Optional[List[Path]] = typer.Option(
        None,
        "--output",
        "-o",
        help="Where to write each converted destination store, in --destination order",
    ),
    opml_path: Path = typer.Option(
        ..., "--opml", help="OPML export of the source app"
    ),
    destination_opml_paths: Optional[List[Path]] = typer.Option(
        None,
        "--destination-opml",
        help="OPML export of the destination app (defaults to --opml), "
        "once or once per --destination",
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config file"
    ),
    report_path: Optional[Path] = typer.Option(
        None, "--report", "-r", help="Write the run reports as a JSON list"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Match and report without writing output"
    ),
    duration_tolerance_seconds: Optional[int] = typer.Option(
        None, "--duration-tolerance", help="Seconds allowed by title+duration matching"
    ),
    title_fallback: Optional[bool] = typer.Option(
        None,
        "--title-fallback/--no-title-fallback",
        help="Pair feeds by unique title when URLs differ",
    ),
) -> None:
    """Convert listening history from the source store into copies of the destinations.

    The source history is extracted once and reused for every destination.
    """
    try:
        plan = _plan_destinations(
            destination_formats,
            destination_paths,
            list(output_paths or []),
            list(destination_opml_paths or []),
            dry_run,
        )
    except (ConversionError, ValueError) as e:
        typer.echo(f"{FAILURE_SYMBOL} {e}")
        raise typer.Exit(1)

    with ApplicationContext(config_path, typer_ctx=ctx) as app_ctx:
        reports: List[RunReport] = []
        written: List[Path] = []
        try:
            source = app_ctx.open_player(source_format, source_path)
            # Open every store up front so a broken one fails before any output
            destinations = [
                app_ctx.open_player(destination_format, destination_path)
                for destination_format, destination_path, _, _ in plan
            ]

            for destination, (_, _, output_path, destination_opml_path) in zip(
                destinations, plan
            ):
                source_opml, destination_opml = _load_opml(
                    opml_path, destination_opml_path
                )
                pipeline = _create_pipeline(app_ctx, source, destination, dry_run=dry_run)
                reports.append(pipeline.run(source_opml, destination_opml))

                if not dry_run:
                    destination.save(output_path)
                    written.append(output_path)
        except (ConversionError, ValueError) as e:
            app_ctx.logger.error(f"Conversion failed: {e}")
            for output_path in written:
                typer.echo(f"{INFO_SYMBOL}  Already written: {output_path}")
            typer.echo(f"{FAILURE_SYMBOL} {e}")
            raise typer.Exit(1)

        for report in reports:
            _print_report(report)

        if report_path is not None:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            with open(report_path, "w") as file:
                json.dump([report.to_dict() for report in reports], file, indent=2)
            typer.echo(f"{SUCCESS_SYMBOL} Report written to {report_path}")

        for output_path in written:
            typer.echo(f"\n{SUCCESS_SYMBOL} Converted store written to {output_path}")


if __name__ == "__main__":
    app()
