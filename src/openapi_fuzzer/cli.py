"""CLI entry point for openapi-fuzzer."""

import signal
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from openapi_fuzzer.config import FuzzerConfig, configure_logging, load_config
from openapi_fuzzer.dispatcher import Dispatcher
from openapi_fuzzer.errors import FuzzerError
from openapi_fuzzer.fuzzer import Fuzzer, OperationReport
from openapi_fuzzer.generator.payload import apply_header_overrides
from openapi_fuzzer.parser.openapi import load_operations
from openapi_fuzzer.report import ResultWriter, load_finding


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    """Parse ``Name: value`` options. Names are lower-cased."""
    headers = {}
    for raw in values:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"invalid header format: {raw!r}", param_hint="'-H'")
        headers[name.strip().lower()] = value.strip()
    return headers


def _build_config(config_path: Path | None, **options) -> FuzzerConfig:
    if config_path is not None:
        return load_config(config_path, **options)
    try:
        return FuzzerConfig(**{k: v for k, v in options.items() if v is not None})
    except ValidationError as e:
        raise FuzzerError(f"invalid options: {e}") from e


def _summary_line(report: OperationReport) -> str:
    mean = f"{report.stats.mean / 1000:.1f}ms" if report.stats else "-"
    line = f"{report.method:<7} {report.path:<40} {report.status.upper():<8} trials={report.trials} mean={mean}"
    if report.reason:
        line += f"  ({report.reason})"
    return line


@click.group()
def main():
    """OpenAPI Fuzzer — property-based fuzzing of HTTP APIs from their OpenAPI document."""
    pass


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.option("-u", "--url", default=None, help="Base URL of the API to fuzz.")
@click.option("-i", "--ignore-status-code", "ignored", multiple=True, type=int, help="Status code that is never a finding.")
@click.option("-H", "--header", "headers", multiple=True, help="Extra header 'Name: value', overrides generated ones.")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, path_type=Path), help="YAML config file.")
@click.option("--max-trials", default=None, type=int, help="Trials per operation.")
@click.option("--max-backoff-attempts", default=None, type=int, help="Retries while the server is overloaded.")
@click.option("--max-backoff", default=None, type=float, help="Longest single wait in seconds while backing off.")
@click.option("--overload-status", multiple=True, type=int, help="Status code meaning 'back off and retry'.")
@click.option("--seed", default=None, type=int, help="Master seed, to reproduce a run.")
@click.option("--workers", default=None, type=int, help="Operations fuzzed in parallel.")
@click.option("--results-dir", default="results", type=click.Path(path_type=Path), help="Directory for findings.")
@click.option("--stats-file", default="stats.json", type=click.Path(path_type=Path), help="File for timing statistics.")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def run(
    spec_path: Path,
    url: str | None,
    ignored: tuple[int, ...],
    headers: tuple[str, ...],
    config_path: Path | None,
    max_trials: int | None,
    max_backoff_attempts: int | None,
    max_backoff: float | None,
    overload_status: tuple[int, ...],
    seed: int | None,
    workers: int | None,
    results_dir: Path,
    stats_file: Path,
    insecure: bool,
    verbose: bool,
):
    """Fuzz every operation of an OpenAPI document against a live API."""
    configure_logging(verbose)
    try:
        config = _build_config(
            config_path,
            base_url=url,
            ignored_status_codes=list(ignored) or None,
            extra_headers=_parse_headers(headers) or None,
            max_trials=max_trials,
            max_backoff_attempts=max_backoff_attempts,
            max_backoff=max_backoff,
            overload_status_codes=list(overload_status) or None,
            seed=seed,
            workers=workers,
            verify_tls=False if insecure else None,
        )
        click.echo(f"Parsing {spec_path}...")
        operations = load_operations(spec_path)
        click.echo(f"Found {len(operations)} operations.")

        fuzzer = Fuzzer(operations, config, writer=ResultWriter(results_dir, config.base_url))
        click.echo(f"Fuzzing {config.base_url} (seed: {fuzzer.seed})...")

        def _interrupt(signum, frame):
            click.echo("Stopping after the current trial...", err=True)
            fuzzer.stop()

        previous = signal.signal(signal.SIGINT, _interrupt)
        try:
            reports = fuzzer.run()
        finally:
            signal.signal(signal.SIGINT, previous)

        for report in reports:
            click.echo(_summary_line(report))
        ResultWriter(results_dir, config.base_url).write_stats(fuzzer.stats.snapshot(), stats_file)
        click.echo(f"Stats saved to {stats_file}")
    except FuzzerError as e:
        raise click.ClickException(str(e)) from e

    findings = [r for r in reports if r.finding_path]
    if findings:
        click.echo(f"{len(findings)} findings saved in {results_dir}")
        sys.exit(1)
    click.echo("Done! No findings.")


@main.command()
@click.argument("finding_path", type=click.Path(exists=True, path_type=Path))
@click.option("-u", "--url", required=True, help="Base URL of the API.")
@click.option("-H", "--header", "headers", multiple=True, help="Extra header 'Name: value', overrides stored ones.")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification.")
def replay(finding_path: Path, url: str, headers: tuple[str, ...], insecure: bool):
    """Re-send the request stored in a finding and show the response status."""
    try:
        config = FuzzerConfig(base_url=url, verify_tls=not insecure)
        finding = load_finding(finding_path)
        payload = finding.payload.model_copy(
            update={"headers": apply_header_overrides(finding.payload.headers, _parse_headers(headers))}
        )
        click.echo(payload.to_curl(config.base_url))
        with Dispatcher(
            config.base_url,
            max_backoff_attempts=config.max_backoff_attempts,
            max_backoff=config.max_backoff,
            verify_tls=config.verify_tls,
        ) as dispatcher:
            response = dispatcher.send(payload)
    except FuzzerError as e:
        raise click.ClickException(str(e)) from e

    recorded = finding.status_code if finding.status_code is not None else "-"
    click.echo(f"Status: {response.status_code} (recorded: {recorded})")
