"""Typer CLI entrypoint for hybrid triage runs."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from apps.cli.logging_config import setup_logging
from packages.analyzer_adapter.load_findings import FindingsInputError, load_findings
from packages.exporters.jsonl import write_jsonl
from packages.hybrid_validation.aggregator import BatchResult
from packages.hybrid_validation.config import Settings, load_settings
from packages.hybrid_validation.engine import build_cache, build_orchestrator
from packages.hybrid_validation.errors import ConfigurationError
from packages.schema.models import CacheStats, EnhancedFinding, Severity

app = typer.Typer(add_completion=False)
console = Console()

_VALID_FORMATS = {"jsonl", "table"}
_BLOCKING_ON_HIGH = {Severity.CRITICAL, Severity.HIGH}


def _normalize_formats(values: Sequence[str]) -> List[str]:
    if not values:
        return ["jsonl"]
    normalized = []
    for value in values:
        fmt = value.lower()
        if fmt not in _VALID_FORMATS:
            raise typer.BadParameter(
                f"Unsupported format '{value}'. Choose from {sorted(_VALID_FORMATS)}"
            )
        if fmt not in normalized:
            normalized.append(fmt)
    return normalized


def _settings_or_exit(config: Optional[Path]) -> Settings:
    try:
        return load_settings(config)
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=2) from exc


@app.command()
def triage(
    findings: Path = typer.Option(..., "--findings", help="Analyzer output (JSON or JSONL)"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML settings file"),
    format: List[str] = typer.Option(
        ["jsonl"], "--format", help="Repeatable option: jsonl, table"
    ),
    out: Path = typer.Option(Path("artifacts/triage.jsonl"), "--out", help="Output path for JSONL"),
    fail_on_high: bool = typer.Option(
        False,
        "--fail-on-high",
        help="Treat only HIGH/CRITICAL kept findings as blocking",
    ),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log detail"),
) -> None:
    """Validate analyzer findings and export the ones likely to be real."""

    setup_logging(verbose)
    formats = _normalize_formats(format)
    settings = _settings_or_exit(config)

    try:
        batch = load_findings(findings)
    except FindingsInputError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=2) from exc

    console.log(f"Starting triage: findings={len(batch)} source={findings} formats={formats}")

    with build_orchestrator(settings) as orchestrator:
        result = orchestrator.enhance_batch(batch)
        stats = orchestrator.cache_stats()

    _print_summary(result, stats)
    _export_results(result.findings, formats=formats, out=out, model_name=settings.client.model)

    blocking = _blocking_findings(result.findings, fail_on_high)
    if blocking:
        console.print(f"[red]{len(blocking)} blocking finding(s) detected[/]")
        raise typer.Exit(code=1)

    console.print("[green]No blocking findings identified[/]")
    raise typer.Exit(code=0)


@app.command("cache-stats")
def cache_stats(
    config: Optional[Path] = typer.Option(None, "--config", help="YAML settings file"),
) -> None:
    """Show the persistent AI response cache size."""

    settings = _settings_or_exit(config)
    cache = build_cache(settings)
    stats = cache.stats()
    console.print(f"Cache directory: {cache.directory}")
    console.print(f"Entries: {stats.size}")


@app.command("cache-clear")
def cache_clear(
    config: Optional[Path] = typer.Option(None, "--config", help="YAML settings file"),
) -> None:
    """Delete every cached AI response."""

    settings = _settings_or_exit(config)
    build_cache(settings).clear()
    console.print("[green]AI response cache cleared[/]")


@app.command("cache-cleanup")
def cache_cleanup(
    config: Optional[Path] = typer.Option(None, "--config", help="YAML settings file"),
) -> None:
    """Delete expired cached AI responses."""

    settings = _settings_or_exit(config)
    removed = build_cache(settings).cleanup_expired()
    console.print(f"Removed {removed} expired cache entr{'y' if removed == 1 else 'ies'}")


def _blocking_findings(
    findings: List[EnhancedFinding],
    fail_on_high: bool,
) -> List[EnhancedFinding]:
    if fail_on_high:
        return [item for item in findings if item.severity in _BLOCKING_ON_HIGH]
    return list(findings)


def _print_summary(result: BatchResult, stats: CacheStats) -> None:
    summary = result.summary
    console.log(
        f"Triage complete: submitted={summary.submitted} kept={len(result.findings)}"
        f" confirmed={summary.confirmed} skipped={summary.skipped}"
        f" rejected={summary.rejected} local_filtered={summary.local_filtered}"
        f" failed={summary.failed}"
    )
    console.log(
        f"AI cache: hits={stats.hits} misses={stats.misses} size={stats.size}"
        f" hit_rate={stats.hit_rate:.1%} avoided={stats.requests_avoided:.1%}"
    )


def _export_results(
    findings: List[EnhancedFinding],
    *,
    formats: Sequence[str],
    out: Path,
    model_name: str,
) -> None:
    fmt_set = set(formats)

    if "jsonl" in fmt_set:
        write_jsonl(out, findings, model_name)
        console.log(f"Wrote {len(findings)} finding(s) to {out}")

    if "table" in fmt_set:
        table = Table(title="triaged findings")
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Severity")
        table.add_column("Verdict")
        table.add_column("Confidence", justify="right")
        table.add_column("Location")
        for item in findings:
            table.add_row(
                item.finding.id,
                item.finding.title,
                item.severity.value,
                item.verdict.value,
                f"{item.confidence:.2f}",
                str(item.finding.location),
            )
        console.print(table)


if __name__ == "__main__":  # pragma: no cover - manual execution
    app()
