"""CLI reporting drift between an iptables configuration and iptables-save dumps."""
from __future__ import annotations

import difflib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path

import typer
from rich.console import Console

from ..errors import NormalizerError
from ..logging_config import setup_logging
from ..model import Family
from ..pipeline import Normalizer, read_config_files
from .normalize import build_settings

app = typer.Typer(help="Compare an iptables configuration with iptables-save/ip6tables-save output")
console = Console()

_CHAIN_COUNTERS = re.compile(r"\[\d+:\d+\]$")
_RULE_COUNTERS = re.compile(r"^\[\d+:\d+\]\s+")


@dataclass
class DriftReport:
    family: Family
    dump: Path
    diff: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def drifted(self) -> bool:
        return bool(self.diff)


def clean_dump(text: str) -> str:
    """Drop comments and zero the counters of a dump."""
    lines = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith(":"):
            line = _CHAIN_COUNTERS.sub("[0:0]", line)
        line = _RULE_COUNTERS.sub("", line)
        lines.append(line)
    return "\n".join(lines) + "\n"


@app.command()
def main(
    config: list[Path] = typer.Argument(..., exists=True, readable=True, dir_okay=False, help="Configuration files, read in order"),
    ipv4_dump: Path | None = typer.Option(None, exists=True, readable=True, help="iptables-save output"),
    ipv6_dump: Path | None = typer.Option(None, exists=True, readable=True, help="ip6tables-save output"),
    reparse_dump: bool = typer.Option(False, "--reparse-dump", help="Canonicalize the dump before comparing"),
    nameserver: list[str] = typer.Option([], "--nameserver", help="DNS server to query (repeatable)"),
    dns_retries: int | None = typer.Option(None, min=1, help="Attempts per DNS query"),
    cache_dns: bool = typer.Option(False, "--cache-dns", help="Resolve every name only once per run"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More diagnostics on stderr"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON"),
) -> None:
    dumps = {Family.IPV4: ipv4_dump, Family.IPV6: ipv6_dump}
    if all(dump is None for dump in dumps.values()):
        raise typer.BadParameter("Give --ipv4-dump and/or --ipv6-dump")
    settings = build_settings(nameserver, dns_retries, cache_dns, verbose)
    setup_logging(settings.log_level)
    normalizer = Normalizer(settings)
    results = normalizer.normalize(read_config_files(config))

    reports = []
    for family, dump in dumps.items():
        if dump is None:
            continue
        result = results[family]
        if not result.ok:
            reports.append(DriftReport(family, dump, error=result.error))
            continue
        actual = clean_dump(dump.read_text())
        if reparse_dump:
            try:
                actual = normalizer.renormalize(actual, family)
            except NormalizerError as exc:
                reports.append(DriftReport(family, dump, error=str(exc)))
                continue
        diff = difflib.unified_diff(
            actual.splitlines(),
            result.output.splitlines(),
            fromfile=str(dump),
            tofile="configuration",
            lineterm="",
        )
        reports.append(DriftReport(family, dump, diff=list(diff)))

    if json_output:
        typer.echo(_to_json(reports))
    else:
        _print_reports(reports)
    if any(report.error for report in reports):
        raise typer.Exit(code=2)
    if any(report.drifted for report in reports):
        raise typer.Exit(code=1)


def _print_reports(reports: list[DriftReport]) -> None:
    for report in reports:
        if report.error:
            console.print(f"[red]{report.family.value}: configuration could not be processed[/red]")
            console.print(f"  {report.error}", markup=False)
        elif not report.drifted:
            console.print(f"[green]{report.family.value}: no drift against {report.dump}[/green]")
        else:
            console.print(f"[yellow]{report.family.value}: drift against {report.dump}[/yellow]")
            for line in report.diff:
                style = None
                if line.startswith("@@"):
                    style = "cyan"
                elif line.startswith("+"):
                    style = "green"
                elif line.startswith("-"):
                    style = "red"
                console.print(line, style=style, markup=False, highlight=False)


def _to_json(reports: list[DriftReport]) -> str:
    payload = {
        "drift": any(report.drifted for report in reports),
        "families": [
            {
                "family": report.family.value,
                "dump": str(report.dump),
                "drifted": report.drifted,
                "error": report.error,
                "diff": report.diff,
            }
            for report in reports
        ],
    }
    return json.dumps(payload, indent=2)
