"""CLI rendering iptables configuration files like iptables-save and ip6tables-save."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from ..config import Settings
from ..logging_config import setup_logging
from ..model import Family
from ..pipeline import Normalizer, read_config_files

app = typer.Typer(help="Render iptables configuration files in iptables-save form, one stream per IP family")
err_console = Console(stderr=True)


def build_settings(
    nameservers: list[str],
    dns_retries: int | None,
    cache_dns: bool,
    verbose: int,
) -> Settings:
    settings = Settings.from_env()
    if nameservers:
        settings.nameservers = list(nameservers)
    if dns_retries is not None:
        settings.dns_retries = dns_retries
    settings.cache_dns = settings.cache_dns or cache_dns
    if verbose == 1:
        settings.log_level = "INFO"
    elif verbose > 1:
        settings.log_level = "DEBUG"
    return settings


@app.command()
def main(
    config: list[Path] = typer.Argument(..., exists=True, readable=True, dir_okay=False, help="Configuration files, read in order"),
    ipv4_output: Path | None = typer.Option(None, "--ipv4-output", help="Write the IPv4 rule set here instead of stdout"),
    ipv6_output: Path | None = typer.Option(None, "--ipv6-output", help="Write the IPv6 rule set here instead of stdout"),
    nameserver: list[str] = typer.Option([], "--nameserver", help="DNS server to query (repeatable)"),
    dns_retries: int | None = typer.Option(None, min=1, help="Attempts per DNS query"),
    cache_dns: bool = typer.Option(False, "--cache-dns", help="Resolve every name only once per run"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More diagnostics on stderr"),
) -> None:
    settings = build_settings(nameserver, dns_retries, cache_dns, verbose)
    setup_logging(settings.log_level)
    results = Normalizer(settings).normalize(read_config_files(config))

    targets = {Family.IPV4: ipv4_output, Family.IPV6: ipv6_output}
    failed = False
    for family, result in results.items():
        if not result.ok:
            failed = True
            err_console.print(f"[red]{family.value}: no rule set generated[/red]")
            continue
        target = targets[family]
        if target is None:
            typer.echo(result.output, nl=False)
        else:
            target.write_text(result.output)
    if failed:
        raise typer.Exit(code=1)
