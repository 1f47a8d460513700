"""
Harald CLI
===========

Click-based command-line interface for Harald.

Commands:
    harald discover [--mode MODE]       Discover, classify and assess devices
    harald check NAME [--target ADDR]   Run a single named vulnerability check
    harald tools                        Show which external probe tools resolve
    harald corpus refresh               Pull Bluetooth CVEs from NVD
    harald corpus search KEYWORD        Search the local CVE corpus

Common options:
    --config PATH       TOML configuration file
    --quiet             Suppress console output
    --simulate          Use the simulated radio, corpus and probe runner

References:
    - Click Documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import click
from rich.markup import escape

from shared.config import HaraldConfig
from shared.console import HaraldConsole
from shared.logger import configure_logging

from harald import __version__
from harald.core.engine import HaraldEngine
from harald.core.errors import AdapterUnavailableError, CorpusQueryError, CorpusRefreshError
from harald.core.models import ScanMode
from harald.output.console import HaraldConsoleOutput


# ---------------------------------------------------------------------------
# Async helper
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click commands.

    Args:
        coro: Coroutine to execute.

    Returns:
        The coroutine's return value.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            future = pool.submit(asyncio.run, coro)
            return future.result()
    else:
        return asyncio.run(coro)


def _engine(ctx: click.Context) -> HaraldEngine:
    return HaraldEngine(
        ctx.obj["config"],
        ctx.obj["console"],
        simulate=ctx.obj["simulate"],
    )


# ---------------------------------------------------------------------------
# CLI Group
# ---------------------------------------------------------------------------


@click.group(
    name="harald",
    help=(
        "HARALD - Bluetooth Discovery & Vulnerability Assessment\n\n"
        "Discover nearby Bluetooth devices, classify them, correlate them "
        "against a CVE corpus and probe them with BlueZ tools."
    ),
)
@click.version_option(__version__, prog_name="harald")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to Harald configuration file (TOML).",
)
@click.option(
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress console output (report only).",
)
@click.option(
    "--simulate",
    is_flag=True,
    default=False,
    help="Use the simulated radio adapter and in-memory CVE corpus.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], quiet: bool, simulate: bool) -> None:
    """Harald - main CLI entry point."""
    ctx.ensure_object(dict)

    try:
        config = HaraldConfig.load(config_path) if config_path else HaraldConfig.load()
    except FileNotFoundError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    settings = config.global_settings
    configure_logging(
        "DEBUG" if settings.debug else settings.log_level,
        settings.log_file or None,
        settings.log_json,
    )

    ctx.obj["config"] = config
    ctx.obj["console"] = HaraldConsole(quiet=quiet)
    ctx.obj["quiet"] = quiet
    ctx.obj["simulate"] = simulate


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@cli.command("discover")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ScanMode], case_sensitive=False),
    default=ScanMode.PASSIVE.value,
    show_default=True,
    help="Discovery depth.",
)
@click.option(
    "--output",
    "-o",
    "output_path",
    default=None,
    help="Write a JSON report to this path (relative paths go under global.output_dir).",
)
@click.option("--show-secure", is_flag=True, default=False, help="List negative checks too.")
@click.option(
    "--exploit",
    "run_exploits",
    is_flag=True,
    default=False,
    help="Attempt exploits for every vulnerable finding (needs exploits.allow_live).",
)
@click.pass_context
def discover(
    ctx: click.Context,
    mode: str,
    output_path: Optional[str],
    show_secure: bool,
    run_exploits: bool,
) -> None:
    """Discover, classify and assess nearby Bluetooth devices."""
    console: HaraldConsole = ctx.obj["console"]
    console.banner(__version__)
    engine = _engine(ctx)
    output = HaraldConsoleOutput(console)

    async def _run() -> int:
        try:
            snapshot = await engine.discover(ScanMode(mode.lower()), None, show_secure)
            if run_exploits:
                console.section("Exploit Attempts")
                for finding in snapshot.vulnerable_findings:
                    output.display_exploit(await engine.execute_exploit(finding))
            if output_path:
                engine.write_report(output_path)
            return 0
        except AdapterUnavailableError as exc:
            console.error(str(exc))
            return 2
        finally:
            await engine.close()

    sys.exit(_run_async(_run()))


# ---------------------------------------------------------------------------
# Single check
# ---------------------------------------------------------------------------


@cli.command("check")
@click.argument("name")
@click.option("--target", default=None, help="Hardware address to probe.")
@click.pass_context
def check(ctx: click.Context, name: str, target: Optional[str]) -> None:
    """Run one named vulnerability check (e.g. "KNOB Attack Vulnerability")."""
    console: HaraldConsole = ctx.obj["console"]
    engine = _engine(ctx)

    async def _run():
        try:
            return await engine.correlator.evaluate(name, target)
        finally:
            await engine.close()

    verdict = _run_async(_run())
    label = "VULNERABLE" if verdict.vulnerable else "SECURE"
    message = f"{label}  {escape(name)}  ({verdict.method.value}) {escape(verdict.detail)}"
    if verdict.vulnerable:
        console.error(message)
    else:
        console.success(message)
    if verdict.matched_entries:
        HaraldConsoleOutput(console).display_cves(verdict.matched_entries)


# ---------------------------------------------------------------------------
# Tool inventory
# ---------------------------------------------------------------------------


@cli.command("tools")
@click.pass_context
def tools(ctx: click.Context) -> None:
    """Show which external probe tools can be resolved."""
    engine = _engine(ctx)
    HaraldConsoleOutput(ctx.obj["console"]).display_tools(engine.available_tools())
    _run_async(engine.close())


# ---------------------------------------------------------------------------
# CVE corpus
# ---------------------------------------------------------------------------


@cli.group("corpus")
def corpus() -> None:
    """Manage the local CVE corpus."""


@corpus.command("refresh")
@click.pass_context
def corpus_refresh(ctx: click.Context) -> None:
    """Pull Bluetooth CVE records from the NVD API."""
    console: HaraldConsole = ctx.obj["console"]
    engine = _engine(ctx)

    async def _run() -> int:
        try:
            with console.status("Refreshing CVE corpus from NVD..."):
                stored = await engine.refresh_corpus()
            console.success(f"Stored {stored} records ({await engine.corpus_size()} total)")
            return 0
        except CorpusRefreshError as exc:
            console.error(f"Corpus refresh failed: {exc}")
            return 1
        finally:
            await engine.close()

    sys.exit(_run_async(_run()))


@corpus.command("search")
@click.argument("keyword")
@click.pass_context
def corpus_search(ctx: click.Context, keyword: str) -> None:
    """Search the local CVE corpus by keyword."""
    console: HaraldConsole = ctx.obj["console"]
    engine = _engine(ctx)

    async def _run() -> int:
        try:
            HaraldConsoleOutput(console).display_cves(await engine.search_corpus(keyword))
            return 0
        except CorpusQueryError as exc:
            console.error(str(exc))
            return 1
        finally:
            await engine.close()

    sys.exit(_run_async(_run()))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
