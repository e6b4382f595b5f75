#!/usr/bin/env python3
"""
oproxy - HTTP relay tunneling client

Send requests to a target through a single relay endpoint, or parse raw
HTTP responses.

Usage:
    python main.py fetch https://api.example.com/items --relay https://relay.example.com/
    python main.py fetch https://api.example.com/items -X POST -d '{"a": 1}' -H 'Content-Type: application/json'
    python main.py parse response.txt
    python main.py curl -- https://example.com
"""

import sys
from dataclasses import replace
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from config import REDIRECT_POLICIES, ClientConfig, Verbosity
from oproxy.cancel import CancellationToken, TransportError
from oproxy.curl import curl as run_curl
from oproxy.log import setup_logging
from oproxy.parser import HTTPSyntaxError, parse_response
from oproxy.response import HTTPResponse
from oproxy.timeout import OperationTimeout, with_timeout
from oproxy.tunnel import (
    ConfigurationError,
    MissingSideChannelError,
    RequestOptions,
    TunnelClient,
    TunnelResponse,
)

console = Console()


def parse_header_option(raw: str) -> Tuple[str, str]:
    """Split a 'Name: value' command-line header"""
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise click.BadParameter(f"Expected 'Name: value', got {raw!r}", param_hint="--header")
    return name.strip(), value.strip()


def status_style(status: int) -> str:
    if status >= 400:
        return "red"
    if status >= 300:
        return "yellow"
    return "green"


def headers_table(title: str, response_headers) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Header", style="cyan")
    table.add_column("Value")

    for name, value in response_headers.items():
        table.add_row(name, Text(value))

    return table


def print_response(response: HTTPResponse, include_body: bool = True):
    """Render a structured response"""
    color = status_style(response.status)
    console.print(
        f"\n[bold]Status:[/bold] [{color}]{response.status}[/{color}] {escape(response.status_text)}"
    )

    if isinstance(response, TunnelResponse):
        tunneled = "[green]yes[/green]" if response.tunneled else "[yellow]no (relay fallback)[/yellow]"
        console.print(f"[bold]Relay status:[/bold] {response.proxy_status}")
        console.print(f"[bold]Tunneled:[/bold] {tunneled}")

    console.print()
    console.print(headers_table("Headers", response.headers))

    if isinstance(response, TunnelResponse):
        console.print()
        console.print(headers_table("Relay Headers", response.proxy_headers))

    if include_body:
        body = response.text()
        console.print()
        console.print(Panel(
            Text(body) if body else Text("(empty)", style="dim"),
            title="[bold]Body[/bold]",
            border_style="cyan"
        ))


def verbosity_from_flags(verbose: int, quiet: bool) -> Verbosity:
    """-q wins; -v is VERBOSE, -vv and beyond DEBUG"""
    if quiet:
        return Verbosity.QUIET
    return Verbosity(min(Verbosity.NORMAL.value + verbose, Verbosity.DEBUG.value))


@click.group()
@click.option('--verbose', '-v', count=True, help='Verbose output (-vv for debug logging)')
@click.option('--quiet', '-q', is_flag=True, help='Only log warnings and errors')
@click.pass_context
def cli(ctx: click.Context, verbose: int, quiet: bool):
    """Tunnel HTTP requests through a relay"""
    ctx.obj = ClientConfig(verbosity=verbosity_from_flags(verbose, quiet))
    setup_logging(ctx.obj.verbosity)


@cli.command()
@click.argument('url')
@click.option('--relay', '-r', required=True, envvar='OPROXY_ENDPOINT', help='Relay endpoint URL')
@click.option('--method', '-X', default=None, help='HTTP method (default: GET)')
@click.option('--header', '-H', 'headers', multiple=True, help="Request header, 'Name: value'")
@click.option('--data', '-d', default=None, help='Request body')
@click.option('--redirect', type=click.Choice(REDIRECT_POLICIES), default=None,
              help='Redirect policy the relay applies to the target')
@click.option('--referrer', default=None, help='Referrer forwarded to the relay')
@click.option('--timeout', default=ClientConfig.timeout, help='Request timeout in seconds')
@click.option('--strict', is_flag=True, help='Fail if the relay reply carries no side-channel headers')
@click.option('--no-ssl-verify', is_flag=True, help='Disable SSL certificate verification')
@click.option('--include-body/--no-body', default=True, help='Print the response body')
@click.pass_obj
def fetch(base_config: ClientConfig, url: str, relay: str, method: Optional[str],
          headers: Tuple[str, ...], data: Optional[str], redirect: Optional[str],
          referrer: Optional[str], timeout: float, strict: bool, no_ssl_verify: bool,
          include_body: bool):
    """Fetch URL through the relay"""

    request_headers = [parse_header_option(h) for h in headers]

    config = replace(
        base_config,
        relay_endpoint=relay,
        timeout=timeout,
        verify_ssl=not no_ssl_verify,
        strict=strict,
    )

    if config.verbosity != Verbosity.QUIET:
        console.print(f"\n[bold cyan]Target:[/bold cyan] {url}")
        console.print(f"[bold cyan]Relay:[/bold cyan] {relay}")

    # Shared by the deadline and the transport
    signal = CancellationToken()
    options = RequestOptions(
        method=method,
        headers=request_headers or None,
        body=data,
        redirect=redirect,
        referrer=referrer,
        signal=signal,
    )

    try:
        client = TunnelClient.from_config(config)
        with console.status(f"Tunneling {method or 'GET'} request..."):
            response = with_timeout(client.fetch, timeout, url, options, signal=signal)
    except OperationTimeout:
        console.print(f"[red]Error: no reply from relay within {timeout}s[/red]")
        sys.exit(1)
    except (TransportError, ConfigurationError, MissingSideChannelError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    print_response(response, include_body=include_body)


@cli.command()
@click.argument('source', type=click.File('rb'))
@click.option('--include-body/--no-body', default=True, help='Print the response body')
def parse(source, include_body: bool):
    """Parse a raw HTTP response file ('-' for stdin)"""

    try:
        response = parse_response(source.read())
    except HTTPSyntaxError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    print_response(response, include_body=include_body)


@cli.command(context_settings={'ignore_unknown_options': True})
@click.argument('curl_args', nargs=-1, required=True, type=click.UNPROCESSED)
@click.option('--include-body/--no-body', default=True, help='Print the response body')
def curl(curl_args: Tuple[str, ...], include_body: bool):
    """Run curl and show its response"""

    try:
        with console.status("Running curl..."):
            response = run_curl(*curl_args)
    except (TransportError, HTTPSyntaxError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    print_response(response, include_body=include_body)


if __name__ == "__main__":
    cli()
