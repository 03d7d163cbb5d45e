"""Command line entry point: ``tunnelhttp fetch`` and ``tunnelhttp show-config``.

Example:
    $ tunnelhttp fetch https://httpbin.org/get --proxy socks5://127.0.0.1:1080
    $ tunnelhttp fetch https://httpbin.org/post -X POST -d '{"a": 1}' --json
    $ tunnelhttp show-config --config tunnelhttp.yaml
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .client import HttpClient
from .errors import ValidationError
from .logging_utils import setup_logging
from .models import ResponseModel
from .settings import ClientSettings, load_settings

__all__ = ["app"]

LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    name="tunnelhttp",
    help="HTTP client with direct, HTTP proxy and SOCKS4/SOCKS5 routing",
    no_args_is_help=True,
)

_CREDENTIALS_IN_URL = re.compile(r"(://[^:/@]+):[^@]*@")


def _redact(value: object) -> object:
    if isinstance(value, str):
        return _CREDENTIALS_IN_URL.sub(r"\1:***@", value)
    return value


def _load(config: Optional[Path], overrides: dict) -> ClientSettings:
    try:
        return load_settings(config, overrides)
    except ValueError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(2)


def _parse_header(raw: str) -> tuple[str, str]:
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise typer.BadParameter(f"Header must look like 'Name: value', got {raw!r}")
    return name.strip(), value.strip()


def _response_payload(response: ResponseModel) -> dict:
    if response.is_error:
        return {"status_code": 0, "url": response.url, "error": response.error}
    return {
        "status_code": response.status_code,
        "reason": response.reason,
        "url": response.url,
        "elapsed_s": round(response.elapsed, 4),
        "headers": response.headers,
        "cookie": response.cookie,
        "body": response.body,
    }


def _print_response(response: ResponseModel) -> None:
    console = Console()
    if response.is_error:
        console.print(f"[bold red]Request failed[/bold red] ({response.url})")
        typer.echo(json.dumps(response.error, indent=2, ensure_ascii=False))
        return
    style = "green" if response.ok else "yellow"
    console.print(
        f"[bold {style}]{response.status_code} {response.reason}[/bold {style}] "
        f"{response.url} ({response.elapsed:.3f}s)",
        highlight=False,
    )
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Header", style="cyan")
    table.add_column("Value", overflow="fold")
    for name, value in response.headers.items():
        table.add_row(name, value)
    console.print(table)
    typer.echo(response.body)


@app.command()
def fetch(
    url: str = typer.Argument(..., help="Absolute http(s) URL"),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Request body"),
    header: Optional[List[str]] = typer.Option(None, "--header", "-H", help="Extra header 'Name: value'"),
    form: Optional[List[str]] = typer.Option(
        None, "--form", "-F", help="Multipart field 'name=value' or file 'name=@path'"
    ),
    proxy: Optional[str] = typer.Option(
        None, "--proxy", help="Proxy URL (http://, socks4://, socks4a://, socks5://)"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Skip TLS verification"),
    follow: bool = typer.Option(False, "--follow", "-L", help="Follow redirects"),
    cookie: Optional[str] = typer.Option(None, "--cookie", "-b", help="Cookie string 'a=1; b=2'"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML/JSON settings file"),
    json_output: bool = typer.Option(False, "--json", help="Print the response as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Send one request and print the response.

    Exits with status 1 when the request fails on the client side.
    """

    overrides = {
        "timeout_s": timeout,
        "follow_redirects": True if follow else None,
        "verify_peer": False if insecure else None,
        "verify_host": False if insecure else None,
        "proxy_url": proxy,
    }
    settings = _load(config, overrides)
    setup_logging("DEBUG" if verbose else settings.log_level)

    headers = [_parse_header(item) for item in header or []]
    fields: dict[str, str] = {}
    files: list[tuple[str, Path]] = []
    for item in form or []:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Form field must look like 'name=value', got {item!r}")
        if value.startswith("@"):
            files.append((name, Path(value[1:])))
        else:
            fields[name] = value
    if fields and data is not None:
        raise typer.BadParameter("Use either --data or text --form fields, not both")

    try:
        client = HttpClient(settings=settings).open(url, method)
        for name, value in headers:
            client.set_header(name, value)
        if cookie:
            client.set_cookie_string(cookie)
        for name, path in files:
            client.add_file(name, path)
        response = client.send(fields or data).get_response()
    except ValidationError as exc:
        typer.echo(f"Invalid request: {exc}", err=True)
        raise typer.Exit(2)

    if json_output:
        typer.echo(json.dumps(_response_payload(response), indent=2, ensure_ascii=False))
    else:
        _print_response(response)
    if response.is_error:
        raise typer.Exit(1)


@app.command("show-config")
def show_config(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML/JSON settings file"),
    json_output: bool = typer.Option(False, "--json", help="Print settings as JSON"),
) -> None:
    """Display the effective settings (file < environment)."""

    settings = _load(config, {})
    values = {name: _redact(value) for name, value in settings.model_dump().items()}
    if json_output:
        typer.echo(json.dumps(values, indent=2, default=str))
        return
    table = Table(title="TunnelHttp - Effective Settings")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green", overflow="fold")
    for name, value in values.items():
        table.add_row(name, str(value))
    Console().print(table)


if __name__ == "__main__":  # pragma: no cover
    app()
