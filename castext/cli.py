import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .options import RenderOptions
from .parsing import parse_castext, raw_expressions
from .session import Session
from .text import CASText
from .validation import find_forbidden_words

app = typer.Typer(help="castext: render and check CASText templates")

logger = logging.getLogger(__name__)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable debug logging"),
):
    """castext: render and check CASText templates"""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("castext").setLevel(logging.DEBUG)


def _read_template(template: Optional[str], template_file: Optional[Path]) -> str:
    if template_file:
        if not template_file.exists():
            typer.echo(f"Error: Template file not found: {template_file}", err=True)
            raise typer.Exit(1)
        return template_file.read_text(encoding="utf-8")
    if template is not None:
        return template
    if not sys.stdin.isatty():
        return sys.stdin.read()
    typer.echo(
        "Error: No template provided. Use a positional argument, -f/--file, or pipe to stdin.",
        err=True,
    )
    raise typer.Exit(1)


@app.command()
def render(
    template: Optional[str] = typer.Argument(None, help="Template text, e.g. 'Sum: {@1+2@}'"),
    template_file: Optional[Path] = typer.Option(
        None, "-f", "--file", help="Path to a file containing the template"
    ),
    session_expressions: Optional[List[str]] = typer.Option(
        None, "-s", "--session", help="Seed expression such as a:x^2 (can be repeated)"
    ),
    strict: bool = typer.Option(False, "--strict", help="Treat the template as student-facing"),
    forbid: Optional[List[str]] = typer.Option(
        None, "--forbid", help="Extra forbidden word (can be repeated)"
    ),
    multiplication_sign: Optional[str] = typer.Option(
        None, "--multiplication-sign", help="dot, cross or none"
    ),
    matrix_parens: Optional[str] = typer.Option(
        None, "--matrix-parens", help="'[', '(' or '' for none"
    ),
    show_session: bool = typer.Option(
        False, "--show-session", help="Print the session bindings after expansion"
    ),
    html: bool = typer.Option(False, "--html", help="Print errors as HTML"),
):
    """Expand a template and print the result."""
    raw = _read_template(template, template_file)

    overrides = {}
    if multiplication_sign is not None:
        overrides["multiplication_sign"] = multiplication_sign
    if matrix_parens is not None:
        overrides["matrix_parens"] = matrix_parens
    try:
        options = RenderOptions(**overrides)
    except ValueError as e:
        typer.echo(f"Error: invalid render option: {e}", err=True)
        raise typer.Exit(2)

    session = Session(session_expressions or [], options=options)
    ct = CASText(raw, session=session, strict=strict, forbidden_words=forbid, options=options)

    typer.echo(ct.display)

    if show_session:
        console = Console(stderr=True)
        table = Table("key", "raw", "value", "valid")
        for key in ct.session.get_all_keys():
            binding = ct.session[key]
            table.add_row(
                key, escape(binding.raw), escape(binding.text), "yes" if binding.valid else "no"
            )
        console.print(table)

    errors = ct.get_errors(html=html)
    if errors:
        typer.echo(errors, err=True)
    if not ct.valid:
        raise typer.Exit(1)


@app.command()
def check(
    template: Optional[str] = typer.Argument(None, help="Template text"),
    template_file: Optional[Path] = typer.Option(
        None, "-f", "--file", help="Path to a file containing the template"
    ),
    forbid: Optional[List[str]] = typer.Option(
        None, "--forbid", help="Report uses of this word (can be repeated)"
    ),
):
    """Parse a template without evaluating it and list its expressions."""
    raw = _read_template(template, template_file)
    tree = parse_castext(raw)
    console = Console()

    problems = 0
    for error in tree.errors:
        console.print(f"[red]parse error:[/red] {escape(error.message)}", highlight=False)
        problems += 1

    for expression in raw_expressions(tree):
        found = find_forbidden_words(expression, forbid or [])
        if found:
            console.print(
                f"[yellow]{escape(expression)}[/yellow]  forbidden: {', '.join(found)}", highlight=False
            )
            problems += 1
        else:
            console.print(expression, markup=False, highlight=False)

    if problems:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
