"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from aws_provisioner.cli.formatting import format_partial_result
    from aws_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        CycleError,
        LockHeldError,
        ParseError,
        StalePlanError,
        StateMismatchError,
        UnknownReferenceError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ParseError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, CycleError | UnknownReferenceError):
        _err(f"Invalid dependency graph: {exc}", fg=fg)
    elif isinstance(exc, LockHeldError):
        _err(f"{exc}. Wait for it to finish and retry.", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(str(exc), fg=fg)
        for line in format_partial_result(exc.result):
            _err(line, fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        for line in format_partial_result(exc.result):
            _err(line, fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
