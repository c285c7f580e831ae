"""CLI application for aws-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from aws_provisioner import __version__

app = typer.Typer(
    name="aws-provisioner",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"aws-provisioner {__version__}")
        raise typer.Exit


# Apply runs each wave on a thread pool; the thread name tells operations apart.
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}
# -vvv also traces the AWS SDK (request signing, endpoints, retries).
_AWS_SDK_LOGGERS = ("boto3", "botocore")


def _log_level(verbose: int) -> int | None:
    env_level = os.environ.get("AWSP_LOG", "").upper()
    if env_level:
        if env_level not in _VALID_LEVELS:
            typer.echo(
                f"WARNING: invalid AWSP_LOG level '{env_level}', "
                f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
                err=True,
            )
        return getattr(logging, env_level, logging.INFO)
    if verbose <= 0:
        return None
    return _VERBOSITY.get(verbose, logging.DEBUG)


def _configure_logging(verbose: int) -> None:
    """Set up stdlib logging based on ``-v`` flags or ``AWSP_LOG`` env var.

    The AWS SDK loggers stay at WARNING unless ``-vvv`` is given.
    """
    level = _log_level(verbose)
    if level is None:
        return  # no flag: stay unconfigured (silent)
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("aws_provisioner").setLevel(level)
    sdk_level = logging.DEBUG if verbose >= 3 else logging.WARNING
    for name in _AWS_SDK_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug, -vvv also AWS SDK).",
    ),
) -> None:
    """Declarative reconciler for AWS infrastructure (VPC, ECR, IAM, ECS, ELB)."""
    _ = version
    _configure_logging(verbose)


# Register commands after app is created to avoid circular imports.
from aws_provisioner.cli import commands as _commands  # noqa: E402, F401
