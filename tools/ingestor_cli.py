"""
Stream Ingestor CLI

Local tooling for the Lambda ingestors.

Commands:
    check-config            Validate the environment and resolve both table schemas
    invoke EVENT_FILE       Run a handler locally against the configured sink

Usage:
    python -m tools.ingestor_cli check-config
    python -m tools.ingestor_cli invoke --kind sqs events/sqs_batch.json --timeout-ms 30000

Exit Codes:
    0 = OK
    1 = Configuration error or failed invocation
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Optional

import click

from handlers import generic_ingestor, sqs_ingestor
from handlers.runtime import build_runtime
from ingestor.core.config import load_settings, print_effective_config
from ingestor.core.error_taxonomy import ConfigError, IngestorError
from ingestor.schemas import GENERIC_EVENTS, QUEUE_MESSAGES

EXIT_OK = 0
EXIT_FAILED = 1

HANDLERS = {
    "generic": generic_ingestor.lambda_handler,
    "sqs": sqs_ingestor.lambda_handler,
}


class LocalContext:
    """Minimal stand-in for the Lambda context object."""

    function_name = "stream-ingestor-local"
    function_version = "$LATEST"
    invoked_function_arn = ""
    memory_limit_in_mb = 0
    log_group_name = ""
    log_stream_name = ""
    client_context = None
    identity = None

    def __init__(self, timeout_ms: int):
        self.aws_request_id = str(uuid.uuid4())
        self._deadline = time.monotonic() + timeout_ms / 1000.0

    def get_remaining_time_in_millis(self) -> int:
        return max(0, int((self._deadline - time.monotonic()) * 1000))


def _fail(message: str) -> None:
    click.echo(click.style("[FAIL] ", fg="red") + message)


@click.group()
def main() -> None:
    """Stream ingestor local tooling."""


@main.command("check-config")
@click.option("--show-secrets", is_flag=True, help="Print credential values unredacted")
def check_config(show_secrets: bool) -> None:
    """Validate configuration and resolve the table schemas."""
    try:
        settings = load_settings()
        runtime = build_runtime(settings)
        for ref in (GENERIC_EVENTS, QUEUE_MESSAGES):
            runtime.schema(ref)
    except ConfigError as exc:
        _fail(exc.message)
        raise SystemExit(EXIT_FAILED)

    click.echo("Effective configuration:")
    for key, value in print_effective_config(settings, redact_secrets=not show_secrets).items():
        click.echo(f"  {key}: {value}")
    click.echo(click.style("[PASS] ", fg="green") + "Configuration is valid")
    raise SystemExit(EXIT_OK)


@main.command()
@click.option("--kind", type=click.Choice(sorted(HANDLERS)), required=True, help="Handler to invoke")
@click.option("--timeout-ms", type=int, default=None, help="Simulated Lambda timeout in milliseconds")
@click.argument("event_file", type=click.File("r"))
def invoke(kind: str, timeout_ms: Optional[int], event_file: Any) -> None:
    """Invoke a handler locally with the JSON event in EVENT_FILE."""
    try:
        event = json.load(event_file)
    except json.JSONDecodeError as exc:
        _fail(f"Event file is not valid JSON: {exc}")
        raise SystemExit(EXIT_FAILED)

    context = LocalContext(timeout_ms) if timeout_ms is not None else None
    try:
        response = HANDLERS[kind](event, context)
    except IngestorError as exc:
        _fail(str(exc))
        raise SystemExit(EXIT_FAILED)

    click.echo(json.dumps(response, indent=2))
    raise SystemExit(EXIT_OK)


if __name__ == "__main__":
    main()
