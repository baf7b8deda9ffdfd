from __future__ import annotations

import signal
import sys
from types import FrameType
from typing import Optional

import typer
from kombu import Connection as BrokerConnection

from issue_sync.config import get_settings
from issue_sync.consumer import UpdateConsumer
from issue_sync.infrastructure.connections import connect_broker
from issue_sync.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Apply issue updates from RabbitMQ to PostgreSQL.")
log = get_logger(__name__)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}:***@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"MQ={BrokerConnection(settings.mq_url).as_uri()} queue={settings.queue_name} "
        f"prefetch={settings.prefetch_count} retries={settings.store_retry_attempts - 1}"
    )


@app.command()
def run() -> None:
    """
    Consume issue updates until interrupted (Ctrl+C or SIGTERM).
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    with UpdateConsumer.from_settings(settings) as consumer:

        def _handle_sigterm(signum: int, frame: Optional[FrameType]) -> None:
            del frame
            log.info("Shutdown requested", extra={"signal": signal.Signals(signum).name})
            consumer.stop()

        signal.signal(signal.SIGTERM, _handle_sigterm)
        try:
            consumer.start()
        except KeyboardInterrupt:
            log.info("Interrupted, shutting down")
            raise typer.Exit(code=130)


@app.command()
def publish(
    body: str = typer.Argument(..., help='Raw message body, e.g. \'{"id": 5, "issue": {"status": "closed"}}\'.'),
    queue: Optional[str] = typer.Option(
        None,
        "--queue",
        "-q",
        help="Target queue (default from settings).",
    ),
) -> None:
    """
    Publish one raw body to the update queue, for manual testing.

    The body is sent as-is so malformed payloads can be exercised too.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    routing_key = queue or settings.queue_name

    conn = connect_broker(settings)
    try:
        producer = conn.Producer()
        producer.publish(
            body.encode("utf-8"),
            exchange="",
            routing_key=routing_key,
            content_type="application/json",
            content_encoding="utf-8",
            delivery_mode="persistent",
            retry=False,
        )
    finally:
        conn.release()
    typer.echo(f"Published {len(body)} bytes to '{routing_key}'.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
