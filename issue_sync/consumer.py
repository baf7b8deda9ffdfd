"""
Update consumer loop: RabbitMQ deliveries in, keyed partial updates out.

Usage (example from CLI):
    from issue_sync.consumer import UpdateConsumer

    with UpdateConsumer.from_settings(settings) as consumer:
        consumer.start()  # blocks until stop() or the stream closes

Each delivery ends in exactly one broker call:
- `ack` once the store update succeeded (zero rows affected included)
- `reject(requeue=False)` when the body does not decode or the update fails

Rejected messages are discarded, not requeued, so a poison message cannot
loop forever. A transient database failure therefore loses that update;
there is no retry or dead-letter path at this level.
"""

from __future__ import annotations

import socket
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from kombu import Connection as BrokerConnection
from kombu import Consumer, Queue
from kombu.message import Message

from issue_sync.config import Settings, get_settings
from issue_sync.domain.models import IssueUpdate
from issue_sync.exceptions import DecodeError
from issue_sync.infrastructure.connections import connect_broker, open_database_pool
from issue_sync.store import IssueStore
from issue_sync.utils.logging import get_logger

log = get_logger(__name__)


class Outcome(str, Enum):
    """Terminal state of a single delivery."""

    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


@dataclass
class ConsumerStats:
    """Counters for one consumer instance."""

    acknowledged: int = 0
    rejected: int = 0
    ack_failures: int = 0


def _release(resource: str, close: Callable[[], Any]) -> Optional[Exception]:
    """Run a close callable, logging and returning its error instead of raising."""
    try:
        close()
    except Exception as exc:  # noqa: BLE001 - every release must be attempted
        log.error(f"Failed to close {resource}", exc_info=True, extra={"resource": resource})
        return exc
    log.debug(f"Closed {resource}", extra={"resource": resource})
    return None


class UpdateConsumer:
    """
    Single-worker consumer applying issue updates from one queue.

    Parameters
    ----------
    store : IssueStore
        Store adapter receiving the partial updates. Owned: closed by `close()`.
    connection : kombu.Connection
        Connected broker connection. Owned: closed by `close()`.
    channel : Any
        Open channel on `connection`. Owned: closed by `close()`.
    settings : Settings | None
        Queue name, prefetch limit and poll interval. Defaults to `get_settings()`.
    """

    def __init__(
        self,
        store: IssueStore,
        connection: BrokerConnection,
        channel: Any,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self._connection: Optional[BrokerConnection] = connection
        self._channel: Any = channel
        self._stop_requested = threading.Event()
        self.stats = ConsumerStats()
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "UpdateConsumer":
        """
        Acquire the database pool, the broker connection and a channel.

        Connection errors propagate without retry. Whatever was opened before
        the failure is closed again.
        """
        settings = settings or get_settings()
        db_pool = open_database_pool(settings)
        try:
            mq_conn = connect_broker(settings)
            try:
                channel = mq_conn.channel()
            except Exception:
                _release("broker connection", mq_conn.release)
                raise
        except Exception:
            _release("database pool", db_pool.close)
            raise

        store = IssueStore(db_pool, retry_attempts=settings.store_retry_attempts)
        return cls(store=store, connection=mq_conn, channel=channel, settings=settings)

    def _require_open(self) -> None:
        if self._channel is None or self._connection is None:
            raise RuntimeError("Consumer is closed")

    def _acknowledge(self, message: Message, issue_id: int, rows: int) -> Outcome:
        try:
            message.ack()
        except Exception:  # noqa: BLE001 - broker decides redelivery
            self.stats.ack_failures += 1
            log.error(
                "Message acknowledgment failed",
                exc_info=True,
                extra={"delivery_tag": message.delivery_tag, "issue_id": issue_id},
            )
        else:
            self.stats.acknowledged += 1
            log.info(
                f"Issue {issue_id} updated",
                extra={
                    "delivery_tag": message.delivery_tag,
                    "issue_id": issue_id,
                    "rows": rows,
                    "outcome": Outcome.ACKNOWLEDGED.value,
                },
            )
        return Outcome.ACKNOWLEDGED

    def _reject(self, message: Message, issue_id: Optional[int]) -> Outcome:
        try:
            message.reject(requeue=False)
        except Exception:  # noqa: BLE001 - broker decides redelivery
            self.stats.ack_failures += 1
            log.error(
                "Message rejection failed",
                exc_info=True,
                extra={"delivery_tag": message.delivery_tag, "issue_id": issue_id},
            )
        else:
            self.stats.rejected += 1
            log.info(
                "Message rejected",
                extra={
                    "delivery_tag": message.delivery_tag,
                    "issue_id": issue_id,
                    "outcome": Outcome.REJECTED.value,
                },
            )
        return Outcome.REJECTED

    def handle_delivery(self, message: Message) -> Outcome:
        """
        Decode one delivery, apply it, and ack or reject it exactly once.
        """
        try:
            update = IssueUpdate.from_body(message.body)
        except DecodeError as exc:
            log.warning(
                f"Undecodable message: {exc}",
                extra={"delivery_tag": message.delivery_tag, "body_excerpt": exc.body_excerpt},
            )
            return self._reject(message, issue_id=None)

        try:
            rows = self.store.apply_update(update.id, update.changes())
        except Exception:  # noqa: BLE001 - any store failure rejects the message
            log.exception(
                f"Update of issue {update.id} failed",
                extra={"delivery_tag": message.delivery_tag, "issue_id": update.id},
            )
            return self._reject(message, issue_id=update.id)

        if rows == 0:
            log.warning(
                f"Issue {update.id} not found; nothing updated",
                extra={"delivery_tag": message.delivery_tag, "issue_id": update.id},
            )
        return self._acknowledge(message, update.id, rows)

    def start(self) -> None:
        """
        Set the prefetch limit, subscribe, and consume until stopped.

        Blocks the calling thread. Returns after `stop()`; if the stream
        closes without a stop request the connection error propagates.
        """
        self._require_open()
        connection = self._connection
        queue_name = self.settings.queue_name

        consumer = Consumer(
            self._channel,
            queues=[Queue(queue_name, no_declare=True)],
            no_ack=False,
            auto_declare=False,
            on_message=self.handle_delivery,
        )
        consumer.qos(prefetch_count=self.settings.prefetch_count)

        log.info(
            "Waiting for messages",
            extra={"queue": queue_name, "prefetch_count": self.settings.prefetch_count},
        )
        stream_errors = connection.connection_errors + connection.channel_errors
        try:
            with consumer:
                while not self._stop_requested.is_set():
                    try:
                        connection.drain_events(timeout=self.settings.poll_interval_seconds)
                    except socket.timeout:
                        continue
        except stream_errors:
            if not self._stop_requested.is_set():
                log.error("Message stream closed unexpectedly", extra={"queue": queue_name})
                raise
            log.info("Message stream closed", extra={"queue": queue_name})
        finally:
            log.info("Consumer stopped", extra={"queue": queue_name, **asdict(self.stats)})

    def stop(self) -> None:
        """
        Ask the consuming loop to return.

        Thread-safe. Takes effect after the current delivery, or at the
        next poll tick when the queue is idle.
        """
        self._stop_requested.set()

    def close(self) -> None:
        """
        Release the channel, the broker connection and the store.

        Every release is attempted; the first failure is raised once all of
        them have run, later ones are only logged.
        """
        if self._closed:
            return
        self._closed = True

        errors: List[Optional[Exception]] = []

        channel, self._channel = self._channel, None
        if channel is not None:
            errors.append(_release("channel", channel.close))

        connection, self._connection = self._connection, None
        if connection is not None:
            errors.append(_release("broker connection", connection.release))

        errors.append(_release("store", self.store.close))

        failures = [err for err in errors if err is not None]
        if failures:
            raise failures[0]

    def __enter__(self) -> "UpdateConsumer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["ConsumerStats", "Outcome", "UpdateConsumer"]
