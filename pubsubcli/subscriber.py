"""
Subscriber facade and the receive loop.

The broker stream runs on one background worker thread and hands messages to
the loop over a queue. Only the loop writes to the output sink, so rendering,
acknowledgements and status lines never interleave.
"""
import queue
import threading
import logging
from enum import IntEnum
from typing import Optional, TextIO, Tuple

from .broker import BrokerClient
from .errors import AlreadyExists, BrokerError, NotFound
from .message import ReceivedMessage, Subscription, format_message


logger = logging.getLogger(__name__)


class ReceiveState(IntEnum):
    """Receive loop states"""
    IDLE = 1
    LISTENING = 2
    CANCELLED = 3
    FAILED = 4


# Channel item kinds
_MESSAGE = 'message'
_FAILED = 'failed'
_STOPPED = 'stopped'


class ReceiveLoop:
    """Streams one subscription to an output sink until cancelled or failed"""

    def __init__(self,
                 broker: BrokerClient,
                 subscription_id: str,
                 should_ack: bool,
                 output: TextIO,
                 cancel_event: threading.Event,
                 poll_interval: float = 0.5):
        self.broker = broker
        self.subscription_id = subscription_id
        self.should_ack = should_ack
        self.output = output
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval

        self.state = ReceiveState.IDLE
        self.received_count = 0
        self.acked_count = 0

        self._channel: "queue.Queue[Tuple[str, object]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    def run(self) -> ReceiveState:
        """Block until cancellation (returns CANCELLED) or a stream failure (raises BrokerError)"""
        if self.state != ReceiveState.IDLE:
            raise RuntimeError(f"receive loop already {self.state.name.lower()}")

        self.state = ReceiveState.LISTENING
        self._write(f"Listening for messages on subscription {self.subscription_id}...\n")
        self._write("Press Ctrl+C to exit\n\n")

        self._worker = threading.Thread(
            target=self._receive_worker,
            daemon=True,
            name=f"Receive-{self.subscription_id}"
        )
        self._worker.start()

        try:
            error = self._dispatch()
        except BaseException:
            # Stop the stream before propagating a local failure
            self.state = ReceiveState.FAILED
            self.cancel_event.set()
            self._stop_worker()
            raise

        self._stop_worker()

        if error is not None:
            self.state = ReceiveState.FAILED
            logger.error(f"Receive loop on {self.subscription_id} failed: {error}")
            raise BrokerError(f"receive error: {error}") from error

        self.state = ReceiveState.CANCELLED
        logger.info(f"Receive loop on {self.subscription_id} cancelled after "
                    f"{self.received_count} messages ({self.acked_count} acknowledged)")
        return self.state

    def _dispatch(self) -> Optional[Exception]:
        """Render channel items until cancelled; return the stream error, if any"""
        while not self.cancel_event.is_set():
            try:
                kind, item = self._channel.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            if kind == _MESSAGE:
                self._handle_message(item)
            elif kind == _FAILED:
                return item
            elif kind == _STOPPED:
                if self.cancel_event.is_set():
                    break
                return BrokerError("stream ended without cancellation")

        self._write("\nReceived interrupt signal. Shutting down...\n")
        self._write("\nSubscription stopped: cancelled\n")
        return None

    def _handle_message(self, message: ReceivedMessage) -> None:
        self.received_count += 1
        self._write(format_message(message))

        if self.should_ack:
            message.ack()
            self.acked_count += 1
            self._write(f"Message acknowledged: ID={message.message_id}\n\n")
            logger.debug(f"Acknowledged message {message.message_id}")
        else:
            self._write("Message not acknowledged (--ack flag not provided)\n\n")
            logger.debug(f"Left message {message.message_id} unacknowledged")

    def _receive_worker(self) -> None:
        """Background worker running the broker stream"""
        try:
            self.broker.receive(self.subscription_id, self._enqueue, self.cancel_event)
        except Exception as e:
            self._channel.put((_FAILED, e))
        else:
            self._channel.put((_STOPPED, None))

    def _enqueue(self, message: ReceivedMessage) -> None:
        self._channel.put((_MESSAGE, message))

    def _stop_worker(self) -> None:
        """Wait for the stream to stop, then drop messages that were never rendered"""
        if self._worker is not None:
            self._worker.join()

        dropped = 0
        while True:
            try:
                kind, item = self._channel.get_nowait()
            except queue.Empty:
                break
            if kind == _MESSAGE:
                dropped += 1
            elif kind == _FAILED:
                logger.warning(f"Stream on {self.subscription_id} failed during shutdown: {item}")

        if dropped:
            logger.info(f"Dropped {dropped} unrendered messages; the broker will redeliver them")

    def _write(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()


class Subscriber:
    """Creates subscriptions and streams them through a broker client it does not own"""

    def __init__(self, broker: BrokerClient, poll_interval: float = 0.5):
        self.broker = broker
        self.poll_interval = poll_interval

    def create_subscription(self,
                            topic_id: str,
                            subscription_id: str,
                            output: Optional[TextIO] = None) -> Subscription:
        """Create a subscription bound to an existing topic"""
        if not self.broker.topic_exists(topic_id):
            raise NotFound(f"topic {topic_id} does not exist")

        if self.broker.subscription_exists(subscription_id):
            raise AlreadyExists(f"subscription {subscription_id} already exists")

        subscription = self.broker.create_subscription(topic_id, subscription_id)

        if output is not None:
            output.write(f"Subscription {subscription_id} created for topic {topic_id}\n")
        return subscription

    def subscribe(self,
                  subscription_id: str,
                  should_ack: bool,
                  output: TextIO,
                  cancel_event: threading.Event) -> ReceiveState:
        """Stream a subscription to output until cancel_event is set"""
        if not self.broker.subscription_exists(subscription_id):
            raise NotFound(f"subscription {subscription_id} does not exist")

        loop = ReceiveLoop(
            self.broker,
            subscription_id,
            should_ack,
            output,
            cancel_event,
            poll_interval=self.poll_interval,
        )
        return loop.run()
