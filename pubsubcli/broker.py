"""
Broker client capability set and its Google Cloud Pub/Sub implementation.
The facades depend only on BrokerClient; SDK exceptions are translated here.
"""
import threading
import logging
from abc import ABC, abstractmethod
from concurrent import futures
from typing import Callable, List, Optional

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import pubsub_v1

from .config import Config, get_config
from .errors import AlreadyExists, BrokerError, NotFound
from .message import (
    ReceivedMessage,
    Subscription,
    Topic,
    resource_id,
    subscription_path,
    topic_path,
)


logger = logging.getLogger(__name__)

MessageCallback = Callable[[ReceivedMessage], None]

# RetryError is a GoogleAPIError but not a GoogleAPICallError; RefreshError surfaces at call time
RPC_ERRORS = (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError)


class BrokerClient(ABC):
    """Operations the facades need from a publish/subscribe broker"""

    project_id: str

    @abstractmethod
    def list_topics(self) -> List[Topic]:
        ...

    @abstractmethod
    def topic_exists(self, topic_id: str) -> bool:
        ...

    @abstractmethod
    def create_topic(self, topic_id: str) -> Topic:
        ...

    @abstractmethod
    def publish(self, topic_id: str, data: bytes) -> str:
        """Publish data and return the broker-assigned message ID once it is durable"""

    @abstractmethod
    def subscription_exists(self, subscription_id: str) -> bool:
        ...

    @abstractmethod
    def create_subscription(self, topic_id: str, subscription_id: str) -> Subscription:
        ...

    @abstractmethod
    def receive(self,
                subscription_id: str,
                callback: MessageCallback,
                cancel_event: threading.Event) -> None:
        """
        Stream messages from a subscription into callback.

        Blocks until cancel_event is set or the stream fails. Returns (or raises
        BrokerError) only after the stream has shut down and no callback is running.
        """

    @abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class GooglePubSubBroker(BrokerClient):
    """BrokerClient backed by google-cloud-pubsub"""

    def __init__(self,
                 project_id: str,
                 request_timeout: Optional[float] = 60,
                 publish_timeout: Optional[float] = None,
                 poll_interval: float = 0.5):
        self.project_id = project_id
        self.request_timeout = request_timeout
        self.publish_timeout = publish_timeout
        self.poll_interval = poll_interval

        try:
            self._publisher = pubsub_v1.PublisherClient()
            self._subscriber = pubsub_v1.SubscriberClient()
        except auth_exceptions.GoogleAuthError as e:
            raise BrokerError(f"pubsub client: {e}") from e

        self._closed = False
        logger.debug(f"Created Pub/Sub clients for project {project_id}")

    def list_topics(self) -> List[Topic]:
        try:
            pager = self._publisher.list_topics(
                request={'project': f"projects/{self.project_id}"},
                timeout=self.request_timeout,
            )
            return [Topic(topic_id=resource_id(t.name), name=t.name) for t in pager]
        except RPC_ERRORS as e:
            raise BrokerError(str(e)) from e

    def topic_exists(self, topic_id: str) -> bool:
        try:
            self._publisher.get_topic(
                request={'topic': topic_path(self.project_id, topic_id)},
                timeout=self.request_timeout,
            )
            return True
        except api_exceptions.NotFound:
            return False
        except RPC_ERRORS as e:
            raise BrokerError(f"failed to check if topic exists: {e}") from e

    def create_topic(self, topic_id: str) -> Topic:
        path = topic_path(self.project_id, topic_id)
        try:
            topic = self._publisher.create_topic(
                request={'name': path},
                timeout=self.request_timeout,
            )
        except api_exceptions.AlreadyExists as e:
            raise AlreadyExists(f"topic {topic_id} already exists") from e
        except RPC_ERRORS as e:
            raise BrokerError(str(e)) from e

        logger.info(f"Created topic {topic.name}")
        return Topic(topic_id=resource_id(topic.name), name=topic.name)

    def publish(self, topic_id: str, data: bytes) -> str:
        path = topic_path(self.project_id, topic_id)
        try:
            future = self._publisher.publish(path, data)
            message_id = future.result(timeout=self.publish_timeout)
        except api_exceptions.NotFound as e:
            raise NotFound(f"topic {topic_id} does not exist") from e
        except RPC_ERRORS as e:
            raise BrokerError(str(e)) from e
        except futures.TimeoutError as e:
            raise BrokerError(
                f"publish to {topic_id} not acknowledged within {self.publish_timeout}s"
            ) from e

        logger.info(f"Published message {message_id} to {path} ({len(data)} bytes)")
        return message_id

    def subscription_exists(self, subscription_id: str) -> bool:
        try:
            self._subscriber.get_subscription(
                request={'subscription': subscription_path(self.project_id, subscription_id)},
                timeout=self.request_timeout,
            )
            return True
        except api_exceptions.NotFound:
            return False
        except RPC_ERRORS as e:
            raise BrokerError(f"failed to check if subscription exists: {e}") from e

    def create_subscription(self, topic_id: str, subscription_id: str) -> Subscription:
        path = subscription_path(self.project_id, subscription_id)
        try:
            subscription = self._subscriber.create_subscription(
                request={'name': path, 'topic': topic_path(self.project_id, topic_id)},
                timeout=self.request_timeout,
            )
        except api_exceptions.AlreadyExists as e:
            raise AlreadyExists(f"subscription {subscription_id} already exists") from e
        except api_exceptions.NotFound as e:
            raise NotFound(f"topic {topic_id} does not exist") from e
        except RPC_ERRORS as e:
            raise BrokerError(str(e)) from e

        logger.info(f"Created subscription {subscription.name} for topic {topic_id}")
        return Subscription(
            subscription_id=resource_id(subscription.name),
            topic_id=topic_id,
            name=subscription.name,
        )

    def receive(self,
                subscription_id: str,
                callback: MessageCallback,
                cancel_event: threading.Event) -> None:
        path = subscription_path(self.project_id, subscription_id)

        def on_message(message) -> None:
            callback(ReceivedMessage(
                message_id=message.message_id,
                data=message.data,
                attributes=dict(message.attributes),
                publish_time=message.publish_time,
                _ack=message.ack,
            ))

        try:
            streaming_pull = self._subscriber.subscribe(
                path,
                callback=on_message,
                await_callbacks_on_shutdown=True,
            )
        except RPC_ERRORS as e:
            raise BrokerError(f"failed to open stream on {path}: {e}") from e

        logger.info(f"Streaming pull started on {path}")

        while not cancel_event.wait(self.poll_interval):
            if streaming_pull.done():
                break

        # Returns once the stream is shut down and in-flight callbacks are done
        streaming_pull.cancel()
        try:
            streaming_pull.result()
        except Exception as e:
            raise BrokerError(str(e)) from e

        logger.info(f"Streaming pull stopped on {path}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            self._publisher.stop()
            self._publisher.transport.close()
        finally:
            self._subscriber.close()

        logger.debug(f"Closed Pub/Sub clients for project {self.project_id}")


def create_broker(project_id: str, config: Optional[Config] = None) -> BrokerClient:
    """Create the broker client for a project using configured timeouts"""
    config = config or get_config()
    return GooglePubSubBroker(
        project_id,
        request_timeout=config.get('client.request_timeout', 60),
        publish_timeout=config.get('publisher.publish_timeout'),
        poll_interval=config.get('subscriber.poll_interval', 0.5),
    )
