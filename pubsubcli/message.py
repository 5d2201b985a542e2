"""
Data model for topics, subscriptions and received messages.
Includes resource path helpers and the console rendering of a message.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Optional


@dataclass(frozen=True)
class Topic:
    """A named channel messages are published to"""
    topic_id: str
    name: str


@dataclass(frozen=True)
class Subscription:
    """A named feed bound to exactly one topic"""
    subscription_id: str
    topic_id: str
    name: str


@dataclass
class ReceivedMessage:
    """
    A message delivered on a subscription.
    Attribute iteration order is unspecified.
    """
    message_id: str
    data: bytes
    attributes: Mapping[str, str] = field(default_factory=dict)
    publish_time: Optional[datetime] = None
    _ack: Optional[Callable[[], None]] = field(default=None, repr=False, compare=False)

    def ack(self) -> None:
        """Tell the broker the message was processed and need not be redelivered"""
        if self._ack is not None:
            self._ack()

    @property
    def text(self) -> str:
        return self.data.decode('utf-8', errors='replace')


def topic_path(project_id: str, topic_id: str) -> str:
    return f"projects/{project_id}/topics/{topic_id}"


def subscription_path(project_id: str, subscription_id: str) -> str:
    return f"projects/{project_id}/subscriptions/{subscription_id}"


def resource_id(path: str) -> str:
    """Return the trailing ID of a resource path such as projects/p/topics/t"""
    return path.rsplit('/', 1)[-1]


def format_message(message: ReceivedMessage) -> str:
    """Render a received message as console lines"""
    lines = [
        f"Received message: ID={message.message_id}",
        f"Data: {message.text}",
    ]

    if message.attributes:
        lines.append("Attributes:")
        for key, value in message.attributes.items():
            lines.append(f"  {key}: {value}")

    lines.append(f"PublishTime: {message.publish_time}")
    return '\n'.join(lines) + '\n\n'
