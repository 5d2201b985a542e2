"""
Publisher facade: topic listing and creation, and publishing payloads.
Each call is a synchronous round trip to the broker.
"""
import logging
from pathlib import Path
from typing import List, Union

from .broker import BrokerClient
from .errors import AlreadyExists, NotFound, PayloadReadError
from .message import Topic


logger = logging.getLogger(__name__)


class Publisher:
    """Publishes messages through a broker client it does not own"""

    def __init__(self, broker: BrokerClient):
        self.broker = broker

    def list_topics(self) -> List[Topic]:
        """List all topics in the project; an empty list is a valid result"""
        topics = self.broker.list_topics()
        logger.debug(f"Found {len(topics)} topics in project {self.broker.project_id}")
        return topics

    def create_topic(self, topic_id: str) -> Topic:
        if self.broker.topic_exists(topic_id):
            raise AlreadyExists(f"topic {topic_id} already exists")

        return self.broker.create_topic(topic_id)

    def publish(self, topic_id: str, payload: bytes) -> str:
        """Publish payload and wait for the broker to assign a message ID"""
        if not self.broker.topic_exists(topic_id):
            raise NotFound(f"topic {topic_id} does not exist")

        return self.broker.publish(topic_id, payload)

    def publish_from_file(self, topic_id: str, path: Union[str, Path]) -> str:
        """Publish the raw bytes of a file"""
        try:
            payload = Path(path).read_bytes()
        except OSError as e:
            raise PayloadReadError(f"failed to read message file: {e}") from e

        logger.debug(f"Read {len(payload)} bytes from {path}")
        return self.publish(topic_id, payload)
