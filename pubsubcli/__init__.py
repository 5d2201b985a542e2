"""
Google Cloud Pub/Sub command-line client components.
"""

from .errors import (
    PubSubCliError, NotFound, AlreadyExists, PayloadReadError, BrokerError, CommandError,
)
from .message import Topic, Subscription, ReceivedMessage, format_message
from .config import Config, get_config, initialize_config, configure_logging
from .broker import BrokerClient, GooglePubSubBroker, create_broker
from .publisher import Publisher
from .subscriber import Subscriber, ReceiveLoop, ReceiveState

__all__ = [
    'PubSubCliError', 'NotFound', 'AlreadyExists', 'PayloadReadError', 'BrokerError', 'CommandError',
    'Topic', 'Subscription', 'ReceivedMessage', 'format_message',
    'Config', 'get_config', 'initialize_config', 'configure_logging',
    'BrokerClient', 'GooglePubSubBroker', 'create_broker',
    'Publisher',
    'Subscriber', 'ReceiveLoop', 'ReceiveState',
]

__version__ = '0.1.0'
