"""
Command-line client for Google Cloud Pub/Sub.
Lists and creates topics, publishes file payloads, creates subscriptions and
streams received messages to the console.
"""
import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Optional, TextIO

from pubsubcli.broker import create_broker
from pubsubcli.config import configure_logging, get_config, initialize_config
from pubsubcli.errors import CommandError, PubSubCliError
from pubsubcli.publisher import Publisher
from pubsubcli.subscriber import Subscriber


logger = logging.getLogger(__name__)


def list_topics(project_id: str, output: TextIO = sys.stdout) -> None:
    """Print every topic in the project"""
    try:
        broker = create_broker(project_id)
    except PubSubCliError as e:
        raise CommandError("failed to create publisher", e) from e

    with broker:
        output.write(f"Topics in project {project_id}:\n")
        try:
            topics = Publisher(broker).list_topics()
        except PubSubCliError as e:
            raise CommandError("failed to list topics", e) from e

        for topic in topics:
            output.write(f"- {topic.topic_id}\n")

        if not topics:
            output.write("No topics found in this project.\n")


def create_topic(project_id: str, topic_id: str, output: TextIO = sys.stdout) -> None:
    try:
        broker = create_broker(project_id)
    except PubSubCliError as e:
        raise CommandError("failed to create publisher", e) from e

    with broker:
        try:
            topic = Publisher(broker).create_topic(topic_id)
        except PubSubCliError as e:
            raise CommandError("failed to create topic", e) from e

        output.write(f"Topic created: {topic.topic_id}\n")


def publish_message(project_id: str,
                    topic_id: str,
                    message_file: str,
                    output: TextIO = sys.stdout) -> None:
    try:
        broker = create_broker(project_id)
    except PubSubCliError as e:
        raise CommandError("failed to create publisher", e) from e

    with broker:
        try:
            message_id = Publisher(broker).publish_from_file(topic_id, message_file)
        except PubSubCliError as e:
            raise CommandError("failed to publish message", e) from e

        output.write(f"Message published to topic {topic_id} with ID: {message_id}\n")


def create_subscription(project_id: str,
                        topic_id: str,
                        subscription_id: str,
                        output: TextIO = sys.stdout) -> None:
    try:
        broker = create_broker(project_id)
    except PubSubCliError as e:
        raise CommandError("failed to create subscriber", e) from e

    with broker:
        try:
            Subscriber(broker).create_subscription(topic_id, subscription_id, output)
        except PubSubCliError as e:
            raise CommandError("failed to create subscription", e) from e


@contextmanager
def interrupt_handler(cancel_event: threading.Event):
    """Set cancel_event on SIGINT/SIGTERM while the block runs"""
    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle_signal)
    try:
        yield cancel_event
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def subscribe_to_subscription(project_id: str,
                              subscription_id: str,
                              should_ack: bool,
                              output: TextIO = sys.stdout,
                              cancel_event: Optional[threading.Event] = None) -> None:
    """Stream a subscription until interrupted"""
    cancel_event = cancel_event or threading.Event()

    try:
        broker = create_broker(project_id)
    except PubSubCliError as e:
        raise CommandError("failed to create subscriber", e) from e

    with broker, interrupt_handler(cancel_event):
        subscriber = Subscriber(broker, poll_interval=get_config().get('subscriber.poll_interval', 0.5))
        try:
            subscriber.subscribe(subscription_id, should_ack, output, cancel_event)
        except (PubSubCliError, OSError) as e:
            raise CommandError("failed to subscribe", e) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='pubsub-cli', description='A CLI for Google Cloud Pub/Sub')
    parser.add_argument('--config', help='Path to a JSON configuration file')
    parser.add_argument('--log-level', help='Logging level (DEBUG, INFO, WARNING, ERROR)')

    def add_project(command_parser):
        command_parser.add_argument('--project', help='Google Cloud project ID')

    groups = parser.add_subparsers(dest='group', help='Command groups')

    # Publisher commands
    publisher_parser = groups.add_parser('publisher', help='Publisher commands')
    publisher_commands = publisher_parser.add_subparsers(dest='command', help='Publisher commands')

    topics_parser = publisher_commands.add_parser('topic', help='List topics')
    add_project(topics_parser)

    create_topic_parser = publisher_commands.add_parser('create-topic', help='Create a new topic')
    add_project(create_topic_parser)
    create_topic_parser.add_argument('--topic', required=True, help='Topic ID to create')

    publish_parser = publisher_commands.add_parser('publish', help='Publish a message to a topic')
    add_project(publish_parser)
    publish_parser.add_argument('--topic', required=True, help='Topic ID to publish to')
    publish_parser.add_argument('--message-payload-file', required=True,
                                help='Path to the file containing the message payload to publish')

    # Subscriber commands
    subscriber_parser = groups.add_parser('subscriber', help='Subscriber commands')
    subscriber_commands = subscriber_parser.add_subparsers(dest='command', help='Subscriber commands')

    create_sub_parser = subscriber_commands.add_parser('create-subscription',
                                                       help='Create a subscription for a topic')
    add_project(create_sub_parser)
    create_sub_parser.add_argument('--topic', required=True, help='Topic ID to subscribe to')
    create_sub_parser.add_argument('--subscription', required=True, help='Subscription ID to create')

    subscribe_parser = subscriber_commands.add_parser('subscribe', help='Subscribe to a subscription')
    add_project(subscribe_parser)
    subscribe_parser.add_argument('--subscription', required=True, help='Subscription ID to subscribe to')
    subscribe_parser.add_argument('--ack', action='store_true', help='Acknowledge received messages')

    return parser


def cli_main(argv=None, output: TextIO = sys.stdout) -> int:
    """CLI entry point; returns the process exit status"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.group or not args.command:
        parser.print_help()
        return 2

    config = initialize_config(args.config) if args.config else get_config()
    configure_logging(config, args.log_level)

    project_id = args.project or config.get('client.project')
    if not project_id:
        parser.error('--project is required (or set client.project / PSC_PROJECT)')

    try:
        if args.group == 'publisher':
            if args.command == 'topic':
                list_topics(project_id, output)
            elif args.command == 'create-topic':
                create_topic(project_id, args.topic, output)
            elif args.command == 'publish':
                publish_message(project_id, args.topic, args.message_payload_file, output)

        elif args.group == 'subscriber':
            if args.command == 'create-subscription':
                create_subscription(project_id, args.topic, args.subscription, output)
            elif args.command == 'subscribe':
                subscribe_to_subscription(project_id, args.subscription, args.ack, output)

    except PubSubCliError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def main() -> None:
    sys.exit(cli_main())


if __name__ == '__main__':
    main()
