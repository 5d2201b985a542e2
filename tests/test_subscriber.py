"""
Unit tests for the subscriber facade and the receive loop.
Tests subscription creation, acknowledgement behaviour, cancellation and stream failures.
"""
import io
import threading
import time
import unittest
from unittest.mock import patch

from pubsubcli.errors import AlreadyExists, BrokerError, NotFound
from pubsubcli.subscriber import ReceiveLoop, ReceiveState, Subscriber
from fake_broker import InMemoryBroker


def wait_for(predicate, timeout=5.0):
    """Poll predicate until true or fail after timeout"""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met before timeout")


class CancellingOutput(io.StringIO):
    """Output sink that sets a cancel event once a marker has been written"""

    def __init__(self, cancel_event, marker):
        super().__init__()
        self.cancel_event = cancel_event
        self.marker = marker

    def write(self, text):
        result = super().write(text)
        if self.marker in text:
            self.cancel_event.set()
        return result


class BrokenOutput(io.StringIO):
    """Output sink that fails on the first rendered message"""

    def write(self, text):
        if text.startswith('Received message'):
            raise BrokenPipeError("stdout closed")
        return super().write(text)


class TestCreateSubscription(unittest.TestCase):
    """Test cases for Subscriber.create_subscription"""

    def setUp(self):
        self.broker = InMemoryBroker()
        self.subscriber = Subscriber(self.broker)

    def test_create_subscription(self):
        self.broker.add_topic('t1')
        output = io.StringIO()

        subscription = self.subscriber.create_subscription('t1', 's1', output)

        self.assertEqual(subscription.subscription_id, 's1')
        self.assertEqual(subscription.topic_id, 't1')
        self.assertEqual(output.getvalue(), "Subscription s1 created for topic t1\n")

    def test_missing_topic(self):
        with patch.object(self.broker, 'create_subscription') as create:
            with self.assertRaises(NotFound):
                self.subscriber.create_subscription('ghost', 's1')

        create.assert_not_called()

    def test_existing_subscription(self):
        self.broker.add_topic('t1')
        self.broker.add_subscription('t1', 's1')

        with self.assertRaises(AlreadyExists):
            self.subscriber.create_subscription('t1', 's1')


class TestSubscribe(unittest.TestCase):
    """Test cases for Subscriber.subscribe and ReceiveLoop"""

    def setUp(self):
        self.broker = InMemoryBroker()
        self.broker.add_topic('t1')
        self.broker.add_subscription('t1', 's1')
        self.subscriber = Subscriber(self.broker, poll_interval=0.01)
        self.cancel_event = threading.Event()
        self.output = io.StringIO()
        self.result = {}

    def _start(self, should_ack):
        def run():
            try:
                self.result['state'] = self.subscriber.subscribe(
                    's1', should_ack, self.output, self.cancel_event
                )
            except Exception as e:
                self.result['error'] = e

        thread = threading.Thread(target=run, daemon=True)
        thread.start()
        return thread

    def _stop(self, thread):
        self.cancel_event.set()
        thread.join(timeout=5)
        self.assertFalse(thread.is_alive())

    def test_subscribe_missing_subscription(self):
        with self.assertRaises(NotFound) as ctx:
            self.subscriber.subscribe('sub-x', True, self.output, self.cancel_event)

        self.assertIn('sub-x', str(ctx.exception))
        self.assertEqual(self.broker.receive_calls, 0)
        self.assertEqual(self.output.getvalue(), '')

    def test_ack_each_message_once(self):
        for i in range(3):
            self.broker.deliver(f'm{i}', f'payload {i}'.encode())

        thread = self._start(should_ack=True)
        wait_for(lambda: len(self.broker.acked) == 3)
        self._stop(thread)

        self.assertEqual(self.result, {'state': ReceiveState.CANCELLED})
        self.assertCountEqual(self.broker.acked, ['m0', 'm1', 'm2'])

        text = self.output.getvalue()
        self.assertTrue(text.startswith(
            "Listening for messages on subscription s1...\nPress Ctrl+C to exit\n\n"
        ))
        for i in range(3):
            self.assertIn(f"Received message: ID=m{i}\nData: payload {i}\n", text)
            self.assertIn(f"Message acknowledged: ID=m{i}\n\n", text)
        self.assertTrue(text.endswith("\nSubscription stopped: cancelled\n"))

    def test_no_ack(self):
        self.broker.deliver('m1', b'one')
        self.broker.deliver('m2', b'two', {'origin': 'test'})

        thread = self._start(should_ack=False)
        wait_for(lambda: self.output.getvalue().count('Message not acknowledged') == 2)
        self._stop(thread)

        self.assertEqual(self.broker.acked, [])
        text = self.output.getvalue()
        self.assertIn("Attributes:\n  origin: test\n", text)
        self.assertIn("Message not acknowledged (--ack flag not provided)\n\n", text)
        self.assertNotIn("Message acknowledged", text)

    def test_cancel_before_any_message(self):
        self.cancel_event.set()

        state = self.subscriber.subscribe('s1', True, self.output, self.cancel_event)

        self.assertEqual(state, ReceiveState.CANCELLED)
        self.assertNotIn('Received message', self.output.getvalue())
        self.assertTrue(self.broker.receive_returned)

    def test_in_flight_message_finishes_and_no_more_render(self):
        output = CancellingOutput(self.cancel_event, 'Received message: ID=m1')
        for i in range(1, 4):
            self.broker.deliver(f'm{i}', b'data')

        loop = ReceiveLoop(self.broker, 's1', True, output, self.cancel_event, poll_interval=0.01)
        state = loop.run()

        self.assertEqual(state, ReceiveState.CANCELLED)
        # The message being rendered when cancellation arrived is still acknowledged
        self.assertEqual(self.broker.acked, ['m1'])
        self.assertEqual(loop.received_count, 1)
        self.assertEqual(output.getvalue().count('Received message'), 1)
        self.assertIn("Message acknowledged: ID=m1", output.getvalue())

        # The stream has fully stopped before run() returned
        self.assertTrue(self.broker.receive_returned)
        self.assertFalse(self.broker.receiving.is_set())

    def test_stream_failure(self):
        self.broker.receive_error = BrokerError("403 permission denied")

        loop = ReceiveLoop(self.broker, 's1', True, self.output, self.cancel_event, poll_interval=0.01)
        with self.assertRaises(BrokerError) as ctx:
            loop.run()

        self.assertEqual(loop.state, ReceiveState.FAILED)
        self.assertIn('receive error', str(ctx.exception))
        self.assertIn('permission denied', str(ctx.exception))
        self.assertTrue(self.broker.receive_returned)
        self.assertNotIn('Subscription stopped', self.output.getvalue())

    def test_messages_before_failure_are_rendered(self):
        self.broker.deliver('m1', b'data')
        self.broker.receive_error = BrokerError("subscription deleted")

        loop = ReceiveLoop(self.broker, 's1', True, self.output, self.cancel_event, poll_interval=0.01)
        with self.assertRaises(BrokerError):
            loop.run()

        self.assertEqual(self.broker.acked, ['m1'])

    def test_stream_ending_without_cancellation_fails(self):
        self.broker.end_stream = True

        loop = ReceiveLoop(self.broker, 's1', False, self.output, self.cancel_event, poll_interval=0.01)
        with self.assertRaises(BrokerError) as ctx:
            loop.run()

        self.assertEqual(loop.state, ReceiveState.FAILED)
        self.assertIn('ended without cancellation', str(ctx.exception))

    def test_output_failure_stops_stream(self):
        self.broker.deliver('m1', b'data')

        loop = ReceiveLoop(self.broker, 's1', True, BrokenOutput(), self.cancel_event, poll_interval=0.01)
        with self.assertRaises(BrokenPipeError):
            loop.run()

        self.assertEqual(loop.state, ReceiveState.FAILED)
        self.assertTrue(self.cancel_event.is_set())
        self.assertTrue(self.broker.receive_returned)
        self.assertEqual(self.broker.acked, [])

    def test_cancellation_prints_shutdown_banner(self):
        self.cancel_event.set()

        self.subscriber.subscribe('s1', True, self.output, self.cancel_event)

        self.assertEqual(
            self.output.getvalue(),
            "Listening for messages on subscription s1...\nPress Ctrl+C to exit\n\n"
            "\nReceived interrupt signal. Shutting down...\n"
            "\nSubscription stopped: cancelled\n"
        )

    def test_error_left_in_channel_is_logged(self):
        loop = ReceiveLoop(self.broker, 's1', True, self.output, self.cancel_event, poll_interval=0.01)
        loop._channel.put(('failed', BrokerError("stream reset")))

        with self.assertLogs('pubsubcli.subscriber', level='WARNING') as logs:
            loop._stop_worker()

        self.assertEqual(len(logs.records), 1)
        self.assertIn('stream reset', logs.output[0])
        self.assertTrue(loop._channel.empty())

    def test_loop_runs_once(self):
        self.cancel_event.set()
        loop = ReceiveLoop(self.broker, 's1', True, self.output, self.cancel_event, poll_interval=0.01)
        loop.run()

        with self.assertRaises(RuntimeError):
            loop.run()


if __name__ == '__main__':
    unittest.main()
