import os
import queue
import random
import threading

import pytest

from graphsync.blocks import new_block
from graphsync.message import ResponseStatusCode, new_request, new_response
from graphsync.messagequeue import MessageNetwork, MessageQueue
from graphsync.network import MessageSender

TIMEOUT = 1.0


def _random_int32():
    return random.randint(0, 2**31 - 1)


class FakeMessageSender(MessageSender):
    def __init__(self, send_errors=()):
        self.sent = queue.Queue()
        self._taken = threading.Semaphore(0)
        self._errors = list(send_errors)
        self.closed = threading.Event()
        self.was_reset = threading.Event()

    def send_msg(self, message):
        self.sent.put(message)
        self._taken.acquire(timeout=TIMEOUT)
        if self._errors:
            raise self._errors.pop(0)

    def next_message(self):
        message = self.sent.get(timeout=TIMEOUT)
        self._taken.release()
        return message

    def close(self):
        self.closed.set()

    def reset(self):
        self.was_reset.set()


class FakeMessageNetwork(MessageNetwork):
    def __init__(self, sender, connect_error=None, sender_error=None):
        self.sender = sender
        self.connect_error = connect_error
        self.sender_error = sender_error
        self.connect_attempted = threading.Event()
        self.sender_requested = threading.Event()
        self.sender_count = 0

    def connect_to(self, peer):
        self.connect_attempted.set()
        if self.connect_error is not None:
            raise self.connect_error

    def new_message_sender(self, peer):
        self.sender_count += 1
        self.sender_requested.set()
        if self.sender_error is not None:
            raise self.sender_error
        return self.sender


@pytest.fixture
def sender():
    return FakeMessageSender()


@pytest.fixture
def network(sender):
    return FakeMessageNetwork(sender)


def test_startup_and_shutdown(sender, network):
    mq = MessageQueue("peer-1", network)
    mq.startup()
    request_id = _random_int32()
    priority = _random_int32()
    selector = os.urandom(100)

    mq.add_request(new_request(request_id, selector, priority))
    message = sender.next_message()
    assert [r.id for r in message.requests()] == [request_id]

    mq.shutdown()
    assert sender.closed.wait(TIMEOUT)
    assert not sender.was_reset.is_set()


def test_processing_notification(sender, network):
    mq = MessageQueue("peer-1", network)
    blks = [new_block(os.urandom(128)) for _ in range(3)]
    response_id = _random_int32()
    extra = os.urandom(100)
    status = ResponseStatusCode.REQUEST_COMPLETED_FULL

    processing = mq.add_responses([new_response(response_id, status, extra)], blks)
    assert not processing.is_set()

    mq.startup()
    assert network.sender_requested.wait(TIMEOUT)
    assert processing.wait(TIMEOUT)

    message = sender.next_message()
    assert all(block in blks for block in message.blocks())
    assert len(message.blocks()) == 3
    first = message.responses()[0]
    assert first.request_id == response_id
    assert first.status == status
    assert first.extra == extra
    mq.shutdown()


def test_deduping_messages(sender, network):
    mq = MessageQueue("peer-1", network)
    mq.startup()
    id1, id2, id3 = 1, 2, 3
    priority1, priority2, priority3 = _random_int32(), _random_int32(), _random_int32()
    selector1, selector2, selector3 = os.urandom(100), os.urandom(100), os.urandom(100)

    mq.add_request(new_request(id1, selector1, priority1))
    assert network.sender_requested.wait(TIMEOUT)
    mq.add_request(new_request(id2, selector2, priority2))
    mq.add_request(new_request(id3, selector3, priority3))

    first = sender.next_message()
    requests = first.requests()
    assert len(requests) == 1
    request = requests[0]
    assert request.id == id1
    assert request.is_cancel is False
    assert request.priority == priority1
    assert request.selector == selector1

    second = sender.next_message()
    by_id = {r.id: r for r in second.requests()}
    assert set(by_id) == {id2, id3}
    assert by_id[id2].priority == priority2
    assert by_id[id2].selector == selector2
    assert by_id[id2].is_cancel is False
    assert by_id[id3].priority == priority3
    assert by_id[id3].selector == selector3
    assert by_id[id3].is_cancel is False
    mq.shutdown()


def test_cancel_resets_sender(sender, network):
    mq = MessageQueue("peer-1", network)
    mq.startup()
    status = ResponseStatusCode.PARTIAL_RESPONSE
    processing = mq.add_responses([new_response(7, status, b"extra")], [])
    assert processing.wait(TIMEOUT)
    message = sender.next_message()
    assert [(r.request_id, r.status, r.extra) for r in message.responses()] == [
        (7, status, b"extra")
    ]
    mq.cancel()
    assert sender.was_reset.wait(TIMEOUT)
    assert not sender.closed.is_set()


def test_send_error_retries_with_new_sender():
    sender = FakeMessageSender(send_errors=[OSError("boom")])
    network = FakeMessageNetwork(sender)
    mq = MessageQueue("peer-1", network, retry_delay=0.01)
    mq.startup()
    mq.add_request(new_request(5, b"selector", 9))

    first = sender.next_message()
    assert sender.was_reset.wait(TIMEOUT)
    second = sender.next_message()
    assert [r.id for r in first.requests()] == [5]
    assert [r.id for r in second.requests()] == [5]
    assert network.sender_count == 2
    mq.shutdown()
    assert sender.closed.wait(TIMEOUT)


def test_connect_error_drops_message_but_notifies(sender):
    network = FakeMessageNetwork(sender, connect_error=OSError("unreachable"))
    mq = MessageQueue("peer-1", network)
    mq.startup()
    processing = mq.add_responses(
        [new_response(3, ResponseStatusCode.PARTIAL_RESPONSE, b"")], []
    )
    assert processing.wait(TIMEOUT)
    assert network.connect_attempted.wait(TIMEOUT)
    mq.shutdown()
    assert not network.sender_requested.is_set()
    assert sender.sent.empty()


def test_startup_twice_raises(network):
    mq = MessageQueue("peer-1", network)
    mq.startup()
    with pytest.raises(RuntimeError):
        mq.startup()
    mq.shutdown()