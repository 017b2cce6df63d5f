"""Outgoing message queue for one peer, batching requests, responses and blocks."""

from __future__ import annotations

import abc
import logging
import threading
from typing import Callable, Hashable, Iterable, Optional

from .blocks import Block
from .message import GraphSyncMessage, GraphSyncRequest, GraphSyncResponse
from .network import MessageSender

log = logging.getLogger("graphsync")

MAX_RETRIES = 10
RETRY_DELAY = 0.1

PeerID = Hashable


class MessageNetwork(abc.ABC):
    """A network that can connect to peers and open message senders to them."""

    @abc.abstractmethod
    def connect_to(self, peer: PeerID) -> None:
        """Establish a connection to a peer."""

    @abc.abstractmethod
    def new_message_sender(self, peer: PeerID) -> MessageSender:
        """Open a sender for messages to a peer."""


class MessageQueue:
    """Collects outgoing data for a peer and sends it from a background thread.

    Everything added while a send is in progress is merged into the next
    message, so bursts of requests and responses go out together.
    """

    def __init__(
        self,
        peer: PeerID,
        network: MessageNetwork,
        *,
        retry_delay: float = RETRY_DELAY,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self._peer = peer
        self._network = network
        self._retry_delay = retry_delay
        self._max_retries = max_retries

        self._message_lock = threading.Lock()
        self._next_message: Optional[GraphSyncMessage] = None
        self._notifiers: list[threading.Event] = []

        self._wake = threading.Condition()
        self._work_pending = False
        self._done = False
        self._cancelled = threading.Event()

        self._sender: Optional[MessageSender] = None
        self._thread: Optional[threading.Thread] = None

    def add_request(self, request: GraphSyncRequest) -> None:
        """Queue an outgoing request."""
        if self._mutate_next_message(lambda message: message.add_request(request), None):
            self._signal_work()

    def add_responses(
        self, responses: Iterable[GraphSyncResponse], blocks: Iterable[Block]
    ) -> threading.Event:
        """Queue responses and blocks.

        Returns an event that is set once the message holding them is taken
        for sending; it may be ignored.
        """
        responses = list(responses)
        blocks = list(blocks)

        def mutate(message: GraphSyncMessage) -> None:
            for response in responses:
                message.add_response(response)
            for block in blocks:
                message.add_block(block)

        notifier = threading.Event()
        if self._mutate_next_message(mutate, notifier):
            self._signal_work()
        return notifier

    def startup(self) -> None:
        """Start sending queued messages in the background."""
        if self._thread is not None:
            raise RuntimeError("message queue already started")
        self._thread = threading.Thread(
            target=self._run, name=f"graphsync-queue-{self._peer}", daemon=True
        )
        self._thread.start()

    def shutdown(self) -> None:
        """Stop processing and close the sender cleanly."""
        with self._wake:
            self._done = True
            self._wake.notify_all()

    def cancel(self) -> None:
        """Abort processing and reset the sender."""
        with self._wake:
            self._cancelled.set()
            self._wake.notify_all()

    def _run(self) -> None:
        while True:
            with self._wake:
                self._wake.wait_for(
                    lambda: self._work_pending or self._done or self._cancelled.is_set()
                )
                if self._cancelled.is_set():
                    self._finish(self._sender_reset)
                    return
                if self._work_pending:
                    self._work_pending = False
                elif self._done:
                    self._finish(self._sender_close)
                    return
            self._send_message()

    def _finish(self, action: Callable[[], None]) -> None:
        if self._sender is not None:
            action()

    def _sender_close(self) -> None:
        try:
            self._sender.close()  # type: ignore[union-attr]
        except Exception as exc:  # errors on close are not actionable
            log.debug("error closing message sender to %s: %s", self._peer, exc)

    def _sender_reset(self) -> None:
        try:
            self._sender.reset()  # type: ignore[union-attr]
        except Exception as exc:  # errors on reset are not actionable
            log.debug("error resetting message sender to %s: %s", self._peer, exc)

    def _mutate_next_message(
        self,
        mutator: Callable[[GraphSyncMessage], None],
        notifier: Optional[threading.Event],
    ) -> bool:
        with self._message_lock:
            if self._next_message is None:
                self._next_message = GraphSyncMessage()
            mutator(self._next_message)
            if notifier is not None:
                self._notifiers.append(notifier)
            return not self._next_message.is_empty()

    def _signal_work(self) -> None:
        with self._wake:
            self._work_pending = True
            self._wake.notify_all()

    def _extract_outgoing_message(self) -> Optional[GraphSyncMessage]:
        with self._message_lock:
            message = self._next_message
            self._next_message = None
            for notifier in self._notifiers:
                notifier.set()
            self._notifiers = []
        return message

    def _send_message(self) -> None:
        message = self._extract_outgoing_message()
        if message is None or message.is_empty():
            return
        try:
            self._initialize_sender()
        except Exception as exc:
            log.info("cant open message sender to peer %s: %s", self._peer, exc)
            return
        for _ in range(self._max_retries):
            if self._attempt_send_and_recovery(message):
                return

    def _initialize_sender(self) -> None:
        if self._sender is not None:
            return
        self._network.connect_to(self._peer)
        self._sender = self._network.new_message_sender(self._peer)

    def _attempt_send_and_recovery(self, message: GraphSyncMessage) -> bool:
        assert self._sender is not None
        try:
            self._sender.send_msg(message)
            return True
        except Exception as exc:
            log.info("graphsync send error: %s", exc)
        self._sender_reset()
        self._sender = None

        # give disconnect notifications time to propagate
        if self._cancelled.wait(self._retry_delay):
            return True
        log.warning("send_msg errored but the queue was neither shut down nor cancelled")

        try:
            self._initialize_sender()
        except Exception as exc:
            log.info("couldnt open sender again after send to %s failed: %s", self._peer, exc)
            return True
        return False