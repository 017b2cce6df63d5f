"""Network interfaces for GraphSync and an implementation over a libp2p-style host."""

from __future__ import annotations

import abc
import logging
import time
from typing import Any, BinaryIO, Callable, Hashable, Optional, Protocol

from .message import GraphSyncMessage, from_net

PROTOCOL_GRAPHSYNC = "/ipfs/graphsync/1.0.0"
SEND_MESSAGE_TIMEOUT = 10 * 60.0

log = logging.getLogger("graphsync_network")

PeerID = Hashable


class MessageSender(abc.ABC):
    """Sends messages to a single peer over a long-lived stream."""

    @abc.abstractmethod
    def send_msg(self, message: GraphSyncMessage) -> None:
        """Send one message."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the underlying stream cleanly."""

    @abc.abstractmethod
    def reset(self) -> None:
        """Abort the underlying stream."""


class Receiver(abc.ABC):
    """Handles messages and errors arriving from the network."""

    @abc.abstractmethod
    def receive_message(self, sender: PeerID, incoming: GraphSyncMessage) -> None:
        """Handle a message received from a peer."""

    @abc.abstractmethod
    def receive_error(self, error: Exception) -> None:
        """Handle an error raised while receiving."""


class GraphSyncNetwork(abc.ABC):
    """Network connectivity for GraphSync."""

    @abc.abstractmethod
    def send_message(self, peer: PeerID, message: GraphSyncMessage) -> None:
        """Send a message to a peer on a fresh stream."""

    @abc.abstractmethod
    def set_delegate(self, receiver: Receiver) -> None:
        """Register the receiver of incoming messages."""

    @abc.abstractmethod
    def connect_to(self, peer: PeerID) -> None:
        """Establish a connection to a peer."""

    @abc.abstractmethod
    def new_message_sender(self, peer: PeerID) -> MessageSender:
        """Open a sender for repeated messages to a peer."""


class Stream(Protocol):
    """A bidirectional byte stream to a remote peer."""

    protocol: str
    remote_peer: PeerID

    def read(self, size: int = -1) -> bytes: ...

    def write(self, data: bytes) -> Any: ...

    def close(self) -> None: ...

    def reset(self) -> None: ...

    def set_write_deadline(self, deadline: Optional[float]) -> None: ...


class Host(Protocol):
    """A peer-to-peer host that opens and accepts protocol streams."""

    def set_stream_handler(self, protocol: str, handler: Callable[[Stream], None]) -> None: ...

    def new_stream(self, peer: PeerID, protocol: str) -> Stream: ...

    def connect(self, peer: PeerID) -> None: ...


def _set_deadline(stream: Stream, deadline: Optional[float]) -> None:
    try:
        stream.set_write_deadline(deadline)
    except OSError as exc:
        log.warning("error setting deadline: %s", exc)


def _msg_to_stream(stream: Stream, message: GraphSyncMessage) -> None:
    log.debug(
        "Outgoing message with %d requests, %d responses, and %d blocks",
        len(message.requests()),
        len(message.responses()),
        len(message.blocks()),
    )
    _set_deadline(stream, time.time() + SEND_MESSAGE_TIMEOUT)
    if stream.protocol != PROTOCOL_GRAPHSYNC:
        raise ValueError(f"unrecognized protocol on remote: {stream.protocol}")
    message.to_net(stream)  # type: ignore[arg-type]
    _set_deadline(stream, None)


class StreamMessageSender(MessageSender):
    """A message sender writing to one open stream."""

    def __init__(self, stream: Stream) -> None:
        self._stream = stream

    def send_msg(self, message: GraphSyncMessage) -> None:
        _msg_to_stream(self._stream, message)

    def close(self) -> None:
        self._stream.close()

    def reset(self) -> None:
        self._stream.reset()


class Libp2pGraphSyncNetwork(GraphSyncNetwork):
    """GraphSync network carried over a host's protocol streams."""

    def __init__(self, host: Host) -> None:
        self._host = host
        self._receiver: Optional[Receiver] = None
        host.set_stream_handler(PROTOCOL_GRAPHSYNC, self._handle_new_stream)

    def send_message(self, peer: PeerID, message: GraphSyncMessage) -> None:
        stream = self._host.new_stream(peer, PROTOCOL_GRAPHSYNC)
        try:
            _msg_to_stream(stream, message)
        except Exception:
            stream.reset()
            raise
        stream.close()

    def set_delegate(self, receiver: Receiver) -> None:
        self._receiver = receiver

    def connect_to(self, peer: PeerID) -> None:
        self._host.connect(peer)

    def new_message_sender(self, peer: PeerID) -> MessageSender:
        return StreamMessageSender(self._host.new_stream(peer, PROTOCOL_GRAPHSYNC))

    def _handle_new_stream(self, stream: Stream) -> None:
        try:
            receiver = self._receiver
            if receiver is None:
                stream.reset()
                return
            reader: BinaryIO = stream  # type: ignore[assignment]
            while True:
                try:
                    received = from_net(reader)
                except EOFError:
                    return
                except (ValueError, OSError) as exc:
                    stream.reset()
                    log.debug(
                        "graphsync net handleNewStream from %s error: %s", stream.remote_peer, exc
                    )
                    receiver.receive_error(exc)
                    return
                log.debug("graphsync net handleNewStream from %s", stream.remote_peer)
                receiver.receive_message(stream.remote_peer, received)
        finally:
            stream.close()


def new_from_libp2p_host(host: Host) -> Libp2pGraphSyncNetwork:
    """Create a GraphSync network on top of the given host."""
    return Libp2pGraphSyncNetwork(host)