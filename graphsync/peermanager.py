"""Reference-counted pools of per-peer processes, and message sending through them."""

from __future__ import annotations

import abc
import threading
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, Optional

from .blocks import Block
from .message import GraphSyncRequest, GraphSyncResponse

PeerID = Hashable


class PeerProcess(abc.ABC):
    """A process that provides services for one peer."""

    @abc.abstractmethod
    def startup(self) -> None:
        """Start the process."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Stop the process."""


class PeerQueue(PeerProcess):
    """A peer process that sends messages to its peer."""

    @abc.abstractmethod
    def add_request(self, request: GraphSyncRequest) -> None:
        """Queue a request for the peer."""

    @abc.abstractmethod
    def add_responses(
        self, responses: Iterable[GraphSyncResponse], blocks: Iterable[Block]
    ) -> Optional[threading.Event]:
        """Queue responses and blocks; may return an event set when sending starts."""


@dataclass
class _ProcessInstance:
    refcount: int
    process: PeerProcess


class PeerManager:
    """Manages a pool of peer processes, created on demand and reference counted."""

    def __init__(self, create_peer_process: Callable[[PeerID], PeerProcess]) -> None:
        self._create_peer_process = create_peer_process
        self._processes: dict[PeerID, _ProcessInstance] = {}
        self._lock = threading.Lock()

    def connected_peers(self) -> list[PeerID]:
        """Peers this manager currently has processes for."""
        with self._lock:
            return list(self._processes)

    def connected(self, peer: PeerID) -> None:
        """Add a reference to a peer, starting its process if needed."""
        with self._lock:
            self._get_or_create(peer).refcount += 1

    def disconnected(self, peer: PeerID) -> None:
        """Drop a reference to a peer, shutting its process down on the last one."""
        with self._lock:
            instance = self._processes.get(peer)
            if instance is None:
                return
            instance.refcount -= 1
            if instance.refcount > 0:
                return
            del self._processes[peer]
        instance.process.shutdown()

    def get_process(self, peer: PeerID) -> PeerProcess:
        """Return the process for a peer, starting it if needed."""
        with self._lock:
            return self._get_or_create(peer).process

    def _get_or_create(self, peer: PeerID) -> _ProcessInstance:
        instance = self._processes.get(peer)
        if instance is None:
            process = self._create_peer_process(peer)
            process.startup()
            instance = _ProcessInstance(0, process)
            self._processes[peer] = instance
        return instance


class PeerMessageManager(PeerManager):
    """Peer manager whose processes are message queues."""

    def __init__(self, create_peer_queue: Callable[[PeerID], PeerQueue]) -> None:
        super().__init__(create_peer_queue)

    def send_request(self, peer: PeerID, request: GraphSyncRequest) -> None:
        """Send a request to a peer."""
        self._queue(peer).add_request(request)

    def send_response(
        self, peer: PeerID, responses: Iterable[GraphSyncResponse], blocks: Iterable[Block]
    ) -> Optional[threading.Event]:
        """Send responses and blocks to a peer."""
        return self._queue(peer).add_responses(responses, blocks)

    def _queue(self, peer: PeerID) -> PeerQueue:
        process = self.get_process(peer)
        if not isinstance(process, PeerQueue):
            raise TypeError(f"process for peer {peer!r} is not a peer queue")
        return process