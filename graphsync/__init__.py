"""GraphSync protocol messages, CIDs and blocks, DAG-CBOR nodes, link tracking, message queues and peer management."""

__version__ = "0.1.0"

__all__ = [
    "blocks",
    "ipldbridge",
    "linktracker",
    "message",
    "messagequeue",
    "metadata",
    "network",
    "peermanager",
]