"""Metadata about the links traversed in a response, and its encoding."""

from __future__ import annotations

from dataclasses import dataclass

from .ipldbridge import IPLDBridge, Link, Node


@dataclass(frozen=True)
class Item:
    """A single link traversed in a response."""

    link: Link
    block_present: bool


Metadata = list[Item]


def _read_item(node: Node) -> Item:
    link = node["link"]
    block_present = node["blockPresent"]
    if not isinstance(link, Link):
        raise TypeError("metadata link is not a link")
    if not isinstance(block_present, bool):
        raise TypeError("metadata blockPresent is not a bool")
    return Item(link, block_present)


def _read_metadata(node: Node) -> Metadata:
    if not isinstance(node, list):
        raise TypeError("metadata is not a list")
    return [_read_item(item) for item in node]


def decode_metadata(data: bytes, bridge: IPLDBridge) -> Metadata:
    """Decode metadata from bytes via an IPLD node."""
    node = bridge.decode_node(data)
    return bridge.extract_data(node, _read_metadata)


def encode_metadata(entries: Metadata, bridge: IPLDBridge) -> bytes:
    """Encode metadata as an IPLD node serialized to bytes."""
    node = bridge.build_node(
        lambda: [{"link": item.link, "blockPresent": item.block_present} for item in entries]
    )
    return bridge.encode_node(node)