"""Bridge between GraphSync and the IPLD data model, encoded as DAG-CBOR.

Nodes are plain Python values: None, bool, int, float, str, bytes, lists,
dicts with string keys, and Link objects for links to other blocks.
"""

from __future__ import annotations

import abc
import io
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import cbor2

from .blocks import DAG_PB, Cid

LINK_TAG = 42

_INT_MIN = -(1 << 64)
_INT_MAX = (1 << 64) - 1
_UINT64_MAX = (1 << 64) - 1

Node = Any
T = TypeVar("T")

_BUILD_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)


class DoNotFollow(Exception):
    """Raised by a traversal visitor to stop a link from being followed."""


class IPLDError(ValueError):
    """A node could not be built, read, encoded or decoded."""


@dataclass(frozen=True)
class Link:
    """A link to another block, addressed by its CID."""

    cid: Cid

    def __str__(self) -> str:
        return str(self.cid)


class IPLDBridge(abc.ABC):
    """Operations on IPLD nodes that GraphSync relies on."""

    @abc.abstractmethod
    def extract_data(self, node: Node, build_fn: Callable[[Node], T]) -> T:
        """Run build_fn over node, turning lookup and type failures into IPLDError."""

    @abc.abstractmethod
    def build_node(self, build_fn: Callable[[], Node]) -> Node:
        """Build a node with build_fn and check that it is a valid IPLD value."""

    @abc.abstractmethod
    def encode_node(self, node: Node) -> bytes:
        """Encode a node to bytes for network transfer."""

    @abc.abstractmethod
    def decode_node(self, data: bytes) -> Node:
        """Decode bytes received from the network into a node."""


def _validate(node: Node) -> None:
    if node is None or isinstance(node, (bool, float, str, bytes, Link)):
        return
    if isinstance(node, int):
        if not _INT_MIN <= node <= _INT_MAX:
            raise IPLDError(f"integer {node} is out of range")
        return
    if isinstance(node, list):
        for item in node:
            _validate(item)
        return
    if isinstance(node, dict):
        for key, value in node.items():
            if not isinstance(key, str):
                raise IPLDError(f"map key {key!r} is not a string")
            _validate(value)
        return
    raise IPLDError(f"{type(node).__name__} is not an IPLD data model value")


def _to_cbor(node: Node) -> Any:
    if isinstance(node, Link):
        return cbor2.CBORTag(LINK_TAG, b"\x00" + node.cid.to_bytes())
    if isinstance(node, list):
        return [_to_cbor(item) for item in node]
    if isinstance(node, dict):
        return {key: _to_cbor(value) for key, value in node.items()}
    return node


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise IPLDError("truncated varint in cid")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
        if shift >= 70:
            raise IPLDError("varint in cid overflows 64 bits")
    if result > _UINT64_MAX:
        raise IPLDError("varint in cid overflows 64 bits")
    return result, pos


def _cid_from_bytes(data: bytes) -> Cid:
    try:
        if len(data) == 34 and data[0] == 0x12 and data[1] == 0x20:
            return Cid(0, DAG_PB, bytes(data))
        version, pos = _read_uvarint(data, 0)
        if version != 1:
            raise IPLDError(f"invalid cid version {version}")
        codec, pos = _read_uvarint(data, pos)
        return Cid(version, codec, bytes(data[pos:]))
    except IPLDError:
        raise
    except ValueError as exc:
        raise IPLDError(f"invalid cid: {exc}") from exc


def _decode_tag(decoder: Any, tag: cbor2.CBORTag) -> Link:
    if tag.tag != LINK_TAG:
        raise IPLDError(f"unsupported cbor tag {tag.tag}")
    payload = tag.value
    if not isinstance(payload, bytes) or not payload or payload[0] != 0:
        raise IPLDError("malformed link")
    return Link(_cid_from_bytes(payload[1:]))


class CborIPLDBridge(IPLDBridge):
    """IPLD bridge that encodes nodes as canonical DAG-CBOR."""

    def extract_data(self, node: Node, build_fn: Callable[[Node], T]) -> T:
        try:
            return build_fn(node)
        except IPLDError:
            raise
        except _BUILD_ERRORS as exc:
            raise IPLDError(f"could not extract data: {exc}") from exc

    def build_node(self, build_fn: Callable[[], Node]) -> Node:
        try:
            node = build_fn()
        except IPLDError:
            raise
        except _BUILD_ERRORS as exc:
            raise IPLDError(f"could not build node: {exc}") from exc
        _validate(node)
        return node

    def encode_node(self, node: Node) -> bytes:
        _validate(node)
        return cbor2.dumps(_to_cbor(node), canonical=True)

    def decode_node(self, data: bytes) -> Node:
        stream = io.BytesIO(bytes(data))
        try:
            node = cbor2.CBORDecoder(stream, tag_hook=_decode_tag).decode()
        except IPLDError:
            raise
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise IPLDError(f"invalid dag-cbor data: {exc}") from exc
        if stream.read(1):
            raise IPLDError("trailing data after dag-cbor value")
        _validate(node)
        return node