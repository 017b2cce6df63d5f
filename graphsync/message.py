"""GraphSync requests, responses and messages, with their protobuf wire format."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Union

from .blocks import Block, Cid, new_block_with_cid, prefix_from_bytes

MESSAGE_SIZE_MAX = 1 << 22

_UINT64_MAX = (1 << 64) - 1
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5


class ResponseStatusCode(enum.IntEnum):
    """Status codes carried by a GraphSync response."""

    # Informational (partial)
    REQUEST_ACKNOWLEDGED = 10
    ADDITIONAL_PEERS = 11
    NOT_ENOUGH_GAS = 12
    OTHER_PROTOCOL = 13
    PARTIAL_RESPONSE = 14
    # Success (request terminated)
    REQUEST_COMPLETED_FULL = 20
    REQUEST_COMPLETED_PARTIAL = 21
    # Error (request terminated)
    REQUEST_REJECTED = 30
    REQUEST_FAILED_BUSY = 31
    REQUEST_FAILED_UNKNOWN = 32
    REQUEST_FAILED_LEGAL = 33
    REQUEST_FAILED_CONTENT_NOT_FOUND = 34


_TERMINAL_SUCCESS = frozenset(
    {ResponseStatusCode.REQUEST_COMPLETED_FULL, ResponseStatusCode.REQUEST_COMPLETED_PARTIAL}
)
_TERMINAL_FAILURE = frozenset(
    {
        ResponseStatusCode.REQUEST_FAILED_BUSY,
        ResponseStatusCode.REQUEST_FAILED_CONTENT_NOT_FOUND,
        ResponseStatusCode.REQUEST_FAILED_LEGAL,
        ResponseStatusCode.REQUEST_FAILED_UNKNOWN,
    }
)

Status = Union[ResponseStatusCode, int]


def is_terminal_success_code(status: Status) -> bool:
    """True if the status means the request finished successfully."""
    return status in _TERMINAL_SUCCESS


def is_terminal_failure_code(status: Status) -> bool:
    """True if the status means the request finished in failure."""
    return status in _TERMINAL_FAILURE


def is_terminal_response_code(status: Status) -> bool:
    """True if the status ends the request."""
    return is_terminal_success_code(status) or is_terminal_failure_code(status)


def _as_status(value: int) -> Status:
    try:
        return ResponseStatusCode(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class GraphSyncRequest:
    """A request carried in a GraphSync message."""

    id: int
    selector: bytes = b""
    priority: int = 0
    is_cancel: bool = False


@dataclass(frozen=True)
class GraphSyncResponse:
    """A response carried in a GraphSync message."""

    request_id: int
    status: Status
    extra: bytes = b""


def new_request(request_id: int, selector: bytes, priority: int) -> GraphSyncRequest:
    """Build a new request for the given selector."""
    return GraphSyncRequest(request_id, bytes(selector), priority, False)


def cancel_request(request_id: int) -> GraphSyncRequest:
    """Build a request that cancels an in-progress request."""
    return GraphSyncRequest(request_id, b"", 0, True)


def new_response(request_id: int, status: int, extra: bytes) -> GraphSyncResponse:
    """Build a new response."""
    return GraphSyncResponse(request_id, _as_status(status), bytes(extra))


# --- protobuf wire primitives ---


def _encode_uvarint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("unexpected end of protobuf data")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
        if shift >= 70:
            raise ValueError("protobuf varint overflow")
    return result & _UINT64_MAX, pos


def _int32_to_wire(value: int) -> int:
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"value {value} does not fit in int32")
    return value & _UINT64_MAX


def _int32_from_wire(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value > _INT32_MAX else value


def _key(number: int, wire: int) -> bytes:
    return _encode_uvarint((number << 3) | wire)


def _int32_field(number: int, value: int) -> bytes:
    if value == 0:
        return b""
    return _key(number, _WIRE_VARINT) + _encode_uvarint(_int32_to_wire(value))


def _bool_field(number: int, value: bool) -> bytes:
    return _key(number, _WIRE_VARINT) + b"\x01" if value else b""


def _bytes_field(number: int, value: bytes, always: bool = False) -> bytes:
    if not value and not always:
        return b""
    return _key(number, _WIRE_BYTES) + _encode_uvarint(len(value)) + bytes(value)


def _fields(data: bytes) -> Iterator[tuple[int, int, Union[int, bytes]]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_uvarint(data, pos)
        number, wire = key >> 3, key & 0x7
        if number == 0:
            raise ValueError("illegal protobuf field number 0")
        if wire == _WIRE_VARINT:
            value, pos = _read_uvarint(data, pos)
        elif wire == _WIRE_BYTES:
            length, pos = _read_uvarint(data, pos)
            if pos + length > len(data):
                raise ValueError("unexpected end of protobuf data")
            value = data[pos : pos + length]
            pos += length
        elif wire in (_WIRE_FIXED64, _WIRE_FIXED32):
            size = 8 if wire == _WIRE_FIXED64 else 4
            if pos + size > len(data):
                raise ValueError("unexpected end of protobuf data")
            value = data[pos : pos + size]
            pos += size
        else:
            raise ValueError(f"unsupported protobuf wire type {wire}")
        yield number, wire, value


def _check_wire(wire: int, expected: int, name: str) -> None:
    if wire != expected:
        raise ValueError(f"wrong wire type {wire} for field {name}")


@dataclass
class ProtoRequest:
    """Wire form of a request."""

    id: int = 0
    selector: bytes = b""
    priority: int = 0
    cancel: bool = False

    def _encode(self) -> bytes:
        return (
            _int32_field(1, self.id)
            + _bytes_field(2, self.selector)
            + _int32_field(3, self.priority)
            + _bool_field(4, self.cancel)
        )

    @classmethod
    def _decode(cls, data: bytes) -> ProtoRequest:
        request = cls()
        for number, wire, value in _fields(data):
            if number == 1:
                _check_wire(wire, _WIRE_VARINT, "id")
                request.id = _int32_from_wire(value)
            elif number == 2:
                _check_wire(wire, _WIRE_BYTES, "selector")
                request.selector = bytes(value)
            elif number == 3:
                _check_wire(wire, _WIRE_VARINT, "priority")
                request.priority = _int32_from_wire(value)
            elif number == 4:
                _check_wire(wire, _WIRE_VARINT, "cancel")
                request.cancel = value != 0
        return request


@dataclass
class ProtoResponse:
    """Wire form of a response."""

    id: int = 0
    status: int = 0
    extra: bytes = b""

    def _encode(self) -> bytes:
        return _int32_field(1, self.id) + _int32_field(2, self.status) + _bytes_field(3, self.extra)

    @classmethod
    def _decode(cls, data: bytes) -> ProtoResponse:
        response = cls()
        for number, wire, value in _fields(data):
            if number == 1:
                _check_wire(wire, _WIRE_VARINT, "id")
                response.id = _int32_from_wire(value)
            elif number == 2:
                _check_wire(wire, _WIRE_VARINT, "status")
                response.status = _int32_from_wire(value)
            elif number == 3:
                _check_wire(wire, _WIRE_BYTES, "extra")
                response.extra = bytes(value)
        return response


@dataclass
class ProtoBlock:
    """Wire form of a block: CID prefix and raw data."""

    prefix: bytes = b""
    data: bytes = b""

    def _encode(self) -> bytes:
        return _bytes_field(1, self.prefix) + _bytes_field(2, self.data)

    @classmethod
    def _decode(cls, data: bytes) -> ProtoBlock:
        block = cls()
        for number, wire, value in _fields(data):
            if number == 1:
                _check_wire(wire, _WIRE_BYTES, "prefix")
                block.prefix = bytes(value)
            elif number == 2:
                _check_wire(wire, _WIRE_BYTES, "data")
                block.data = bytes(value)
        return block


@dataclass
class ProtoMessage:
    """Wire form of a whole GraphSync message."""

    complete_request_list: bool = False
    requests: list[ProtoRequest] = field(default_factory=list)
    responses: list[ProtoResponse] = field(default_factory=list)
    data: list[ProtoBlock] = field(default_factory=list)

    def serialize(self) -> bytes:
        """Encode the message as protobuf bytes."""
        parts = [_bool_field(1, self.complete_request_list)]
        parts.extend(_bytes_field(2, request._encode(), always=True) for request in self.requests)
        parts.extend(_bytes_field(3, response._encode(), always=True) for response in self.responses)
        parts.extend(_bytes_field(4, block._encode(), always=True) for block in self.data)
        return b"".join(parts)


def parse_proto(data: bytes) -> ProtoMessage:
    """Decode protobuf bytes into a ProtoMessage."""
    message = ProtoMessage()
    for number, wire, value in _fields(data):
        if number == 1:
            _check_wire(wire, _WIRE_VARINT, "completeRequestList")
            message.complete_request_list = value != 0
        elif number == 2:
            _check_wire(wire, _WIRE_BYTES, "requests")
            message.requests.append(ProtoRequest._decode(value))
        elif number == 3:
            _check_wire(wire, _WIRE_BYTES, "responses")
            message.responses.append(ProtoResponse._decode(value))
        elif number == 4:
            _check_wire(wire, _WIRE_BYTES, "data")
            message.data.append(ProtoBlock._decode(value))
    return message


class GraphSyncMessage:
    """A set of requests, responses and blocks sent to a peer in one go.

    Requests and responses are keyed by request id and blocks by CID, so
    adding a second entry with the same key replaces the first.
    """

    def __init__(self) -> None:
        self._requests: dict[int, GraphSyncRequest] = {}
        self._responses: dict[int, GraphSyncResponse] = {}
        self._blocks: dict[Cid, Block] = {}

    def __repr__(self) -> str:
        return (
            f"GraphSyncMessage(requests={len(self._requests)}, "
            f"responses={len(self._responses)}, blocks={len(self._blocks)})"
        )

    def requests(self) -> list[GraphSyncRequest]:
        return list(self._requests.values())

    def responses(self) -> list[GraphSyncResponse]:
        return list(self._responses.values())

    def blocks(self) -> list[Block]:
        return list(self._blocks.values())

    def add_request(self, request: GraphSyncRequest) -> None:
        self._requests[request.id] = request

    def add_response(self, response: GraphSyncResponse) -> None:
        self._responses[response.request_id] = response

    def add_block(self, block: Block) -> None:
        self._blocks[block.cid] = block

    def is_empty(self) -> bool:
        return not (self._blocks or self._requests or self._responses)

    def to_proto(self) -> ProtoMessage:
        """Convert to the wire representation."""
        return ProtoMessage(
            requests=[
                ProtoRequest(r.id, r.selector, r.priority, r.is_cancel)
                for r in self._requests.values()
            ],
            responses=[
                ProtoResponse(r.request_id, int(r.status), r.extra)
                for r in self._responses.values()
            ],
            data=[
                ProtoBlock(b.cid.prefix().to_bytes(), b.data) for b in self._blocks.values()
            ],
        )

    def to_net(self, stream: BinaryIO) -> None:
        """Write the message to a stream, prefixed with its varint length."""
        payload = self.to_proto().serialize()
        stream.write(_encode_uvarint(len(payload)) + payload)

    def loggable(self) -> dict[str, list[str]]:
        """Summary of the request and response ids, for logging."""
        return {
            "requests": [str(r.id) for r in self._requests.values()],
            "responses": [str(r.request_id) for r in self._responses.values()],
        }


def message_from_proto(proto: ProtoMessage) -> GraphSyncMessage:
    """Build a message from its wire representation, verifying every block."""
    message = GraphSyncMessage()
    for request in proto.requests:
        message.add_request(
            GraphSyncRequest(request.id, request.selector, request.priority, request.cancel)
        )
    for response in proto.responses:
        message.add_response(new_response(response.id, response.status, response.extra))
    for block in proto.data:
        cid = prefix_from_bytes(block.prefix).sum(block.data)
        message.add_block(new_block_with_cid(block.data, cid))
    return message


def _read_length(stream: BinaryIO) -> int:
    result = 0
    shift = 0
    first = True
    while True:
        byte = stream.read(1)
        if not byte:
            if first:
                raise EOFError("end of stream")
            raise ValueError("unexpected end of stream in length prefix")
        first = False
        value = byte[0]
        result |= (value & 0x7F) << shift
        if not value & 0x80:
            return result
        shift += 7
        if shift >= 70:
            raise ValueError("length prefix overflows 64 bits")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            raise ValueError("unexpected end of stream in message body")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def from_net(stream: BinaryIO) -> GraphSyncMessage:
    """Read one length-delimited message from a stream.

    Raises EOFError if the stream ends before any byte of a message.
    """
    length = _read_length(stream)
    if length > MESSAGE_SIZE_MAX:
        raise ValueError(f"message of {length} bytes exceeds maximum of {MESSAGE_SIZE_MAX}")
    return message_from_proto(parse_proto(_read_exact(stream, length)))