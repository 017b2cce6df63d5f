"""Content identifiers (CIDs), their prefixes, and blocks of content-addressed data."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass

# Multihash function codes
IDENTITY = 0x00
SHA1 = 0x11
SHA2_256 = 0x12
SHA2_512 = 0x13
SHA3_512 = 0x14
SHA3_384 = 0x15
SHA3_256 = 0x16
SHA3_224 = 0x17

# Multicodec content codes
RAW = 0x55
DAG_PB = 0x70
DAG_CBOR = 0x71

_HASHERS = {
    SHA1: hashlib.sha1,
    SHA2_256: hashlib.sha256,
    SHA2_512: hashlib.sha512,
    SHA3_512: hashlib.sha3_512,
    SHA3_384: hashlib.sha3_384,
    SHA3_256: hashlib.sha3_256,
    SHA3_224: hashlib.sha3_224,
}

_UINT64_MAX = (1 << 64) - 1
_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _encode_uvarint(value: int) -> bytes:
    if value < 0 or value > _UINT64_MAX:
        raise ValueError(f"value {value} does not fit in an unsigned 64-bit varint")
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
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
        if shift >= 70:
            raise ValueError("varint overflows 64 bits")
    if result > _UINT64_MAX:
        raise ValueError("varint overflows 64 bits")
    return result, pos


def _multihash_sum(data: bytes, code: int, length: int) -> bytes:
    if code == IDENTITY:
        if length not in (-1, len(data)):
            raise ValueError("identity hash length must equal the data length")
        digest = bytes(data)
    else:
        hasher = _HASHERS.get(code)
        if hasher is None:
            raise ValueError(f"unknown multihash code {code:#x}")
        digest = hasher(data).digest()
        if length < 0:
            length = len(digest)
        if length > len(digest):
            raise ValueError("requested length is greater than the digest length")
        digest = digest[:length]
    return _encode_uvarint(code) + _encode_uvarint(len(digest)) + digest


def _decode_multihash(multihash: bytes) -> tuple[int, bytes]:
    code, pos = _read_uvarint(multihash, 0)
    length, pos = _read_uvarint(multihash, pos)
    digest = multihash[pos:]
    if len(digest) != length:
        raise ValueError("multihash length does not match its digest")
    return code, digest


def _base58(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    chars = []
    while number:
        number, remainder = divmod(number, 58)
        chars.append(_BASE58_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\0"))
    return "1" * leading_zeros + "".join(reversed(chars))


@dataclass(frozen=True)
class Prefix:
    """The parameters needed to build a CID: version, codec and hash settings."""

    version: int
    codec: int
    mh_type: int
    mh_length: int

    def to_bytes(self) -> bytes:
        """Serialize the prefix as four unsigned varints."""
        return (
            _encode_uvarint(self.version)
            + _encode_uvarint(self.codec)
            + _encode_uvarint(self.mh_type)
            + _encode_uvarint(self.mh_length & _UINT64_MAX)
        )

    def sum(self, data: bytes) -> Cid:
        """Hash data and return the CID this prefix describes for it."""
        multihash = _multihash_sum(data, self.mh_type, self.mh_length)
        if self.version == 0:
            return Cid(0, DAG_PB, multihash)
        if self.version == 1:
            return Cid(1, self.codec, multihash)
        raise ValueError("invalid cid version")


def prefix_from_bytes(data: bytes) -> Prefix:
    """Parse a prefix serialized by Prefix.to_bytes."""
    version, pos = _read_uvarint(data, 0)
    codec, pos = _read_uvarint(data, pos)
    mh_type, pos = _read_uvarint(data, pos)
    mh_length, pos = _read_uvarint(data, pos)
    if mh_length >= 1 << 63:
        mh_length -= 1 << 64
    return Prefix(version, codec, mh_type, mh_length)


@dataclass(frozen=True)
class Cid:
    """A content identifier: version, content codec and multihash."""

    version: int
    codec: int
    multihash: bytes

    def __post_init__(self) -> None:
        if self.version not in (0, 1):
            raise ValueError("invalid cid version")
        code, digest = _decode_multihash(self.multihash)
        if self.version == 0:
            if self.codec != DAG_PB:
                raise ValueError("version 0 cids must use the dag-pb codec")
            if code != SHA2_256 or len(digest) != 32:
                raise ValueError("version 0 cids must use a full sha2-256 hash")

    def prefix(self) -> Prefix:
        """Return the prefix from which this CID can be rebuilt."""
        code, digest = _decode_multihash(self.multihash)
        return Prefix(self.version, self.codec, code, len(digest))

    def to_bytes(self) -> bytes:
        """Binary form of the CID."""
        if self.version == 0:
            return self.multihash
        return _encode_uvarint(self.version) + _encode_uvarint(self.codec) + self.multihash

    def __str__(self) -> str:
        if self.version == 0:
            return _base58(self.multihash)
        encoded = base64.b32encode(self.to_bytes()).decode("ascii")
        return "b" + encoded.lower().rstrip("=")


@dataclass(frozen=True)
class Block:
    """Raw data together with the CID that addresses it."""

    data: bytes
    cid: Cid


def new_block(data: bytes) -> Block:
    """Create a block addressed by a version 0 (sha2-256, dag-pb) CID."""
    multihash = _multihash_sum(data, SHA2_256, -1)
    return Block(bytes(data), Cid(0, DAG_PB, multihash))


def new_block_with_cid(data: bytes, cid: Cid) -> Block:
    """Create a block with the given CID, checking that the data matches it."""
    if cid.prefix().sum(data) != cid:
        raise ValueError("data did not match given hash")
    return Block(bytes(data), cid)