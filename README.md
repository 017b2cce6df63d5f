# graphsync

Building blocks for a GraphSync protocol peer. Peers use GraphSync to ask each
other for parts of a content-addressed graph and to send the matching blocks
back. This package provides the messages and their wire format, content
identifiers and blocks, DAG-CBOR encoding of IPLD nodes, response metadata,
per-peer outgoing queues and the bookkeeping a responder needs.

## Modules

- `graphsync.blocks`: content identifiers (`Cid`, `Prefix`,
  `prefix_from_bytes`) and data blocks (`Block`, `new_block`,
  `new_block_with_cid`). `new_block` addresses data with a version 0
  (sha2-256, dag-pb) CID; `new_block_with_cid` raises `ValueError` if the data
  does not hash to the given CID.
- `graphsync.message`: requests and responses (`GraphSyncRequest`,
  `GraphSyncResponse`, `new_request`, `cancel_request`, `new_response`), the
  status codes in `ResponseStatusCode` with `is_terminal_success_code`,
  `is_terminal_failure_code` and `is_terminal_response_code`, and
  `GraphSyncMessage`. A message keeps one request and one response per request
  id and one block per CID; adding another with the same key replaces the
  first. `GraphSyncMessage.to_net` writes the message as varint-length-prefixed
  protobuf and `from_net` reads one back, raising `EOFError` on a stream that
  has ended and `ValueError` on malformed data or a message over
  `MESSAGE_SIZE_MAX` bytes. `to_proto`, `ProtoMessage.serialize`,
  `parse_proto` and `message_from_proto` give access to the protobuf layer.
- `graphsync.linktracker`: `LinkTracker` records which links each request has
  traversed and whether the block was present, so a responder can avoid sending
  the same block twice and can tell whether a response was complete.
- `graphsync.ipldbridge`: `CborIPLDBridge` encodes and decodes IPLD nodes as
  canonical DAG-CBOR. Nodes are plain Python values (None, bool, int, float,
  str, bytes, lists, dicts with string keys) and `Link` objects wrapping a
  `Cid`. Invalid nodes or data raise `IPLDError`.
- `graphsync.metadata`: response metadata, a list of `Item(link,
  block_present)`, with `encode_metadata` and `decode_metadata`.
- `graphsync.network`: the interfaces `GraphSyncNetwork`, `MessageSender` and
  `Receiver`, the `Host` and `Stream` protocols, and
  `new_from_libp2p_host`, which builds a `Libp2pGraphSyncNetwork` on a host you
  supply. Incoming streams on `PROTOCOL_GRAPHSYNC` are read message by message
  and handed to the registered receiver.
- `graphsync.messagequeue`: `MessageQueue`, a per-peer outgoing queue running on
  a background thread. It merges pending requests, responses and blocks into
  one message and retries a failed send (up to `max_retries` times, waiting
  `retry_delay` seconds between tries). `shutdown` closes the sender cleanly;
  `cancel` resets it.
- `graphsync.peermanager`: `PeerManager` keeps a reference-counted process for
  each peer, created and started on demand and shut down when the last
  reference is dropped. `PeerMessageManager` routes requests and responses to
  each peer's `PeerQueue`.

## Installation

```
pip install .
```

## Examples

Writing a message to a stream and reading it back:

```python
import io

from graphsync.blocks import new_block
from graphsync.message import (
    GraphSyncMessage,
    ResponseStatusCode,
    from_net,
    new_request,
    new_response,
)

message = GraphSyncMessage()
message.add_request(new_request(1, b"selector bytes", 10))
message.add_response(new_response(1, ResponseStatusCode.REQUEST_ACKNOWLEDGED, b""))
message.add_block(new_block(b"hello"))

buffer = io.BytesIO()
message.to_net(buffer)
buffer.seek(0)
received = from_net(buffer)
assert received.requests()[0].selector == b"selector bytes"
```

Tracking links while answering requests:

```python
from graphsync.linktracker import LinkTracker

tracker = LinkTracker()
tracker.record_link_traversal(1, "link-a", True)
tracker.record_link_traversal(1, "link-b", False)
assert tracker.block_ref_count("link-a") == 1
assert tracker.finish_request(1) is False  # one block was missing
```

Encoding response metadata:

```python
from graphsync.blocks import new_block
from graphsync.ipldbridge import CborIPLDBridge, Link
from graphsync.metadata import Item, decode_metadata, encode_metadata

bridge = CborIPLDBridge()
items = [Item(Link(new_block(b"data").cid), True)]
assert decode_metadata(encode_metadata(items, bridge), bridge) == items
```

## What this package does not do

- It has no complete GraphSync exchange: nothing here issues a request and
  collects the responses, or answers an incoming request by walking a graph.
- `CborIPLDBridge` encodes and decodes nodes only; it does not validate or run
  selectors or traverse links.
- There is no block store; storing and loading blocks is left to the caller.
- There is no peer-to-peer transport. `Libp2pGraphSyncNetwork` works over any
  object that meets the `Host` and `Stream` protocols, which you provide.
- There is no command-line program.

## Running the tests

```
pip install .[test]
pytest
```