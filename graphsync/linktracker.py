"""Tracking of links traversed while answering requests."""

from __future__ import annotations

from collections import Counter
from typing import Hashable


class LinkTracker:
    """Records link traversals across in-progress requests.

    If any in-progress request has already sent the block for a link, it need
    not be sent again; and links traversed without their block are noted so a
    request can tell at the end whether its response was complete.
    """

    def __init__(self) -> None:
        self._missing_blocks: dict[int, set[Hashable]] = {}
        self._links_with_blocks_by_request: dict[int, list[Hashable]] = {}
        self._traversals_with_blocks: Counter[Hashable] = Counter()

    def block_ref_count(self, link: Hashable) -> int:
        """Number of in-progress traversals of the link that had its block."""
        return self._traversals_with_blocks[link]

    def is_known_missing_link(self, request_id: int, link: Hashable) -> bool:
        """Whether the request recorded the link as missing its block."""
        return link in self._missing_blocks.get(request_id, ())

    def record_link_traversal(self, request_id: int, link: Hashable, has_block: bool) -> None:
        """Record that a request traversed a link, with or without its block."""
        if has_block:
            self._links_with_blocks_by_request.setdefault(request_id, []).append(link)
            self._traversals_with_blocks[link] += 1
        else:
            self._missing_blocks.setdefault(request_id, set()).add(link)

    def finish_request(self, request_id: int) -> bool:
        """Forget the request; return True if every link it traversed had its block."""
        has_all_blocks = self._missing_blocks.pop(request_id, None) is None
        for link in self._links_with_blocks_by_request.pop(request_id, ()):
            self._traversals_with_blocks[link] -= 1
            if self._traversals_with_blocks[link] <= 0:
                del self._traversals_with_blocks[link]
        return has_all_blocks