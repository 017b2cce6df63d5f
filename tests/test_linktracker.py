import random

from graphsync.linktracker import LinkTracker


class _MockLink:
    """A distinct, hashable stand-in for a link."""


def _two_request_ids():
    first, second = random.sample(range(2**31), 2)
    return first, second


def test_block_ref_count():
    tracker = LinkTracker()
    link1 = _MockLink()
    link2 = _MockLink()
    assert tracker.block_ref_count(link1) == 0
    assert tracker.block_ref_count(link2) == 0
    request_id1, request_id2 = _two_request_ids()

    tracker.record_link_traversal(request_id1, link1, True)
    tracker.record_link_traversal(request_id1, link2, True)
    tracker.record_link_traversal(request_id2, link1, True)

    assert tracker.block_ref_count(link1) != 0
    assert tracker.block_ref_count(link2) != 0

    tracker.finish_request(request_id1)
    assert tracker.block_ref_count(link1) != 0
    assert tracker.block_ref_count(link2) == 0


def test_ref_count_values():
    tracker = LinkTracker()
    link = _MockLink()
    request_id1, request_id2 = _two_request_ids()
    tracker.record_link_traversal(request_id1, link, True)
    tracker.record_link_traversal(request_id2, link, True)
    assert tracker.block_ref_count(link) == 2
    tracker.finish_request(request_id2)
    assert tracker.block_ref_count(link) == 1
    tracker.finish_request(request_id1)
    assert tracker.block_ref_count(link) == 0


def test_has_all_blocks():
    tracker = LinkTracker()
    link1 = _MockLink()
    link2 = _MockLink()
    request_id1, request_id2 = _two_request_ids()

    tracker.record_link_traversal(request_id1, link1, True)
    tracker.record_link_traversal(request_id1, link2, False)
    tracker.record_link_traversal(request_id2, link1, True)

    assert tracker.finish_request(request_id1) is False
    assert tracker.finish_request(request_id2) is True


def test_block_becomes_available():
    tracker = LinkTracker()
    link1 = _MockLink()
    assert tracker.block_ref_count(link1) == 0
    request_id1, request_id2 = _two_request_ids()

    tracker.record_link_traversal(request_id1, link1, False)
    tracker.record_link_traversal(request_id2, link1, False)
    assert tracker.block_ref_count(link1) == 0

    tracker.record_link_traversal(request_id1, link1, True)
    assert tracker.block_ref_count(link1) != 0

    assert tracker.finish_request(request_id1) is False
    assert tracker.block_ref_count(link1) == 0


def test_missing_link():
    tracker = LinkTracker()
    link1 = _MockLink()
    link2 = _MockLink()
    request_id1, request_id2 = _two_request_ids()

    tracker.record_link_traversal(request_id1, link1, True)
    tracker.record_link_traversal(request_id1, link2, False)
    tracker.record_link_traversal(request_id2, link1, True)

    assert tracker.is_known_missing_link(request_id1, link1) is False
    assert tracker.is_known_missing_link(request_id1, link2) is True
    assert tracker.is_known_missing_link(request_id2, link1) is False
    assert tracker.is_known_missing_link(request_id2, link2) is False


def test_finish_forgets_missing_links():
    tracker = LinkTracker()
    link = _MockLink()
    request_id, _ = _two_request_ids()
    tracker.record_link_traversal(request_id, link, False)
    assert tracker.finish_request(request_id) is False
    assert tracker.is_known_missing_link(request_id, link) is False
    assert tracker.finish_request(request_id) is True