"""Tests for listing and comment-thread extraction."""

import json
import logging
from datetime import timezone

from community_scraper.models.mapping import (
    listing_child_to_post,
    parse_comments,
    parse_listing,
)
from fakes import make_comment, make_listing, make_post_data, make_thread


class TestParseListing:
    """Test cases for parse_listing."""

    def test_maps_fields(self):
        body = make_listing(make_post_data(
            "abc", title="Hello", selftext="World", ups=150, downs=3, score=147,
            num_comments=12, created_utc=1700000000, author=None,
        ))

        result = parse_listing(body, "ChatGPT")

        assert result.skipped == 0
        post = result.records[0]
        assert post.post_id == "abc"
        assert post.source == "ChatGPT"
        assert (post.title, post.body_text) == ("Hello", "World")
        assert (post.upvotes, post.downvotes, post.score, post.comment_count) == (150, 3, 147, 12)
        assert post.author == "deleted"
        assert post.created_at.tzinfo == timezone.utc
        assert post.created_at.timestamp() == 1700000000
        assert post.is_hot is True

    def test_hot_threshold(self):
        child = {"kind": "t3", "data": make_post_data("p", ups=100)}
        assert listing_child_to_post(child, "s").is_hot is False
        assert listing_child_to_post(child, "s", hot_upvote_threshold=50).is_hot is True

    def test_malformed_item_is_skipped_with_one_log_line(self, caplog):
        """Three good items and one malformed one yield three posts and exactly one skip."""
        body = make_listing(
            make_post_data("a"),
            make_post_data("b"),
            {"kind": "t3", "data": {"title": "no id"}},
            make_post_data("c"),
        )

        with caplog.at_level(logging.WARNING, logger="community_scraper.models.mapping"):
            result = parse_listing(body, "alpha")

        assert [p.post_id for p in result.records] == ["a", "b", "c"]
        assert result.skipped == 1
        skip_logs = [r for r in caplog.records if "Skipping malformed item" in r.getMessage()]
        assert len(skip_logs) == 1
        assert "alpha" in skip_logs[0].getMessage()

    def test_out_of_range_numbers_skip_only_that_item(self):
        body = make_listing(
            make_post_data("a1"),
            make_post_data("far-future", created_utc=1e20),
            make_post_data("infinite", score=float("inf")),
            make_post_data("a3"),
        )

        result = parse_listing(body, "alpha")

        assert [p.post_id for p in result.records] == ["a1", "a3"]
        assert result.skipped == 2

    def test_invalid_payloads_yield_empty_results(self):
        for body in ("<html>blocked</html>", "", json.dumps({"data": {}}), json.dumps([1, 2]), json.dumps({"data": {"children": "x"}})):
            result = parse_listing(body, "alpha")
            assert result.records == []
            assert result.skipped == 0

    def test_accepts_decoded_json(self):
        payload = json.loads(make_listing(make_post_data("a")))
        assert len(parse_listing(payload, "alpha").records) == 1


class TestParseComments:
    """Test cases for parse_comments."""

    def test_flattens_replies_depth_first(self):
        thread = make_thread(
            make_comment("c1", "top", replies=[
                make_comment("c2", "reply", parent="t1_c1", replies=[
                    make_comment("c3", "nested", parent="t1_c2"),
                ]),
            ]),
            make_comment("c4", "second top"),
        )

        result = parse_comments(thread, "p1")

        assert [c.comment_id for c in result.records] == ["c1", "c2", "c3", "c4"]
        assert [c.parent_id for c in result.records] == [None, "c1", "c2", None]
        assert [c.depth for c in result.records] == [0, 1, 2, 0]
        assert all(c.post_id == "p1" for c in result.records)

    def test_more_stubs_are_ignored(self):
        thread = make_thread(make_comment("c1"), {"kind": "more", "data": {"count": 40, "children": ["x", "y"]}})
        result = parse_comments(thread, "p1")
        assert [c.comment_id for c in result.records] == ["c1"]
        assert result.skipped == 0

    def test_max_comments(self):
        thread = make_thread(*(make_comment(f"c{i}") for i in range(10)))
        assert len(parse_comments(thread, "p1", max_comments=3).records) == 3

    def test_malformed_comment_is_skipped(self):
        thread = make_thread(make_comment("c1"), {"kind": "t1", "data": {"id": "c2"}}, make_comment("c3"))
        result = parse_comments(thread, "p1")
        assert [c.comment_id for c in result.records] == ["c1", "c3"]
        assert result.skipped == 1

    def test_out_of_range_comment_is_skipped(self):
        thread = make_thread(make_comment("c1", created_utc=1e20), make_comment("c2", ups=float("-inf")), make_comment("c3"))
        result = parse_comments(thread, "p1")
        assert [c.comment_id for c in result.records] == ["c3"]
        assert result.skipped == 2

    def test_unexpected_replies_shape_keeps_the_comment(self):
        broken = make_comment("c1")
        broken["data"]["replies"] = {"kind": "Listing", "data": "oops"}
        odd = make_comment("c2")
        odd["data"]["replies"] = {"kind": "Listing", "data": {"children": "x"}}

        result = parse_comments(make_thread(broken, odd, make_comment("c3")), "p1")

        assert [c.comment_id for c in result.records] == ["c1", "c2", "c3"]
        assert result.skipped == 0

    def test_invalid_payloads_yield_empty_results(self):
        for body in ("not json", json.dumps({"data": {}}), json.dumps([{}])):
            result = parse_comments(body, "p1")
            assert result.records == []
