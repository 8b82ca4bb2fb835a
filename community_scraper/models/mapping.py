"""Mapping functions to convert listing and comment-thread JSON to our records."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Union

from community_scraper.models.records import CommentRecord, PostRecord

logger = logging.getLogger(__name__)

Payload = Union[str, bytes, Dict[str, Any], List[Any]]


class ExtractionResult(NamedTuple):
    """Records extracted from one page plus the number of items skipped as malformed."""

    records: List[Any]
    skipped: int


def _load(body: Payload, context: str) -> Optional[Any]:
    if isinstance(body, (dict, list)):
        return body
    try:
        return json.loads(body)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse {context} payload as JSON: {e}")
        return None


def _timestamp(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(float(value or 0), tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"timestamp out of range: {value!r}") from e


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except OverflowError as e:
        raise ValueError(f"number out of range: {value!r}") from e


def listing_child_to_post(child: Dict[str, Any], source: str, hot_upvote_threshold: int = 100) -> PostRecord:
    """
    Convert one listing child (``{"kind": "t3", "data": {...}}``) to a PostRecord.

    Args:
        child: Listing child object
        source: Community the listing was fetched from
        hot_upvote_threshold: Upvotes above which the post is flagged hot

    Returns:
        PostRecord without analysis fields filled in

    Raises:
        KeyError, TypeError, ValueError: If the item is malformed
    """
    data = child["data"]
    post_id = data["id"]
    if not post_id or not isinstance(post_id, str):
        raise ValueError("missing post id")

    upvotes = _int(data.get("ups"))
    return PostRecord(
        post_id=post_id,
        source=source,
        title=data.get("title") or "",
        body_text=data.get("selftext") or "",
        author=data.get("author") or "deleted",
        upvotes=upvotes,
        downvotes=_int(data.get("downs")),
        score=_int(data.get("score")),
        comment_count=_int(data.get("num_comments")),
        external_url=data.get("url") or "",
        permalink=data.get("permalink") or "",
        created_at=_timestamp(data.get("created_utc")),
        is_hot=upvotes > hot_upvote_threshold,
    )


def parse_listing(body: Payload, source: str, hot_upvote_threshold: int = 100) -> ExtractionResult:
    """
    Parse a listing page into post records.

    A payload that is not JSON or lacks ``data.children`` yields an empty result.
    Each malformed child is skipped with a warning; the rest are kept in
    listing order.

    Args:
        body: Raw response body or already decoded JSON
        source: Community the listing was fetched from
        hot_upvote_threshold: Upvotes above which a post is flagged hot

    Returns:
        ExtractionResult with PostRecords and the skip count
    """
    payload = _load(body, f"listing for {source}")
    if payload is None:
        return ExtractionResult([], 0)

    try:
        children = payload["data"]["children"]
    except (KeyError, TypeError):
        logger.warning(f"Listing payload for {source} has no data.children")
        return ExtractionResult([], 0)
    if not isinstance(children, list):
        logger.warning(f"Listing payload for {source} has no data.children")
        return ExtractionResult([], 0)

    records: List[PostRecord] = []
    skipped = 0
    for index, child in enumerate(children):
        try:
            records.append(listing_child_to_post(child, source, hot_upvote_threshold))
        except (KeyError, TypeError, ValueError) as e:
            skipped += 1
            logger.warning(f"Skipping malformed item {index} in {source} listing: {e!r}")

    return ExtractionResult(records, skipped)


def _parent_id(raw: Any) -> Optional[str]:
    # t3_ parents are the post itself, t1_ parents are other comments
    if not raw or not isinstance(raw, str) or raw.startswith("t3_"):
        return None
    if raw.startswith("t1_"):
        return raw[3:]
    return raw


def comment_data_to_record(data: Dict[str, Any], post_id: str, depth: int = 0) -> CommentRecord:
    """
    Convert one comment object to a CommentRecord.

    Raises:
        KeyError, TypeError, ValueError: If the comment is malformed
    """
    comment_id = data["id"]
    body = data["body"]
    if not comment_id or not isinstance(body, str):
        raise ValueError("missing comment id or body")

    return CommentRecord(
        comment_id=comment_id,
        post_id=post_id,
        parent_id=_parent_id(data.get("parent_id")),
        author=data.get("author") or "deleted",
        body_text=body,
        upvotes=_int(data.get("ups")),
        downvotes=_int(data.get("downs")),
        score=_int(data.get("score")),
        created_at=_timestamp(data.get("created_utc")),
        depth=_int(data.get("depth", depth)),
    )


def parse_comments(body: Payload, post_id: str, max_comments: int = 50) -> ExtractionResult:
    """
    Parse a comment-thread page into comment records.

    The thread payload is a two-element array; comments live in
    ``[1].data.children`` with nested replies. Replies are flattened
    depth-first so parents always precede their children. ``more`` stubs
    are ignored.

    Args:
        body: Raw response body or already decoded JSON
        post_id: Id of the owning post
        max_comments: Maximum number of comments to return

    Returns:
        ExtractionResult with CommentRecords and the skip count
    """
    payload = _load(body, f"comments for {post_id}")
    if payload is None:
        return ExtractionResult([], 0)

    try:
        children = payload[1]["data"]["children"]
    except (IndexError, KeyError, TypeError):
        logger.warning(f"Comment payload for post {post_id} has no comment listing")
        return ExtractionResult([], 0)

    records: List[CommentRecord] = []
    skipped = 0

    def walk(nodes: Any, depth: int) -> None:
        nonlocal skipped
        if not isinstance(nodes, list):
            return
        for node in nodes:
            if len(records) >= max_comments:
                return
            if isinstance(node, dict) and node.get("kind") == "more":
                continue
            try:
                data = node["data"]
                records.append(comment_data_to_record(data, post_id, depth))
            except (KeyError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning(f"Skipping malformed comment in post {post_id}: {e!r}")
                continue

            # "replies" is an empty string when a comment has none
            replies = data.get("replies")
            listing = replies.get("data") if isinstance(replies, dict) else None
            if isinstance(listing, dict):
                walk(listing.get("children"), depth + 1)

    walk(children, 0)
    return ExtractionResult(records, skipped)
