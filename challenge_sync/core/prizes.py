"""
Prize extraction from issue titles and bid commands from issue comments.

A title such as ``"[$500] Fix the thing"`` carries its prize pool in a leading
bracket block; every ``$<digits>`` that is followed later in the title by a
closing bracket is a prize, the first one being the primary prize.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from ..errors import CommentParseError

_PRIZE_RE = re.compile(r"(\$[0-9]+)(?=.*\])")
_LEADING_TAGS_RE = re.compile(r"^(\s*\[[^\]]*\])+")
_BID_RE = re.compile(r"/bid[ \t]+\$([0-9]+)")
_ACCEPT_BID_RE = re.compile(r"/accept_bid[ \t]+@([^\s]+)[ \t]+\$([0-9]+)")


@dataclass(frozen=True)
class ParsedTitle:
    prizes: List[int]
    title: str


@dataclass(frozen=True)
class ParsedComment:
    """Bid commands found in a comment body."""

    is_bid: bool = False
    bid_amount: Optional[int] = None
    is_accept_bid: bool = False
    assigned_user: Optional[str] = None
    accepted_bid_amount: Optional[int] = None


def parse_prizes(title: str) -> Optional[ParsedTitle]:
    """
    Extract prizes from an issue title.

    Args:
        title: Raw issue title

    Returns:
        The prizes and the title stripped of its leading bracket block, or
        None when the title carries no prize.
    """
    matches = _PRIZE_RE.findall(title or "")
    if not matches:
        return None

    prizes = [int(match[1:]) for match in matches]
    clean_title = _LEADING_TAGS_RE.sub("", title, count=1).strip()
    return ParsedTitle(prizes=prizes, title=clean_title)


def format_prize_title(amount: int, title: str) -> str:
    """Build the tracker title advertising ``amount`` as the prize."""
    return f"[${amount}] {title}"


def parse_comment(body: str) -> ParsedComment:
    """
    Look for ``/bid $N`` and ``/accept_bid @user $N`` commands.

    Raises:
        CommentParseError: A command keyword is present but its arguments are
            malformed.
    """
    body = body or ""
    is_bid = "/bid" in body
    is_accept_bid = "/accept_bid" in body
    # "/accept_bid" does not contain "/bid", the checks are independent

    bid_amount = None
    if is_bid:
        match = _BID_RE.search(body)
        if match is None:
            raise CommentParseError("Bid command must look like '/bid $<amount>'")
        bid_amount = int(match.group(1))

    assigned_user = None
    accepted_bid_amount = None
    if is_accept_bid:
        match = _ACCEPT_BID_RE.search(body)
        if match is None:
            raise CommentParseError(
                "Accept command must look like '/accept_bid @<user> $<amount>'"
            )
        assigned_user = match.group(1)
        accepted_bid_amount = int(match.group(2))

    return ParsedComment(
        is_bid=is_bid,
        bid_amount=bid_amount,
        is_accept_bid=is_accept_bid,
        assigned_user=assigned_user,
        accepted_bid_amount=accepted_bid_amount,
    )
