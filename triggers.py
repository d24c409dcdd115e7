# triggers.py
"""
Recognises admin trigger commands and confirmer output.

Trigger grammar (case-insensitive, fixed order, trailing text ignored):

    $<verb> <@target> <amount>

    give verbs  -> LOAN   ($givescrap, $givekakera)
    take verbs  -> REPAY  ($kakeraremove, $takekakera)

`amount` is a positive integer. Anything else is not a trigger.
"""

from __future__ import annotations
import enum
import re
from dataclasses import dataclass
from typing import Optional
import logging

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.triggers")

SIGIL = "$"
LOAN_VERBS = frozenset({"givescrap", "givekakera"})
REPAY_VERBS = frozenset({"kakeraremove", "takekakera"})
EXEMPT_MARKER = "#exempt"

CHECKMARKS = frozenset({"✅", "white_check_mark"})
COMPLETION_KEYWORD = "removed"

_NUMBER_RE = re.compile(r"\d[\d,]*")


class Kind(enum.Enum):
    LOAN = "loan"
    REPAY = "repay"


@dataclass(frozen=True, slots=True)
class Trigger:
    kind: Kind
    target_id: int
    amount: int


def parse_mention(token: str) -> Optional[int]:
    """`<@123>` or `<@!123>` -> 123."""
    if not (token.startswith("<@") and token.endswith(">")):
        return None
    body = token[2:-1]
    if body.startswith("!"):
        body = body[1:]
    if not body.isascii() or not body.isdigit():
        return None
    return int(body)


def parse_amount(token: str) -> Optional[int]:
    if not token.isascii() or not token.isdigit():
        return None
    value = int(token)
    return value if value > 0 else None


def parse_trigger(content: str) -> Optional[Trigger]:
    """Return the Trigger in `content`, or None when it does not follow the grammar."""
    if not content or not content.startswith(SIGIL):
        return None
    tokens = content.split()
    if len(tokens) < 3:
        return None

    verb = tokens[0][len(SIGIL):].lower()
    if verb in LOAN_VERBS:
        kind = Kind.LOAN
    elif verb in REPAY_VERBS:
        kind = Kind.REPAY
    else:
        return None

    target_id = parse_mention(tokens[1])
    amount = parse_amount(tokens[2])
    if target_id is None or amount is None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"parse:malformed verb='{verb}' target='{tokens[1]}' amount='{tokens[2]}'")
        return None
    return Trigger(kind=kind, target_id=target_id, amount=amount)


def is_exempt(content: str) -> bool:
    return EXEMPT_MARKER in (content or "").lower()


def is_checkmark(emoji_name: Optional[str]) -> bool:
    return emoji_name in CHECKMARKS


def confirms_amount(content: str, amount: int) -> bool:
    """
    True when `content` carries the completion keyword and a number equal to
    `amount`. Numbers are compared whole (thousands separators allowed), so
    1000 does not match 10000.
    """
    text = (content or "").lower()
    if COMPLETION_KEYWORD not in text:
        return False
    for token in _NUMBER_RE.findall(text):
        if int(token.replace(",", "")) == amount:
            return True
    return False
