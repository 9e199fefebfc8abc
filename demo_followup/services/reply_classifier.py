"""
Reply Classifier
Maps a free-text reply to an intent with a fixed pattern table.

Exact matches against short replies are tried first, then keyword matches
against longer text, in table order. The first hit wins.
"""
import re
from typing import NamedTuple

from demo_followup.models.enums import ReplyIntent


class ReplyPattern(NamedTuple):
    intent: ReplyIntent
    regex: re.Pattern


def _exact(intent: ReplyIntent, *phrases: str) -> ReplyPattern:
    alternatives = "|".join(re.escape(phrase) for phrase in phrases)
    return ReplyPattern(intent, re.compile(rf"^(?:{alternatives})[.!]*$"))


def _keywords(intent: ReplyIntent, *patterns: str) -> ReplyPattern:
    return ReplyPattern(intent, re.compile(rf"\b(?:{'|'.join(patterns)})\b"))


EXACT_PATTERNS: tuple[ReplyPattern, ...] = (
    _exact(
        ReplyIntent.YES,
        "yes", "yep", "yeah", "yup", "y", "confirm", "confirmed", "im in", "i'm in",
        "count me in", "see you", "sounds good", "perfect", "great", "ok", "okay", "good",
        "👍", "✓", "✔",
    ),
    _exact(ReplyIntent.CANCEL, "stop", "unsubscribe", "cancel", "opt out", "optout", "b"),
    _exact(
        ReplyIntent.RESCHEDULE,
        "r", "a", "reschedule", "cant", "can't", "cannot", "wont", "won't", "unable", "no", "nope",
        "n", "change", "move", "different time", "another time",
    ),
    _exact(ReplyIntent.OPTION_1, "1"),
    _exact(ReplyIntent.OPTION_2, "2"),
    _exact(ReplyIntent.SOONER, "sooner", "earlier", "asap", "now", "today", "tomorrow"),
)

KEYWORD_PATTERNS: tuple[ReplyPattern, ...] = (
    _keywords(ReplyIntent.YES, "yes", "confirm(?:ed)?", "i'?ll be there", "i'?m coming", "see you then"),
    _keywords(ReplyIntent.CANCEL, "unsubscribe", "stop (?:texting|messaging|emailing)", "remove me", "not interested"),
    _keywords(
        ReplyIntent.RESCHEDULE,
        "reschedule", "can'?t make", "won'?t work", "need to cancel", "change the time",
        "different time", "another time", "move it",
    ),
    _keywords(ReplyIntent.SOONER, "sooner", "earlier", "any chance today"),
    _keywords(ReplyIntent.OPTION_1, "option 1", "first one", "morning"),
    _keywords(ReplyIntent.OPTION_2, "option 2", "second one", "afternoon"),
)


def normalize_reply(body: str) -> str:
    """Lower-case, trim and fold typographic apostrophes"""
    return body.strip().lower().replace("’", "'").replace("‘", "'")


def classify_reply(body: str) -> ReplyIntent:
    """
    Classify a reply body.

    >>> classify_reply("  YES ")
    <ReplyIntent.YES: 'YES'>
    >>> classify_reply("Yep, see you then!")
    <ReplyIntent.YES: 'YES'>
    >>> classify_reply("what is this about?")
    <ReplyIntent.UNKNOWN: 'UNKNOWN'>
    """
    text = normalize_reply(body)
    if not text:
        return ReplyIntent.UNKNOWN

    for pattern in EXACT_PATTERNS:
        if pattern.regex.match(text):
            return pattern.intent

    for pattern in KEYWORD_PATTERNS:
        if pattern.regex.search(text):
            return pattern.intent

    return ReplyIntent.UNKNOWN
