"""
Confirmation Detection - Classify reasoning-backend replies for the trust check

Two pluggable classifiers used by the turn router:

- ConfirmationClaimDetector: does a reply assert that an action already
  happened ("your appointment is booked")? Questions and future-tense
  offers without a past-tense action word ("I can book that", "would you
  like me to schedule...") are not claims.
- ToolIntentDetector: does a user message ask for something only a tool can
  answer (appointments, availability, prices, hours)?

The regex implementations work sentence by sentence, so an offer in one
sentence cannot mask a completion claim in another.
"""

import re
from typing import Iterable, List, Optional, Pattern, Protocol, Sequence, runtime_checkable

_ACTION_WORDS = r"(?:booked|scheduled|confirmed|reserved|created|rescheduled|cancell?ed)"

DEFAULT_OFFER_PATTERNS: Sequence[str] = (
    # First-person offers and intentions
    r"\b(?:i|we)\s*(?:can|will|'ll|could|would be happy to|'d be happy to|am happy to)\b"
    r"[^.!?]*\b(?:help|assist|book|schedule|reserve|check|look|get that)",
    r"\blet me\b[^.!?]*\b(?:book|schedule|check|look|see|get|confirm|find)",
    r"\bhappy to\b[^.!?]*\b(?:help|assist|book|schedule)",
    r"\b(?:help|assist)\b[^.!?]*\byou\b[^.!?]*\b(?:book|schedule)",
    # Asking permission
    r"\bwould you like\b",
    r"\bshall i\b",
    r"\bdo you want\b",
    r"\bshould i\b",
    # Work in progress
    r"\b(?:checking|looking at|reviewing)\b[^.!?]*\b(?:availability|schedule|times)\b",
)

DEFAULT_CLAIM_PATTERNS: Sequence[str] = (
    rf"\b(?:your|the)\b.*\b(?:appointment|booking|reservation)\b.*\b(?:has been|have been|is now|was|is all)\b.*\b{_ACTION_WORDS}",
    rf"\b(?:successfully|already)\b.*\b{_ACTION_WORDS}",
    r"\bbooking\b.*\b(?:confirmed|successful|completed|is confirmed)\b",
    r"\bappointment\b.*\b(?:confirmed|is scheduled|is booked)\b",
    rf"\b(?:i have|i've|we have|we've)\b.*\b{_ACTION_WORDS}",
    r"\byou(?:'re| are) all set\b",
    # Georgian past tense: was scheduled, was booked, confirmed
    r"ჩაინიშნა",
    r"დაიჯავშნა",
    r"დადასტურდა",
)

DEFAULT_INTENT_PATTERNS: Sequence[str] = (
    r"\bbook|\bschedule|make.*appointment|\breserve|set.*appointment",
    r"view.*appointment|show.*appointment|my.*appointment|check.*appointment",
    r"\bcancel|\breschedule|change.*appointment|modify.*appointment",
    r"\bavailab|free.*time|open.*slot|when.*can",
    r"\bservices?\b|\bprice|\bpricing\b|\bcost\b|how.*much",
    r"\bhours?\b|\bopen\b|\bclose\b|when.*open|business.*hour",
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

# A claim carrying one of these is never excused by an offer in the same sentence.
_PAST_TENSE_ACTION = re.compile(rf"\b{_ACTION_WORDS}\b|ჩაინიშნა|დაიჯავშნა|დადასტურდა", re.IGNORECASE)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text or "") if s and s.strip()]


def _compile(patterns: Iterable[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


@runtime_checkable
class ConfirmationClaimDetector(Protocol):
    """Decides whether a reply asserts a completed action."""

    def claims_completed_action(self, text: str) -> bool:
        ...


@runtime_checkable
class ToolIntentDetector(Protocol):
    """Decides whether a user message needs a tool to be answered."""

    def requires_tool(self, text: str) -> bool:
        ...


class RegexConfirmationClaimDetector:
    """
    Sentence-level regex classifier

    A sentence counts as a claim when it matches a completion pattern and is
    not a question. Offer phrasing only excuses claims without a past-tense
    action word, so "I can confirm it has been booked" is still a claim.

    Example:
        detector = RegexConfirmationClaimDetector()
        detector.claims_completed_action("Your appointment has been booked!")   # True
        detector.claims_completed_action("Would you like me to book it?")       # False
    """

    def __init__(
        self,
        claim_patterns: Optional[Sequence[str]] = None,
        offer_patterns: Optional[Sequence[str]] = None,
    ):
        self._claims = _compile(claim_patterns or DEFAULT_CLAIM_PATTERNS)
        self._offers = _compile(offer_patterns or DEFAULT_OFFER_PATTERNS)

    def claims_completed_action(self, text: str) -> bool:
        return self.claiming_sentence(text) is not None

    def claiming_sentence(self, text: str) -> Optional[str]:
        """The first sentence that makes a completion claim, if any."""
        for sentence in split_sentences(text):
            if sentence.endswith("?"):
                continue
            if not any(p.search(sentence) for p in self._claims):
                continue
            if _PAST_TENSE_ACTION.search(sentence):
                return sentence
            if not any(p.search(sentence) for p in self._offers):
                return sentence
        return None


class RegexToolIntentDetector:
    """Keyword classifier for tool-requiring user intents."""

    def __init__(self, patterns: Optional[Sequence[str]] = None):
        self._patterns = _compile(patterns or DEFAULT_INTENT_PATTERNS)

    def requires_tool(self, text: str) -> bool:
        if not text:
            return False
        return any(p.search(text) for p in self._patterns)
