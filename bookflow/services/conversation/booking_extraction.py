# ============================================================================
# bookflow/services/conversation/booking_extraction.py
# ============================================================================
"""
Booking confirmation detection for assistant chat messages.

A confirmation summary is the assistant message that lists the booking with one
marker glyph per field, for example::

    ✅ Cliente: Maria
    👨 Profissional: João
    🔧 Serviço: Corte
    ⏰ 2025-01-10 14:00
    💰 R$50

When the assistant produced the summary through the ``propose_booking`` tool, the
structured arguments are kept in the message metadata and are used instead of the
text. Parsing the text is the fallback for summaries written as free prose.
"""
import logging
import re
import unicodedata
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Dict, Any, Tuple

logger = logging.getLogger(__name__)

# Field -> glyphs that introduce it. The first glyph is the one we render.
FIELD_MARKERS = {
    "client": ("✅",),
    "professional": ("👨", "👩", "🧑", "💇"),
    "service": ("🔧", "✂", "💅"),
    "datetime": ("⏰",),
    "date": ("📅", "🗓"),
    "time": ("🕐", "🕑", "🕒", "⌚"),
    "price": ("💰", "💵"),
}

# datetime, date and time all describe the appointment moment
_MARKER_GROUP = {
    "client": "client",
    "professional": "professional",
    "service": "service",
    "datetime": "moment",
    "date": "moment",
    "time": "moment",
    "price": "price",
}

# Distinct marker groups needed before a message counts as a summary
MIN_SUMMARY_MARKERS = 3

SUMMARY_FIELDS = ("client", "professional", "service", "date", "time", "price")

AFFIRMATIVE_TOKENS = frozenset({"sim", "s", "ok", "okay", "confirmo", "confirmar", "confirmado"})

# Metadata kinds of assistant messages that can carry a summary
SUMMARY_MESSAGE_KINDS = (None, "assistant_reply", "booking_proposal")

_GLYPH_TO_FIELD = {glyph: name for name, glyphs in FIELD_MARKERS.items() for glyph in glyphs}
_MARKER_RE = re.compile("|".join(re.escape(g) for g in sorted(_GLYPH_TO_FIELD, key=len, reverse=True)))

_LABEL_RE = re.compile(
    r"^[*_~\s]*(?:cliente|nome|profissional|servi[cç]o|data\s*(?:[e/]\s*hor[aá](?:rio)?)?|"
    r"hor[aá]rio|hora|valor(?:\s+total)?|pre[cç]o|total)[*_~\s]*[:\-–][*_~\s]*",
    re.IGNORECASE,
)
_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b|\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_TIME_RE = re.compile(r"\b(\d{1,2})\s*[:h]\s*(\d{2})\b")
_AMOUNT_RE = re.compile(r"(?:R\$\s*)?(\d[\d.,]*)")


class ExtractionOutcome(str, Enum):
    NOT_CONFIRMATION = "not_confirmation"
    PARTIAL = "partial"
    COMPLETE = "complete"


@dataclass
class BookingSummary:
    """Booking fields read from a confirmation summary; missing ones stay None"""
    client: Optional[str] = None
    professional: Optional[str] = None
    service: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM
    price: Optional[Decimal] = None

    def missing_fields(self) -> Tuple[str, ...]:
        return tuple(name for name in SUMMARY_FIELDS if getattr(self, name) in (None, ""))

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConfirmationCheck:
    outcome: ExtractionOutcome
    summary: Optional[BookingSummary] = None
    source: Optional[str] = None  # "structured" or "text"

    @property
    def missing_fields(self) -> Tuple[str, ...]:
        return self.summary.missing_fields() if self.summary else ()


def _strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def is_affirmative(text: Optional[str]) -> bool:
    """True when the user reply is a bare confirmation such as "sim" or "ok" """
    if not text:
        return False
    token = _strip_accents(text).strip().lower()
    token = re.sub(r"[\s!.,;:?👍✅]+$", "", token)
    token = re.sub(r"^[\s!.,;:?]+", "", token)
    return token in AFFIRMATIVE_TOKENS


def normalize_date(raw: str) -> Optional[str]:
    match = _DATE_RE.search(raw or "")
    if not match:
        return None
    if match.group(1):
        year, month, day = match.group(1), match.group(2), match.group(3)
    else:
        day, month, year = match.group(4), match.group(5), match.group(6)
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def normalize_time(raw: str) -> Optional[str]:
    match = _TIME_RE.search(raw or "")
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def parse_amount(raw: str) -> Optional[Decimal]:
    """Parse "R$50", "R$ 1.234,56", "50.00" into a two-place Decimal"""
    match = _AMOUNT_RE.search(raw or "")
    if not match:
        return None
    number = match.group(1).rstrip(".,")
    if "," in number and "." in number:
        if number.rfind(",") > number.rfind("."):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif "," in number:
        number = number.replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", number):
        number = number.replace(".", "")
    try:
        return Decimal(number).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def _clean_value(segment: str) -> str:
    # Keep only the marker's own line, drop emoji modifiers (ZWJ sequences, skin tones)
    line = segment.split("\n", 1)[0]
    line = re.sub(r"^[^\w\s]*", "", line)
    line = _LABEL_RE.sub("", line, count=1)
    return line.strip().strip("*_~").strip()


def _marker_segments(text: str):
    matches = list(_MARKER_RE.finditer(text))
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        yield _GLYPH_TO_FIELD[match.group(0)], text[match.end():end]


def count_summary_markers(text: Optional[str]) -> int:
    if not text:
        return 0
    return len({_MARKER_GROUP[field] for field, _ in _marker_segments(text)})


def is_confirmation_summary(text: Optional[str]) -> bool:
    return count_summary_markers(text) >= MIN_SUMMARY_MARKERS


def parse_confirmation_summary(text: Optional[str]) -> Optional[BookingSummary]:
    """
    Parse a summary message into a BookingSummary.

    Returns None when the text does not have the summary shape. A summary with
    unreadable fields comes back with those fields set to None.
    """
    if not is_confirmation_summary(text):
        return None

    summary = BookingSummary()
    for field, segment in _marker_segments(text):
        value = _clean_value(segment)
        if not value:
            continue

        if field in ("client", "professional", "service"):
            if getattr(summary, field) is None:
                setattr(summary, field, value)
        elif field == "datetime":
            summary.date = summary.date or normalize_date(value)
            without_date = _DATE_RE.sub(" ", value)
            summary.time = summary.time or normalize_time(without_date)
        elif field == "date":
            summary.date = summary.date or normalize_date(value)
            if summary.time is None:
                summary.time = normalize_time(_DATE_RE.sub(" ", value))
        elif field == "time":
            summary.time = summary.time or normalize_time(value)
        elif field == "price":
            summary.price = summary.price if summary.price is not None else parse_amount(value)

    return summary


def summary_from_proposal(proposal: Dict[str, Any]) -> BookingSummary:
    """Build a summary from the structured propose_booking arguments"""
    price = proposal.get("price")
    return BookingSummary(
        client=(proposal.get("client_name") or proposal.get("client") or "").strip() or None,
        professional=(proposal.get("professional") or "").strip() or None,
        service=(proposal.get("service") or "").strip() or None,
        date=normalize_date(str(proposal.get("date") or "")),
        time=normalize_time(str(proposal.get("time") or "")),
        price=parse_amount(str(price)) if price not in (None, "") else None,
    )


def detect_confirmation(
        assistant_content: Optional[str],
        user_text: Optional[str],
        assistant_metadata: Optional[Dict[str, Any]] = None,
) -> ConfirmationCheck:
    """
    Decide whether ``user_text`` confirms the booking summarised in the previous
    assistant message.

    NOT_CONFIRMATION is the normal result for ordinary chat. PARTIAL means a summary
    was confirmed but some fields could not be read, so the caller must ask again.
    """
    metadata = assistant_metadata or {}

    if metadata.get("kind") not in SUMMARY_MESSAGE_KINDS:
        return ConfirmationCheck(ExtractionOutcome.NOT_CONFIRMATION)
    if not is_affirmative(user_text):
        return ConfirmationCheck(ExtractionOutcome.NOT_CONFIRMATION)

    proposal = metadata.get("booking_proposal")
    if proposal:
        summary = summary_from_proposal(proposal)
        source = "structured"
    else:
        summary = parse_confirmation_summary(assistant_content)
        source = "text"
        if summary is None:
            return ConfirmationCheck(ExtractionOutcome.NOT_CONFIRMATION)

    if summary.is_complete:
        return ConfirmationCheck(ExtractionOutcome.COMPLETE, summary, source)

    logger.warning(
        f"Confirmation summary with unreadable fields {summary.missing_fields()} "
        f"(source={source}); assistant output format may have drifted"
    )
    return ConfirmationCheck(ExtractionOutcome.PARTIAL, summary, source)


def format_brl(amount: Decimal) -> str:
    text = f"{Decimal(amount):,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def render_confirmation_summary(summary: BookingSummary) -> str:
    """Canonical summary text; parse_confirmation_summary reads it back"""
    lines = [
        f"{FIELD_MARKERS['client'][0]} Cliente: {summary.client}",
        f"{FIELD_MARKERS['professional'][0]} Profissional: {summary.professional}",
        f"{FIELD_MARKERS['service'][0]} Serviço: {summary.service}",
        f"{FIELD_MARKERS['datetime'][0]} {summary.date} {summary.time}",
    ]
    if summary.price is not None:
        lines.append(f"{FIELD_MARKERS['price'][0]} {format_brl(summary.price)}")
    return "\n".join(lines)
