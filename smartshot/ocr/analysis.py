"""
Content Analysis - rule-based classification of recognized text

Strategy:
1. Classify by whole-word keyword lists, first match wins:
   code > error > form > table > document > general
2. Detect the dominant script of the text and map it to a language tag;
   Latin script is left undetermined so the caller's hint applies
3. Derive smart tags from the content type, the language and a few
   content markers (urls, emails)

All functions are pure and cheap enough to run on the event loop.
"""
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Sequence

from smartshot.ocr.base import TextRegion

CODE_KEYWORDS = ["function", "class", "import", "export", "const", "var", "def", "async", "await", "catch"]
ERROR_KEYWORDS = ["error", "exception", "crash", "failed", "warning", "alert", "fatal", "critical", "bug", "issue"]
FORM_KEYWORDS = ["form", "input", "submit", "button", "field", "required", "validation", "checkbox", "radio",
                 "select"]
TABLE_KEYWORDS = ["table", "chart", "graph", "data", "column", "row", "cell", "header", "footer", "total"]
DOCUMENT_KEYWORDS = ["document", "report", "article", "paper", "section", "chapter", "paragraph", "sentence"]

# First word of the Unicode character name -> language tag
SCRIPT_LANGUAGES = {
    "HIRAGANA": "ja",
    "KATAKANA": "ja",
    "HANGUL": "ko",
    "CJK": "zh",
    "CYRILLIC": "ru",
    "ARABIC": "ar",
    "HEBREW": "he",
    "GREEK": "el",
    "THAI": "th",
    "DEVANAGARI": "hi",
    "LATIN": None,
}

_URL = re.compile(r"https?://|www\.", re.IGNORECASE)
_EMAIL = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")


def _keyword_pattern(keywords: Sequence[str]) -> "re.Pattern[str]":
    return re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE)


class ContentType(str, Enum):
    CODE = "code"
    ERROR = "error"
    FORM = "form"
    TABLE = "table"
    DOCUMENT = "document"
    GENERAL = "general"


_RULES = [
    (ContentType.CODE, _keyword_pattern(CODE_KEYWORDS)),
    (ContentType.ERROR, _keyword_pattern(ERROR_KEYWORDS)),
    (ContentType.FORM, _keyword_pattern(FORM_KEYWORDS)),
    (ContentType.TABLE, _keyword_pattern(TABLE_KEYWORDS)),
    (ContentType.DOCUMENT, _keyword_pattern(DOCUMENT_KEYWORDS)),
]

_TYPE_TAGS = {
    ContentType.CODE: ["programming"],
    ContentType.ERROR: ["debugging", "troubleshooting"],
    ContentType.FORM: ["input", "interactive"],
    ContentType.TABLE: ["data", "structured"],
    ContentType.DOCUMENT: ["text"],
    ContentType.GENERAL: ["mixed"],
}


@dataclass
class ContentAnalysis:
    """
    Classification of one recognized text.

    Attributes:
        content_type: First matching keyword category
        confidence: Heuristic certainty of the classification (0.0 to 1.0)
        language: Detected language tag, or the hint when the script is Latin
        tags: Smart tags implied by the content
        word_count: Whitespace separated words
        line_count: Non-empty lines
        contains_urls: Text holds a web address
        contains_emails: Text holds an email address
    """
    content_type: ContentType
    confidence: float
    language: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)
    word_count: int = 0
    line_count: int = 0
    contains_urls: bool = False
    contains_emails: bool = False


def classify(text: str) -> ContentType:
    for content_type, pattern in _RULES:
        if pattern.search(text):
            return content_type
    return ContentType.GENERAL


def detect_language(text: str) -> Optional[str]:
    """
    Language tag of the dominant non-Latin script, or None.

    Han characters count as Japanese when kana are present.
    """
    counts: Counter = Counter()
    for ch in text:
        if not ch.isalpha():
            continue
        script = unicodedata.name(ch, "").split(" ", 1)[0]
        if script in SCRIPT_LANGUAGES:
            counts[script] += 1

    if not counts:
        return None
    if counts["HIRAGANA"] or counts["KATAKANA"]:
        counts["KATAKANA"] += counts.pop("CJK", 0)

    script, _ = counts.most_common(1)[0]
    return SCRIPT_LANGUAGES[script]


def label_languages(regions: Iterable[TextRegion], language_hints: Sequence[str] = ()) -> None:
    """Set each region's language from its script, keeping the backend's tag or the first hint otherwise"""
    hint = language_hints[0] if language_hints else None
    for region in regions:
        detected = detect_language(region.text)
        if detected is not None:
            region.language = detected
        elif region.language is None:
            region.language = hint


def dominant_language(regions: Sequence[TextRegion]) -> Optional[str]:
    """Language covering the most characters across regions"""
    weights: Counter = Counter()
    for region in regions:
        if region.language:
            weights[region.language] += len(region.text)
    if not weights:
        return None
    return weights.most_common(1)[0][0]


def smart_tags(text: str, content_type: ContentType, language: Optional[str] = None) -> FrozenSet[str]:
    tags = {content_type.value}
    tags.update(_TYPE_TAGS[content_type])
    if language and language != "en":
        tags.add(f"language:{language}")

    lowered = text.lower()
    if content_type is ContentType.CODE:
        for marker, tag in (("function", "functions"), ("class", "classes"), ("import", "imports")):
            if marker in lowered:
                tags.add(tag)
    if _URL.search(text):
        tags.add("web")
    if _EMAIL.search(text):
        tags.add("email")
    return frozenset(tags)


def classification_confidence(content_type: ContentType, text: str) -> float:
    confidence = 0.8
    if len(text) < 10:
        confidence -= 0.2
    elif len(text) > 1000:
        confidence += 0.1

    strong = {
        ContentType.CODE: ("function", "class"),
        ContentType.ERROR: ("error", "exception"),
        ContentType.FORM: ("input", "submit"),
        ContentType.TABLE: ("table", "data"),
    }.get(content_type, ())
    lowered = text.lower()
    if any(word in lowered for word in strong):
        confidence += 0.1
    return min(1.0, max(0.0, confidence))


def analyze(text: str, language: Optional[str] = None) -> ContentAnalysis:
    """
    Classify text and derive its smart tags.

    Args:
        text: Recognized text
        language: Language to report when the text's script is Latin or absent
    """
    content_type = classify(text)
    language = detect_language(text) or language
    return ContentAnalysis(
        content_type=content_type,
        confidence=classification_confidence(content_type, text),
        language=language,
        tags=smart_tags(text, content_type, language),
        word_count=len(text.split()),
        line_count=sum(1 for line in text.splitlines() if line.strip()),
        contains_urls=bool(_URL.search(text)),
        contains_emails=bool(_EMAIL.search(text)),
    )


def analyze_batch(texts: Sequence[str], language: Optional[str] = None) -> List[ContentAnalysis]:
    return [analyze(text, language) for text in texts]


def implied_tags(text: str, language: Optional[str] = None) -> FrozenSet[str]:
    """Smart tags for a capture; blank text implies none"""
    if not text.strip():
        return frozenset()
    return analyze(text, language).tags
