"""Tests for rule-based content classification, language detection and smart tags."""

import pytest

from smartshot.ocr.analysis import (
    ContentType,
    analyze,
    analyze_batch,
    classify,
    detect_language,
    implied_tags,
    label_languages,
)
from smartshot.ocr.base import TextRegion


@pytest.mark.parametrize(
    "text, expected",
    [
        ("def main():\n    return 0", ContentType.CODE),
        ("Fatal error: connection refused", ContentType.ERROR),
        ("Please submit the form", ContentType.FORM),
        ("Column A  Row 1  Total", ContentType.TABLE),
        ("Chapter 3 of the annual report", ContentType.DOCUMENT),
        ("Hello world", ContentType.GENERAL),
        ("", ContentType.GENERAL),
    ],
)
def test_classify_by_keywords(text, expected) -> None:
    assert classify(text) is expected


def test_keywords_match_whole_words_only() -> None:
    """'information' must not read as 'form', nor 'classic' as 'class'."""

    assert classify("Some information about classic cars") is ContentType.GENERAL


def test_first_matching_category_wins() -> None:
    assert classify("import failed") is ContentType.CODE
    assert classify("Error in the data table") is ContentType.ERROR


@pytest.mark.parametrize(
    "text, language",
    [
        ("こんにちは世界", "ja"),
        ("你好世界", "zh"),
        ("안녕하세요", "ko"),
        ("Привет мир", "ru"),
        ("Hello world", None),
        ("12345 !!", None),
    ],
)
def test_detect_language_from_script(text, language) -> None:
    assert detect_language(text) == language


def test_label_languages_prefers_script_then_backend_then_hint() -> None:
    regions = [
        TextRegion(text="Привет", confidence=0.9),
        TextRegion(text="Hello", confidence=0.9),
        TextRegion(text="Bonjour", confidence=0.9, language="fr"),
    ]

    label_languages(regions, ["de"])

    assert [r.language for r in regions] == ["ru", "de", "fr"]


def test_analyze_document_with_links() -> None:
    analysis = analyze("See the report at https://example.com\nor mail bob@example.com", language="en")

    assert analysis.content_type is ContentType.DOCUMENT
    assert analysis.language == "en"
    assert analysis.tags == frozenset({"document", "text", "web", "email"})
    assert analysis.contains_urls and analysis.contains_emails
    assert analysis.line_count == 2
    assert analysis.word_count == 8
    assert 0.0 <= analysis.confidence <= 1.0


def test_non_english_language_becomes_a_tag() -> None:
    analysis = analyze("エラーが発生しました")

    assert analysis.language == "ja"
    assert "language:ja" in analysis.tags


def test_classification_confidence_rewards_strong_keywords() -> None:
    assert analyze("class Parser: pass  # function table").confidence == pytest.approx(0.9)
    assert analyze("def x").confidence == pytest.approx(0.6)


def test_analyze_batch_keeps_order() -> None:
    results = analyze_batch(["import os", "Warning: low disk", "lunch"])

    assert [a.content_type for a in results] == [ContentType.CODE, ContentType.ERROR, ContentType.GENERAL]


def test_blank_text_implies_no_tags() -> None:
    assert implied_tags("   ") == frozenset()
    assert implied_tags("Hello") == frozenset({"general", "mixed"})
