"""Tests for response extraction."""

import pytest

from cartwise.errors import ExtractionError
from cartwise.extractor import extract, extract_explanation, extract_tax, extract_tax_rate, json_candidate
from cartwise.models import PriceTagRecord, TaxRate


def test_fenced_json_tax_rate():
    outcome = extract_tax('Sure! ```json\n{"taxRate": 6.25}\n```')
    assert outcome.tax_rate == 6.25


def test_combined_rate_sentence_falls_back_to_patterns():
    outcome = extract_tax("The combined rate is 7.5% in this county.")
    assert outcome.tax_rate == 7.5
    assert outcome.explanation == "Extracted from text response"


def test_json_between_braces_with_prose():
    text = 'Here you go: {"name": "Milk", "price": 3.49, "taxRate": null} hope that helps'
    tag = extract(text, PriceTagRecord)
    assert tag.name == "Milk"
    assert tag.price == 3.49
    assert tag.tax_rate is None
    assert tag.tax_description == "Unknown Taxes"
    assert tag.analysis_issues == []


def test_json_candidate_without_braces_is_trimmed_text():
    assert json_candidate("  no json here \n") == "no json here"


def test_null_rate_in_json_is_not_mined():
    # Valid JSON with a null rate is an answer, not a parse failure
    outcome = extract_tax('{"taxRate": null, "explanation": "Item is ambiguous, maybe 5%"}')
    assert outcome.tax_rate is None
    assert outcome.explanation.startswith("Item is ambiguous")


def test_key_value_wins_over_percentages():
    assert extract_tax_rate("taxRate: 8.0 though some places charge 5%") == 8.0


def test_marker_format():
    assert extract_tax_rate("The answer is XX3.00XX") == 3.0


def test_sentence_wins_over_bare_percentage():
    text = "About 10% of items are exempt, but the sales tax is 6.5% here."
    assert extract_tax_rate(text) == 6.5


def test_bare_percentage():
    assert extract_tax_rate("Expect about 9.25 % at checkout") == 9.25


def test_percent_word():
    assert extract_tax_rate("It is 4 percent.") == 4.0


def test_number_after_rate():
    assert extract_tax_rate("The rate: 5.3 in most places") == 5.3


def test_no_pattern_raises():
    with pytest.raises(ExtractionError) as exc_info:
        extract_tax("I don't know.")
    assert exc_info.value.raw_text == "I don't know."


def test_structured_shapes_are_never_text_mined():
    with pytest.raises(ExtractionError):
        extract("The price is 3.99 and tax rate is 7%", PriceTagRecord)


def test_strict_decode_for_tax_shape():
    assert extract('{"taxRate": 6}', TaxRate).tax_rate == 6.0


def test_extract_explanation():
    assert extract_explanation('{"riskyAdditives": null, "explanation": "not food"}') == "not food"
    assert extract_explanation("plain words") is None


def test_marker_is_the_last_resort():
    assert extract_tax_rate("The sales tax is 7% here. XX6XX") == 7.0
    assert extract_tax_rate("Answer: XX6XX") == 6.0
