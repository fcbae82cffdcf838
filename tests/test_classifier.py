from __future__ import annotations

import pytest

from models import ChangeCategory
from services.classifier import classify


@pytest.mark.parametrize("threshold", [0, 1, 100])
def test_first_scan_is_new_content(threshold):
    assert classify("", "anything", threshold, False) is ChangeCategory.NEW_CONTENT
    assert classify(None, "anything", threshold, False) is ChangeCategory.NEW_CONTENT


def test_both_empty_is_new_content_not_no_change():
    assert classify("", "", 10, False) is ChangeCategory.NEW_CONTENT


@pytest.mark.parametrize("threshold", [0, 1, 100])
def test_identical_content_is_no_change(threshold):
    assert classify("same", "same", threshold, False) is ChangeCategory.NO_CHANGE


def test_identical_content_skips_comparator(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("comparator should not run")

    monkeypatch.setattr("services.classifier.is_major_change", fail)
    assert classify("same", "same", 5, True) is ChangeCategory.NO_CHANGE


def test_threshold_boundary():
    old = "hello world"
    assert classify(old, "hello world!!!", 3, False) is ChangeCategory.MAJOR_CHANGE
    assert classify(old, "hello world!!", 3, False) is ChangeCategory.MINOR_CHANGE


def test_classification_is_deterministic(sample_html):
    changed = sample_html.replace("1.2", "1.3").replace("crash", "hang")
    results = {classify(sample_html, changed, 4, False) for _ in range(5)}
    assert len(results) == 1


def test_ignore_numbers_suppresses_numeric_change():
    assert classify("Count: 5", "Count: 9", 1, False) is ChangeCategory.MAJOR_CHANGE
    assert classify("Count: 5", "Count: 9", 1, True) in (
        ChangeCategory.NO_CHANGE,
        ChangeCategory.MINOR_CHANGE,
    )


def test_ignore_numbers_still_sees_text_changes(sample_html):
    changed = sample_html.replace("Downloads so far: 1024", "Downloads so far: 2048 (mirror offline)")
    assert classify(sample_html, changed, 10, True) is ChangeCategory.MAJOR_CHANGE


def test_negative_threshold_is_rejected():
    with pytest.raises(ValueError):
        classify("a", "b", -5, False)
