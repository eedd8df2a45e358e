import pytest

from conftest import make_record
from resumefind.schemas.search import SearchFilter
from resumefind.services.common import text_normalizer as tn


def test_normalize_uses_fixed_field_order_and_skips_empty_fields():
    record = make_record(
        "r1",
        title="Backend Developer",
        role="Software Engineer",
        experienceLevel="senior",
        skills="Python, FastAPI",
        education="",
        companies=["Acme"],
        content="Built APIs.",
    )
    assert tn.normalize(record) == (
        "Title: Backend Developer\n"
        "Role: Software Engineer\n"
        "Experience Level: senior\n"
        "Skills: Python, FastAPI\n"
        "Companies: Acme\n"
        "Content: Built APIs."
    )


def test_normalize_is_deterministic():
    record = make_record("r1", skills=["Go", "Rust"], interviews=["Google"])
    assert tn.normalize(record) == tn.normalize(record.model_copy())


def test_normalize_limits_content_preview():
    record = make_record("r1", content="x" * 3000)
    last_line = tn.normalize(record).splitlines()[-1]
    assert last_line == "Content: " + "x" * tn.CONTENT_PREVIEW_CHARS


def test_truncate_returns_short_text_unchanged():
    assert tn.truncate("hello world", 50) == "hello world"


def test_truncate_cuts_at_word_boundary():
    assert tn.truncate("hello world foo", 8) == "hello"


def test_truncate_keeps_word_ending_exactly_at_limit():
    assert tn.truncate("hello world foo", 11) == "hello world"


def test_truncate_hard_cuts_without_whitespace():
    assert tn.truncate("abcdefghij", 4) == "abcd"


@pytest.mark.parametrize("max_length", [1, 7, 50, 999])
def test_truncate_never_exceeds_max_length(max_length):
    text = "lorem ipsum dolor sit amet " * 100
    assert len(tn.truncate(text, max_length)) <= max_length


def test_truncate_rejects_non_positive_length():
    with pytest.raises(ValueError):
        tn.truncate("abc", 0)


def test_process_query_strips_punctuation_and_collapses_whitespace():
    assert tn.process_query("  React,   Node.js!\n\tand   AWS?  ") == "React Nodejs and AWS"


def test_process_query_empty():
    assert tn.process_query("") == ""
    assert tn.process_query("?!...") == ""


def test_embedding_text_is_cleaned_and_bounded():
    record = make_record("r1", title="C++ / C# Developer", content="word " * 5000)
    text = tn.embedding_text(record, 200)
    assert len(text) <= 200
    assert "+" not in text and "/" not in text
    assert text.startswith("Title C C Developer")


def test_metadata_subset_fields():
    record = make_record("r1", content="y" * 900, companies=["Acme", "Globex"])
    meta = tn.metadata_subset(record)
    assert set(meta) == {
        "title", "role", "experienceLevel", "skills", "companies",
        "education", "contentPreview", "createdAt", "updatedAt",
    }
    assert len(meta["contentPreview"]) == tn.METADATA_PREVIEW_CHARS
    assert meta["experienceLevel"] == "mid"
    assert meta["companies"] == ["Acme", "Globex"]


def test_filter_to_text():
    f = SearchFilter(role="Software Engineer", skills=["React", "Node.js"])
    assert tn.filter_to_text(f) == "Role Software Engineer Skills React Nodejs"
