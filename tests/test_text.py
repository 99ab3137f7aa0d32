"""
Tests for derived text metrics.
"""
from writedesk.workflow.text import count_words, detect_language, make_excerpt, reading_time


class TestTextMetrics:
    """Test word count, reading time and excerpt."""

    def test_count_words_splits_on_whitespace(self):
        assert count_words("one  two\nthree\tfour") == 4
        assert count_words("") == 0

    def test_reading_time_rounds_up(self):
        """Test that any started minute counts."""
        assert reading_time("word " * 200) == 1
        assert reading_time("word " * 201) == 2
        assert reading_time("short") == 1
        assert reading_time("") == 0

    def test_reading_time_uses_words_per_minute(self):
        assert reading_time("word " * 100, words_per_minute=50) == 2

    def test_excerpt_strips_tags(self):
        assert make_excerpt("<p>Hello <b>world</b></p>") == "Hello world"

    def test_excerpt_truncates(self):
        """Test that long bodies are cut with an ellipsis."""
        excerpt = make_excerpt("a" * 300, max_length=160)
        assert excerpt == "a" * 160 + "..."


class TestLanguageDetection:
    """Test script based language detection."""

    def test_english(self):
        assert detect_language("A quiet morning") == "english"

    def test_hindi(self):
        assert detect_language("नमस्ते दुनिया") == "hindi"

    def test_mixed(self):
        assert detect_language("Hello नमस्ते") == "mixed"

    def test_no_letters_defaults_to_english(self):
        assert detect_language("12345") == "english"
