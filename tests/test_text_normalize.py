"""
Tests for shared text normalization.

Run with: python -m pytest tests/test_text_normalize.py -v
"""

from chatnav.core.text_normalize import (
    canonical_tokens,
    canonicalize_command,
    fuzzy_token_match,
    label_tokens,
    levenshtein,
    normalize,
    tokenize,
)


class TestNormalize:
    """Lowercasing, punctuation and filler handling."""

    def test_lowercase_and_punctuation(self):
        assert normalize("  Hello,  World!! ") == "hello world"

    def test_apostrophes_vanish(self):
        assert normalize("What's up") == "whats up"

    def test_trailing_filler_stripped(self):
        assert normalize("open it please") == "open it"
        assert normalize("second one thanks") == "second one"

    def test_empty(self):
        assert normalize("") == ""
        assert normalize(None) == ""


class TestTokens:
    """Tokenizing and micro-alias canonicalization."""

    def test_tokenize_drops_stopwords(self):
        assert tokenize("open the links panel please") == ["open", "links", "panel"]

    def test_canonical_tokens_plural_aliases(self):
        assert canonical_tokens("Links Panels") == {"links", "panel"}

    def test_label_tokens_keep_raw_and_canonical(self):
        tokens = label_tokens("Link Panels")
        assert {"link", "panels", "links", "panel"} <= tokens

    def test_no_stemming_outside_aliases(self):
        # "running" is not in the alias table and must stay as-is
        assert canonical_tokens("running") == {"running"}


class TestCanonicalizeCommand:
    """Polite/verb prefix stripping."""

    def test_polite_prefix_and_verb(self):
        assert canonicalize_command("can you please open the links panel pls") == "links panel"

    def test_show_me(self):
        assert canonicalize_command("show me recent") == "recent"

    def test_plain_noun_untouched(self):
        assert canonicalize_command("settings") == "settings"

    def test_verb_prefix_needs_word_boundary(self):
        assert canonicalize_command("opener notes") == "opener notes"


class TestFuzzy:
    """Edit distance and typo-tolerant token matching."""

    def test_levenshtein(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("", "abc") == 3
        assert levenshtein("same", "same") == 0

    def test_transposition_within_distance(self):
        assert fuzzy_token_match("panle", {"panel"})

    def test_short_tokens_never_fuzzy(self):
        assert not fuzzy_token_match("abc", {"abd"})
        assert fuzzy_token_match("abc", {"abc"})

    def test_distance_limit(self):
        assert not fuzzy_token_match("settings", {"sessions"})
