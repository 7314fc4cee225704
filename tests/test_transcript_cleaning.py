"""
Tests for chunk dedup, the clean transcript and the display transcript.
"""

from recorder.services.rolling_transcription import RollingTranscriptionDriver
from recorder.services.transcript_cleaning import (
    clean_transcript,
    format_transcript_with_separators,
    is_duplicate_chunk,
    overlaps,
    recommend_summary_mode,
)


def _driver():
    return RollingTranscriptionDriver(snapshot=lambda s: b"", transcribe=lambda a, o, f: "")


class TestChunkDedup:
    def test_overlap_is_case_insensitive_containment(self):
        assert overlaps("Bonjour à tous", "bonjour à tous et bienvenue")
        assert overlaps("BONJOUR À TOUS ET BIENVENUE", "bonjour à tous")
        assert not overlaps("budget annuel", "calendrier de livraison")

    def test_duplicate_against_any_existing_chunk(self):
        existing = ["on commence par le budget", "ensuite le planning"]
        assert is_duplicate_chunk("Ensuite le planning", existing)
        assert not is_duplicate_chunk("et enfin les recrutements", existing)

    def test_six_chunks_with_second_containing_first_keeps_five(self):
        driver = _driver()
        chunks = [
            "premier point sur le budget",
            "premier point sur le budget et les délais",
            "le planning glisse de deux semaines",
            "il faut recruter un développeur",
            "la démo client est prévue vendredi",
            "on se revoit lundi prochain",
        ]
        for seq, text in enumerate(chunks):
            driver.accept_chunk(text, seq)

        assert len(driver.chunks) == 5
        assert "premier point sur le budget et les délais" not in driver.chunks

    def test_accepted_chunks_never_contain_each_other(self):
        driver = _driver()
        for seq, text in enumerate(
            ["Alpha beta gamma", "alpha beta", "delta epsilon", "DELTA EPSILON ZETA", "eta theta"]
        ):
            driver.accept_chunk(text, seq)

        kept = [c.lower() for c in driver.chunks]
        for i, a in enumerate(kept):
            for j, b in enumerate(kept):
                if i != j:
                    assert a not in b


class TestCleanTranscript:
    def test_drops_short_and_contained_sentences(self):
        text = "Bonjour à tous et bienvenue. Bonjour à tous. Ok. Nous parlons du budget annuel!"

        assert clean_transcript(text) == "Bonjour à tous et bienvenue. Nous parlons du budget annuel."

    def test_sentences_are_long_and_mutually_distinct(self):
        text = "Le projet avance bien. Le projet avance. Oui. On valide le budget ? On valide le budget ce soir."
        sentences = [s for s in clean_transcript(text).rstrip(".").split(". ") if s]

        assert all(len(s) > 10 for s in sentences)
        lowered = [s.lower() for s in sentences]
        for i, a in enumerate(lowered):
            for j, b in enumerate(lowered):
                if i != j:
                    assert a not in b

    def test_empty_input(self):
        assert clean_transcript("") == ""
        assert clean_transcript("Oui. Non.") == ""


class TestDisplayTranscript:
    def test_separators_mark_window_end(self):
        display = format_transcript_with_separators(["premier bloc", "second bloc"], 15)

        assert display == "\n\n--- 15s ---\npremier bloc\n\n--- 30s ---\nsecond bloc"

    def test_blank_chunks_are_skipped(self):
        assert format_transcript_with_separators(["", "  "]) == ""


class TestRecommendation:
    def test_short_meetings_get_short_mode(self):
        assert recommend_summary_mode(200, "mot " * 2000) == ("short", 2000)

    def test_few_words_get_short_mode(self):
        assert recommend_summary_mode(900, "mot " * 100)[0] == "short"

    def test_long_meetings_get_detailed_mode(self):
        assert recommend_summary_mode(900, "mot " * 700)[0] == "detailed"
        assert recommend_summary_mode(900, "")[0] == "detailed"
