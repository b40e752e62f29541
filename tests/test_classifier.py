"""Tests for the content relevance classifier."""

import pytest
from witnessbox.classifier import ContentClassifier, classify_content
from witnessbox.lexicon import LITERATURE_KEYWORDS, OFF_TOPIC_KEYWORDS, iter_categories
from witnessbox.patterns import is_homework_question
from witnessbox.schemas import Category, CATEGORY_ORDER, MatchMode


class TestContentClassifier:
    """Test suite for ContentClassifier."""

    def setup_method(self):
        """Set up test fixtures."""
        self.classifier = ContentClassifier()

    def test_direct_math_question(self):
        """A homework-style math question with no story context is a violation."""
        result = self.classifier.classify("What is the derivative of x^2?")

        assert result.is_violation is True
        assert result.category == Category.MATH
        assert result.confidence == 0.85
        assert result.details == (
            "Direct math question detected. Keywords: derivative. "
            "No literature context found."
        )
        assert result.is_homework_pattern is True

    def test_strong_literature_context(self):
        """Three story keywords outweigh everything else."""
        result = self.classifier.classify("Why did Westley fake his own death to fool Vizzini?")

        assert result.is_violation is False
        assert result.confidence == 0.9
        assert result.category is None
        assert result.literature_count == 3
        assert result.details == (
            "Strong literature context detected (3 lit keywords, 0 other keywords)"
        )

    def test_many_science_keywords(self):
        """Three science terms are a violation even with one incidental literature hit."""
        result = self.classifier.classify("Explain photosynthesis and cell biology")

        assert result.is_violation is True
        assert result.category == Category.SCIENCE
        assert result.confidence == pytest.approx(0.6)
        assert result.off_topic_count == 3
        # "thesis" inside "photosynthesis"
        assert result.literature_count == 1
        assert result.details.startswith("3 non-literature keywords detected, primarily science.")

    def test_literature_context_with_stray_keyword(self):
        """Some literature plus one or two off-topic terms is allowed."""
        result = self.classifier.classify("Why is Westley so bad at algebra?")

        assert result.is_violation is False
        assert result.confidence == 0.8
        assert result.details == "Literature context detected (1 lit keywords, 1 other keywords)"

    def test_two_keywords_tie_breaks_to_math(self):
        """Equal scores resolve in category order, math first."""
        result = self.classifier.classify("algebra and physics")

        assert result.is_violation is True
        assert result.confidence == 0.7
        assert result.category == Category.MATH
        assert result.details == "2 non-literature keywords detected, possibly math. Keywords: algebra"

    def test_single_contextual_keyword(self):
        """One off-topic word outside a homework question is let through."""
        result = self.classifier.classify("I liked the algebra joke")

        assert result.is_violation is False
        assert result.confidence == 0.6
        assert result.details == "Single non-literature keyword detected but appears contextual"

    def test_confidence_scales_with_keyword_count(self):
        """Confidence is count / 5, capped at 0.95."""
        four = self.classifier.classify("calculus algebra geometry trigonometry")
        five = self.classifier.classify("calculus algebra geometry trigonometry logarithm")

        assert four.is_violation is True
        assert four.confidence == pytest.approx(0.8)
        assert five.confidence == 0.95

    def test_details_list_at_most_five_keywords(self):
        """Long keyword lists are truncated in the details string."""
        result = self.classifier.classify(
            "calculus algebra geometry trigonometry logarithm polynomial quadratic"
        )

        listed = result.details.split("Keywords: ")[1].split(", ")
        assert len(listed) == 5
        assert len(result.matched_keywords) == 7

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_input(self, text):
        """Empty input is on topic."""
        result = self.classifier.classify(text)

        assert result.is_violation is False
        assert result.confidence == 0.95
        assert result.details == "Content appears to be literature-focused"

    def test_case_insensitive(self):
        """Keywords match regardless of case."""
        lower = self.classifier.classify("what is the derivative of x^2?")
        upper = self.classifier.classify("WHAT IS THE DERIVATIVE OF X^2?")

        assert lower.is_violation == upper.is_violation
        assert lower.category == upper.category
        assert lower.confidence == upper.confidence

    def test_classification_is_deterministic(self):
        """Same text, same verdict."""
        text = "Explain photosynthesis and cell biology"
        assert self.classifier.classify(text) == self.classifier.classify(text)

    def test_confidence_always_in_range(self):
        """Confidence stays within [0, 1] for assorted inputs."""
        samples = [
            "What is the derivative of x^2?",
            "Tell me about the Fire Swamp",
            "python java javascript html css sql",
            "Why did Inigo want revenge?",
            "hello",
        ]
        for text in samples:
            result = self.classifier.classify(text)
            assert 0.0 <= result.confidence <= 1.0
            if result.is_violation:
                assert result.category is not None

    @pytest.mark.parametrize("base", [
        "What is the derivative of x^2?",
        "algebra and physics",
        "calculus algebra geometry trigonometry",
        "Explain photosynthesis and cell biology",
        "I liked the algebra joke",
    ])
    def test_literature_terms_never_create_violations(self, base):
        """Adding story keywords can only move a verdict toward allowed."""
        before = self.classifier.classify(base)

        for extra in ("Westley", "Westley and Buttercup", "Westley, Buttercup and Fezzik"):
            after = self.classifier.classify(f"{base} {extra}")
            if not before.is_violation:
                assert after.is_violation is False

    def test_module_level_helper(self):
        """classify_content uses the shared default classifier."""
        result = classify_content("What is the derivative of x^2?")
        assert result.category == Category.MATH


class TestWordMatching:
    """Whole-word matching mode."""

    def test_substring_mode_matches_inside_words(self):
        """Default mode finds 'pi' inside 'spinning'."""
        result = ContentClassifier().classify("spinning wheels")
        assert result.off_topic_count == 1

    def test_word_mode_ignores_partial_words(self):
        """Word mode only counts whole keywords."""
        result = ContentClassifier(match_mode=MatchMode.WORD).classify("spinning wheels")

        assert result.off_topic_count == 0
        assert result.is_violation is False
        assert result.confidence == 0.95

    def test_word_mode_still_catches_real_questions(self):
        """Word mode keeps the direct-question rule."""
        result = ContentClassifier(match_mode="word").classify("What is the derivative of x^2?")

        assert result.is_violation is True
        assert result.category == Category.MATH


class TestHomeworkPatterns:
    """Question-opening patterns."""

    @pytest.mark.parametrize("text", [
        "What is a cell?",
        "  explain gravity",
        "Define momentum",
        "How does a circuit work?",
        "Calculate the area",
        "Solve for x",
        "Find the slope",
        "Prove the theorem",
        "Show that x > 1",
        "What's an atom",
        "whats a gene",
        "Tell me about DNA",
        "Give me the formula",
        "List the elements",
    ])
    def test_homework_openings(self, text):
        assert is_homework_question(text) is True

    @pytest.mark.parametrize("text", [
        "Why did Westley climb the cliff?",
        "I wonder what is going on",
        "",
    ])
    def test_other_openings(self, text):
        assert is_homework_question(text) is False


class TestLexicon:
    """Keyword tables."""

    def test_categories_follow_tie_break_order(self):
        assert [category for category, _ in iter_categories()] == list(CATEGORY_ORDER)

    def test_keywords_are_lowercase(self):
        for keywords in OFF_TOPIC_KEYWORDS.values():
            assert all(kw == kw.lower() for kw in keywords)
        assert all(kw == kw.lower() for kw in LITERATURE_KEYWORDS)

    def test_literature_keywords_unique(self):
        assert len(LITERATURE_KEYWORDS) == len(set(LITERATURE_KEYWORDS))

    def test_lexicon_is_read_only(self):
        with pytest.raises(TypeError):
            OFF_TOPIC_KEYWORDS[Category.MATH] = ("algebra",)
