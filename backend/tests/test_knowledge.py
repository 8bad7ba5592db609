import pytest

from docuchat import knowledge, titles


class FakeEncoder:
    """Whitespace tokenizer standing in for tiktoken."""

    def encode(self, text):
        return text.split(" ")

    def decode(self, tokens):
        return " ".join(tokens)


class TestKnowledgeBase:
    def test_builds_sections_and_skips_empty_documents(self):
        kb = knowledge.build_knowledge_base([
            {"filename": "a.pdf", "extracted_text": "Alpha"},
            {"filename": "b.pdf", "extracted_text": "   "},
            {"filename": "c.docx", "extracted_text": "Gamma\n"},
        ])
        assert kb == "--- Document: a.pdf ---\nAlpha\n\n--- Document: c.docx ---\nGamma"

    def test_empty_project(self):
        assert knowledge.build_knowledge_base([]) == ""

    def test_system_prompt_includes_project_and_documents(self):
        prompt = knowledge.build_project_system_prompt(
            {"name": "Legal", "description": "NDAs"}, "--- Document: nda.pdf ---\nTerm is 2 years.",
        )
        assert 'in the project "Legal"' in prompt
        assert "Project Description: NDAs" in prompt
        assert "Term is 2 years." in prompt

    def test_system_prompt_without_documents(self):
        prompt = knowledge.build_project_system_prompt({"name": "Legal"}, "")
        assert knowledge.EMPTY_KNOWLEDGE_BASE in prompt
        assert "Project Description" not in prompt


class TestTruncation:
    def test_short_text_untouched(self, monkeypatch):
        monkeypatch.setattr(knowledge, "_encoder", None)
        assert knowledge.truncate_to_token_budget("short text", max_tokens=100) == "short text"
        assert knowledge._encoder is None

    def test_long_text_truncated(self, monkeypatch):
        monkeypatch.setattr(knowledge, "_encoder", FakeEncoder())
        text = "one two three four five six"
        result = knowledge.truncate_to_token_budget(text, max_tokens=3)
        assert result == "one two three" + knowledge.TRUNCATION_MARKER

    def test_within_budget_by_tokens(self, monkeypatch):
        monkeypatch.setattr(knowledge, "_encoder", FakeEncoder())
        text = "one two three"
        assert knowledge.truncate_to_token_budget(text, max_tokens=5) == text

    def test_disabled_budget(self):
        assert knowledge.truncate_to_token_budget("anything", max_tokens=0) == "anything"


class TestTitles:
    @pytest.mark.parametrize("message,expected", [
        ("Summarize the attached quarterly report please", "Summarize the attached quarterly report"),
        ("Hi", "Hi"),
        ("", titles.DEFAULT_TITLE),
        ("Supercalifragilisticexpialidocious antidisestablishmentarianism words", None),
    ])
    def test_fallback_title(self, message, expected):
        title = titles.fallback_title(message)
        if expected is None:
            assert title.endswith("...")
            assert len(title) == titles.FALLBACK_MAX_LENGTH + 3
        else:
            assert title == expected

    async def test_overlong_model_title_falls_back(self, monkeypatch):
        async def verbose(model, input_payload):
            return "A very long title that goes well beyond the fifty character limit"

        monkeypatch.setattr(titles.llm, "run_prediction", verbose)
        assert await titles.generate_title("Budget review for Q3") == "Budget review for Q3"

    async def test_empty_model_title_falls_back(self, monkeypatch):
        async def blank(model, input_payload):
            return '""'

        monkeypatch.setattr(titles.llm, "run_prediction", blank)
        assert await titles.generate_title("Hello there") == "Hello there"

    async def test_failure_is_logged_with_lazy_args(self, monkeypatch, caplog):
        error = titles.llm.LLMError("Replicate API not configured")

        async def failing(model, input_payload):
            raise error

        monkeypatch.setattr(titles.llm, "run_prediction", failing)
        with caplog.at_level("WARNING", logger="docuchat.titles"):
            assert await titles.generate_title("Budget review") == "Budget review"

        record = caplog.records[-1]
        assert record.args == (error,)
        assert record.getMessage() == "Title generation failed, using fallback: Replicate API not configured"
