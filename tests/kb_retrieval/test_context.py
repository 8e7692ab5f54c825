"""Tests for context assembly and prompt composition."""

from __future__ import annotations

import pytest

from src.kb_retrieval.context import (
    DEFAULT_CONTEXT_PREFIX,
    DEFAULT_CONTEXT_SUFFIX,
    build_context,
    build_prompt_with_context,
)
from src.kb_retrieval.models import ContextOptions, KnowledgeContextResult, SearchResult


def _result(content: str, source: str | None = "FAQ", score: float = 0.9) -> SearchResult:
    return SearchResult(
        chunk_id=content[:10],
        document_id="doc-1",
        knowledge_base_id="kb-1",
        content=content,
        score=score,
        source=source,
    )


# ── Test: build_context ─────────────────────────────────────────────────────


class TestBuildContext:
    def test_empty_results_give_empty_context(self):
        assert build_context([]) == ""

    def test_markdown_with_source(self):
        context = build_context(
            [_result("Abrimos às 9h.", source="Horários")],
            ContextOptions(format="markdown"),
        )

        assert context == "### Horários\nAbrimos às 9h."

    def test_plain_with_source(self):
        context = build_context(
            [_result("Abrimos às 9h.", source="Horários")],
            ContextOptions(format="plain"),
        )

        assert context == "[Fonte: Horários]\nAbrimos às 9h."

    def test_source_omitted_when_disabled(self):
        context = build_context(
            [_result("Abrimos às 9h.", source="Horários")],
            ContextOptions(include_source=False),
        )

        assert context == "Abrimos às 9h."

    def test_missing_source_renders_content_only(self):
        context = build_context([_result("Sem título.", source=None)], ContextOptions(format="plain"))

        assert context == "Sem título."

    def test_preserves_input_order(self):
        results = [_result("second", score=0.5), _result("first", score=0.9)]

        context = build_context(results, ContextOptions(include_source=False, format="plain"))

        assert context.index("second") < context.index("first")

    def test_plain_snippets_separated_by_blank_line(self):
        results = [_result("one"), _result("two")]

        context = build_context(results, ContextOptions(include_source=False, format="plain"))

        assert context == "one\n\ntwo"

    def test_never_exceeds_max_length(self):
        results = [_result("x" * 60, source=f"S{i}") for i in range(10)]

        context = build_context(results, ContextOptions(max_length=200))

        assert 0 < len(context) <= 200

    def test_stops_at_first_snippet_that_does_not_fit(self):
        # "### FAQ\n" + 50 chars + "\n" = 59 chars per snippet
        results = [
            _result("a" * 50),
            _result("b" * 50),
            _result("c" * 200),
            _result("d" * 5),
        ]

        context = build_context(results, ContextOptions(max_length=150))

        assert "a" * 50 in context
        assert "b" * 50 in context
        assert "c" not in context
        # Smaller snippets after the overflow are not packed in
        assert "ddddd" not in context

    def test_snippets_are_never_truncated(self):
        context = build_context([_result("y" * 500)], ContextOptions(max_length=100))

        assert context == ""

    def test_option_bounds(self):
        with pytest.raises(ValueError):
            ContextOptions(max_length=99)
        with pytest.raises(ValueError):
            ContextOptions(max_length=16001)


# ── Test: build_prompt_with_context ─────────────────────────────────────────


class TestBuildPromptWithContext:
    def test_no_context_returns_base_prompt(self):
        assert build_prompt_with_context("You are helpful.", KnowledgeContextResult.empty()) == "You are helpful."

    def test_default_prefix_and_suffix(self):
        knowledge = KnowledgeContextResult(context="### FAQ\nAnswer", has_context=True)

        prompt = build_prompt_with_context("Base.", knowledge)

        assert prompt == f"Base.{DEFAULT_CONTEXT_PREFIX}### FAQ\nAnswer{DEFAULT_CONTEXT_SUFFIX}"
        assert "Base de Conhecimento" in prompt

    def test_custom_prefix_and_suffix(self):
        knowledge = KnowledgeContextResult(context="ctx", has_context=True)

        prompt = build_prompt_with_context("Base.", knowledge, context_prefix="\n<kb>", context_suffix="</kb>")

        assert prompt == "Base.\n<kb>ctx</kb>"

    def test_empty_custom_prefix_is_respected(self):
        knowledge = KnowledgeContextResult(context="ctx", has_context=True)

        assert build_prompt_with_context("B", knowledge, context_prefix="", context_suffix="") == "Bctx"
