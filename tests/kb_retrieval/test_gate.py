"""Tests for the query gate heuristic."""

from __future__ import annotations

import re

import pytest

from src.kb_retrieval.gate import (
    DEFAULT_GATE_PATTERNS,
    GATE_PATTERNS_VERSION,
    GatePatterns,
    should_search_knowledge_base,
)


class TestShouldSearchKnowledgeBase:
    @pytest.mark.parametrize("query", ["", "   ", "oi", "ok!", "hey"])
    def test_short_queries_skip(self, query):
        assert should_search_knowledge_base(query) is False

    @pytest.mark.parametrize(
        "query",
        [
            "Olá, tudo bem?",
            "bom dia pessoal",
            "Obrigado pela ajuda",
            "thanks a lot",
            "Tchau, até logo",
            "entendi",
            "got it",
        ],
    )
    def test_small_talk_skips(self, query):
        assert should_search_knowledge_base(query) is False

    @pytest.mark.parametrize(
        "query",
        [
            "Qual o horário de atendimento?",
            "como faço para cancelar",
            "preço do plano",  # question mark absent, but 3 words
            "What is the refund policy",
            "me explique o contrato",
            "Can you send the invoice",
            "eu preciso saber o prazo",
            "prazo?",
        ],
    )
    def test_information_requests_search(self, query):
        assert should_search_knowledge_base(query) is True

    def test_two_word_statement_skips(self):
        assert should_search_knowledge_base("muito legal") is False

    def test_three_word_statement_searches(self):
        assert should_search_knowledge_base("plano empresarial anual") is True

    def test_case_and_whitespace_insensitive(self):
        assert should_search_knowledge_base("   QUAL O PREÇO   ") is True

    def test_skip_rules_win_over_question_mark(self):
        assert should_search_knowledge_base("oi, tudo bem?") is False


class TestGatePatterns:
    def test_default_table_is_versioned(self):
        assert DEFAULT_GATE_PATTERNS.version == GATE_PATTERNS_VERSION

    def test_custom_table(self):
        patterns = GatePatterns(
            version="test",
            skip=(re.compile(r"^ping\b"),),
            search=(re.compile(r"invoice"),),
            min_length=3,
            min_tokens=10,
        )

        assert should_search_knowledge_base("ping server", patterns) is False
        assert should_search_knowledge_base("invoice", patterns) is True
        assert should_search_knowledge_base("some other words", patterns) is False
