"""Query gate: decide whether an utterance is worth a retrieval round-trip.

A cost-control heuristic, not a correctness check. Rules are data in a
versioned GatePatterns table so they can be swapped and tested on their own:

1. Trimmed query shorter than MIN_QUERY_LENGTH -> skip.
2. Small talk (greeting, farewell, acknowledgment) anchored at start -> skip.
3. Question mark, leading interrogative or information request -> search.
4. Otherwise search only if the query has MIN_TOKENS or more words.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

GATE_PATTERNS_VERSION = "2"

MIN_QUERY_LENGTH = 5
MIN_TOKENS = 3


@dataclass(frozen=True)
class GatePatterns:
    """Versioned skip/search pattern table for the query gate."""

    version: str
    skip: tuple[re.Pattern[str], ...]
    search: tuple[re.Pattern[str], ...]
    min_length: int = MIN_QUERY_LENGTH
    min_tokens: int = MIN_TOKENS


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


DEFAULT_GATE_PATTERNS = GatePatterns(
    version=GATE_PATTERNS_VERSION,
    skip=_compile(
        # greetings
        r"^(oi|olá|ola|hey|hi|hello|bom dia|boa tarde|boa noite|e aí|eai|tudo bem|good (morning|afternoon|evening))\b",
        # farewells and thanks
        r"^(tchau|adeus|bye|até|xau|vlw|valeu|obrigad[oa]|thanks|thank you)\b",
        # bare acknowledgments
        r"^(sim|não|nao|ok|okay|certo|entendi|beleza|yes|no|sure|got it)\s*[!?.]*$",
    ),
    search=_compile(
        r"\?",
        r"^(o que|qual|quais|como|onde|quando|por ?que|quem|quanto|quantos|quantas)\b",
        r"^(what|which|how|where|when|why|who)\b",
        r"^(me (diga|fale|explique|conte|mostre)|pode|poderia|gostaria)\b",
        r"^(tell me|show me|explain|can you|could you)\b",
        r"(preciso|quero|desejo) (saber|entender|conhecer)",
        r"\b(i (need|want) to (know|understand))\b",
    ),
)


def should_search_knowledge_base(
    query: str,
    patterns: GatePatterns = DEFAULT_GATE_PATTERNS,
) -> bool:
    """Return True when the query likely needs knowledge base context."""
    normalized = query.strip().lower()

    if len(normalized) < patterns.min_length:
        return False

    if any(p.search(normalized) for p in patterns.skip):
        return False

    if any(p.search(normalized) for p in patterns.search):
        return True

    return len(normalized.split()) >= patterns.min_tokens
