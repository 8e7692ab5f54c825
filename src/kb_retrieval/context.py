"""Context assembly and prompt composition.

build_context() packs already-ranked results into one bounded string. A
snippet is either included whole or not at all: accumulation stops at the
first snippet that would push the context past max_length.
"""

from __future__ import annotations

from typing import Sequence

from src.kb_retrieval.models import ContextOptions, KnowledgeContextResult, SearchResult

DEFAULT_CONTEXT_PREFIX = (
    "\n\n## Informações Relevantes da Base de Conhecimento\n\n"
    "Use as seguintes informações para responder à pergunta do usuário:\n\n"
)
DEFAULT_CONTEXT_SUFFIX = (
    "\n\n---\n\n"
    "Responda à pergunta do usuário usando as informações acima quando relevante. "
    "Se a informação não estiver disponível, responda com seu conhecimento geral."
)

PLAIN_SOURCE_LABEL = "[Fonte: {source}]\n"


def render_snippet(result: SearchResult, options: ContextOptions) -> str:
    """Render one result in the requested format."""
    with_source = options.include_source and bool(result.source)

    if options.format == "markdown":
        if with_source:
            return f"### {result.source}\n{result.content}\n"
        return f"{result.content}\n"

    label = PLAIN_SOURCE_LABEL.format(source=result.source) if with_source else ""
    return f"{label}{result.content}\n\n"


def build_context(
    results: Sequence[SearchResult],
    options: ContextOptions | None = None,
) -> str:
    """Concatenate snippets in the given order without exceeding max_length.

    Args:
        results: Ranked results (order is preserved, not re-sorted).
        options: max_length (100-16000), include_source, format.

    Returns:
        The context string, or "" when results are empty or the first
        snippet alone is over budget.
    """
    options = options or ContextOptions()
    parts: list[str] = []
    current_length = 0

    for result in results:
        snippet = render_snippet(result, options)
        if current_length + len(snippet) > options.max_length:
            break
        parts.append(snippet)
        current_length += len(snippet)

    return "".join(parts).strip()


def build_prompt_with_context(
    base_prompt: str,
    knowledge_context: KnowledgeContextResult,
    context_prefix: str | None = None,
    context_suffix: str | None = None,
) -> str:
    """Append the knowledge context to a system prompt.

    Returns base_prompt unchanged when no context was found.
    """
    if not knowledge_context.has_context:
        return base_prompt

    prefix = DEFAULT_CONTEXT_PREFIX if context_prefix is None else context_prefix
    suffix = DEFAULT_CONTEXT_SUFFIX if context_suffix is None else context_suffix
    return f"{base_prompt}{prefix}{knowledge_context.context}{suffix}"
