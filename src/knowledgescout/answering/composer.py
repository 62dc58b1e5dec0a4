"""Answer generation from retrieved context."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from openai import OpenAI, OpenAIError

from knowledgescout.errors import ComposerFailure

LOGGER = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"
_LABEL_RE = re.compile(r"^\[Document: (.+), Chunk: (\d+)\]$", re.MULTILINE)

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on provided document "
    "context. Always cite your sources with document names and chunk numbers."
)


def build_prompt(query: str, context: str) -> str:
    return (
        f"Context from documents:\n{context}\n\n"
        f"Question: {query}\n\n"
        "Please provide a comprehensive answer based on the context above. If the context "
        "doesn't contain enough information to answer the question, please say so. Always "
        "reference the specific documents and chunks where you found the information."
    )


class AnswerComposer(Protocol):
    def complete(self, query: str, context: str) -> str: ...


class OpenAIAnswerComposer:
    """Chat-completion composer backed by the OpenAI API."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_CHAT_MODEL,
        timeout: float = 30.0,
        max_tokens: int = 500,
        temperature: float = 0.3,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        if client is None and api_key:
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=1)
        self._client = client

    def complete(self, query: str, context: str) -> str:
        if self._client is None:
            raise ComposerFailure("No OpenAI API key configured")
        LOGGER.debug("Requesting completion from %s (%d context chars)", self.model, len(context))
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(query, context)},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            raise ComposerFailure(f"Answer generation failed: {exc}") from exc

        if not response.choices or not response.choices[0].message.content:
            raise ComposerFailure("Answer generation returned no content")
        return response.choices[0].message.content.strip()


class TemplateAnswerComposer:
    """Offline composer for deployments without a language model.

    Names the top sources found in the context labels instead of summarizing them.
    """

    def __init__(self, max_sources: int = 3) -> None:
        self.max_sources = max_sources

    def complete(self, query: str, context: str) -> str:
        labels = [
            f"{title} (chunk {position})"
            for title, position in _LABEL_RE.findall(context)[: self.max_sources]
        ]
        text = f'Based on the available documents, here\'s what I found regarding "{query}".'
        if labels:
            text += f" The most relevant passages are in {', '.join(labels)}."
        return text + " No language model is configured, so please review the cited sources."
