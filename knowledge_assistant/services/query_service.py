"""RAG query pipeline: conversation-aware retrieval plus grounded generation.

Answers one user question per call.  The data flow follows the classic
retrieval-augmented generation pattern:

  1. CONVERSATION -- resolve the explicit conversation, or reuse the
                     latest one for (user, sector), or start a new one.
  2. CONTEXTUALIZE -- prefix the question with recent history so
                      follow-ups embed together with their topic.
  3. RETRIEVE      -- embed as RETRIEVAL_QUERY and search the sector.
  4. GENERATE      -- build a documentation-only prompt and call the LLM.
                      With zero fragments the fixed fallback answer is used
                      and the LLM is not called.
  5. PERSIST       -- append both turns and save the conversation.

Generation errors propagate as :class:`LLMError`; the fallback answer is
reserved for the "nothing relevant found" case.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from knowledge_assistant.models.conversation import Conversation, MessageRole
from knowledge_assistant.models.knowledge import ScoredFragment
from knowledge_assistant.models.query import QueryResult, SourceReference
from knowledge_assistant.services.conversation_context import (
    DEFAULT_CONTEXT_LIMIT,
    ConversationContext,
)
from knowledge_assistant.services.retriever import DEFAULT_MAX_RESULTS, DEFAULT_MIN_SIMILARITY
from knowledge_assistant.utils.errors import ConversationNotFoundError, ValidationError

if TYPE_CHECKING:
    from knowledge_assistant.interfaces.conversation_repository import IConversationRepository
    from knowledge_assistant.interfaces.llm_provider import ILLMProvider
    from knowledge_assistant.services.embedding_client import EmbeddingClient
    from knowledge_assistant.services.retriever import Retriever

logger = structlog.get_logger(logger_name=__name__)


class QueryPipeline:
    """Answers questions from a sector's documentation.

    Parameters
    ----------
    embedding_client:
        Embeds the contextual query.
    retriever:
        Finds the most similar fragments in the sector.
    llm:
        Generates the answer from the retrieved excerpts.
    conversations:
        Persists conversation history.
    max_results, min_similarity:
        Retrieval defaults used when a call does not override them.
    context_message_limit:
        Number of prior messages folded into the retrieval query.
    temperature, max_tokens:
        Generation settings passed to the LLM.
    """

    _SYSTEM_PROMPT = (
        "You are an onboarding assistant for the company. Your role is to help "
        "employees understand company policies, procedures, and guidelines.\n\n"
        "IMPORTANT INSTRUCTIONS:\n"
        "- Answer ONLY based on the provided documentation context below\n"
        "- If the context doesn't contain the answer, say: "
        "\"I don't have information about that in the current documentation.\"\n"
        "- Be concise and clear in your response\n"
        "- Reference the documentation sources when applicable\n"
        "- Use a friendly, professional tone"
    )

    FALLBACK_RESPONSE = (
        "I don't have information about that in the current documentation. "
        "Please contact HR or your manager for more specific guidance."
    )

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        retriever: Retriever,
        llm: ILLMProvider,
        conversations: IConversationRepository,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        context_message_limit: int = DEFAULT_CONTEXT_LIMIT,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        self._embedding_client = embedding_client
        self._retriever = retriever
        self._llm = llm
        self._conversations = conversations
        self._max_results = max_results
        self._min_similarity = min_similarity
        self._context_message_limit = context_message_limit
        self._temperature = temperature
        self._max_tokens = max_tokens

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def query(
        self,
        user_id: str,
        sector_id: str,
        query: str,
        conversation_id: str | None = None,
        max_results: int | None = None,
        min_similarity: float | None = None,
    ) -> QueryResult:
        """Answer *query* for *user_id* within *sector_id*.

        Raises
        ------
        ValidationError
            If a required argument is blank.
        ConversationNotFoundError
            If *conversation_id* is given but unknown.
        EmbeddingError, RetrievalError, LLMError
            From the collaborators; nothing is persisted in that case.
        """
        if not user_id or not user_id.strip():
            raise ValidationError("User ID is required")
        if not sector_id or not sector_id.strip():
            raise ValidationError("Sector ID is required")
        if not query or not query.strip():
            raise ValidationError("Query is required")

        conversation = await self._resolve_conversation(user_id, sector_id, conversation_id)

        # CONTEXTUALIZE -- history is taken before the new user turn is
        # appended, otherwise the question would appear twice in the
        # retrieval text.  Only the retrieval query carries history; the
        # LLM prompt below gets the raw question.
        context = ConversationContext(conversation.messages)
        conversation = conversation.add_message(
            conversation.new_message(MessageRole.USER, query)
        )
        contextual_query = context.contextualize(query, self._context_message_limit)

        # RETRIEVE -- RETRIEVAL_QUERY lets asymmetric models (nomic) embed the
        # question differently from the stored documents.
        query_vector = await self._embedding_client.embed_query(contextual_query)
        hits = await self._retriever.search(
            query_vector,
            sector_id,
            limit=max_results if max_results is not None else self._max_results,
            min_similarity=(
                min_similarity if min_similarity is not None else self._min_similarity
            ),
        )

        # GENERATE -- with nothing above the threshold the LLM has no grounding
        # and would answer from its own knowledge, so the fixed fallback is
        # used and the call is skipped entirely.
        if hits:
            response = await self._llm.complete(
                system_prompt=self._SYSTEM_PROMPT,
                user_prompt=self.build_user_prompt(query, hits),
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        else:
            logger.info(
                "query_fallback",
                conversation_id=conversation.id,
                sector_id=sector_id,
            )
            response = self.FALLBACK_RESPONSE

        # PERSIST -- both turns are saved in one write, and only after
        # generation succeeded; a failed call leaves the history untouched.
        fragment_ids = [h.fragment.id for h in hits]
        conversation = conversation.add_message(
            conversation.new_message(
                MessageRole.ASSISTANT,
                response,
                metadata={"source_fragments": fragment_ids, "sources_count": len(hits)},
            )
        )
        conversation = await self._conversations.save(conversation)

        if hits:
            logger.info(
                "query_answered",
                conversation_id=conversation.id,
                sector_id=sector_id,
                sources=len(hits),
                top_similarity=round(hits[0].similarity, 4),
            )

        return QueryResult(
            response=response,
            conversation_id=conversation.id,
            sources=[self._to_reference(h) for h in hits],
            timestamp=datetime.now(tz=timezone.utc),  # noqa: UP017
            metadata={
                "model": self._llm.get_model_name(),
                "temperature": self._temperature,
                # Every retrieved fragment goes into the prompt, so the two
                # counts are always equal.
                "fragments_retrieved": len(hits),
                "fragments_used": len(hits),
            },
        )

    async def close(self) -> None:
        """Release the knowledge-store connections held by the retriever."""
        await self._retriever.close()

    @staticmethod
    def build_user_prompt(query: str, hits: list[ScoredFragment]) -> str:
        """Numbered documentation excerpts followed by the raw question."""
        excerpts = "\n\n".join(
            f"[{i}] {hit.fragment.content}" for i, hit in enumerate(hits, start=1)
        )
        return (
            f"DOCUMENTATION CONTEXT:\n{excerpts}\n\n"
            f"USER QUESTION:\n{query}\n\n"
            "ANSWER:"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve_conversation(
        self, user_id: str, sector_id: str, conversation_id: str | None
    ) -> Conversation:
        if conversation_id:
            conversation = await self._conversations.find_by_id(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError()
            return conversation

        # Without an explicit id the user's most recent conversation in this
        # sector is continued, so follow-ups from the CLI keep their context.
        existing = await self._conversations.find_by_user_and_sector(user_id, sector_id)
        if existing is not None:
            return existing
        logger.debug("conversation_started", user_id=user_id, sector_id=sector_id)
        return Conversation(user_id=user_id, sector_id=sector_id)

    @staticmethod
    def _to_reference(hit: ScoredFragment) -> SourceReference:
        return SourceReference(
            id=hit.fragment.id or "",
            content=hit.fragment.content,
            source_id=hit.fragment.source_id,
            similarity=hit.similarity,
            metadata=hit.fragment.metadata,
        )
