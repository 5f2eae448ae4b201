"""Chat assistant that answers questions about one professional's CV."""
from dataclasses import dataclass, field
from typing import Any, Dict, List

import structlog

from cvportal import config
from cvportal.models import ChatServiceConfig, ParsedCV
from cvportal.rag.retriever import ContextSource, RAGQueryProcessor
from cvportal.rag.store import VectorStore

logger = structlog.get_logger()

SYSTEM_PROMPT_TEMPLATE = """You are an AI assistant representing {name}, a {title}.

Professional Context:
- Name: {name}
- Title: {title}
- Key Skills: {skills}
- Experience: {experience_count} positions
- Education: {education_count} qualifications

Instructions:
1. Answer questions about {name}'s professional background, skills, and experience
2. Use the provided context from their CV to give accurate, specific responses
3. Be conversational, helpful, and professional
4. If asked about something not in the CV, politely mention you can only discuss information from their professional profile
5. Always refer to the person in third person ("they", "their") when discussing their background

Tone: Professional yet approachable, knowledgeable about their field"""

NO_CONTEXT_TEMPLATE = (
    "I can help answer questions about {name}'s professional background. "
    "However, I don't have specific information about that topic in their CV. "
    "Is there something else about their experience, skills, or qualifications "
    "you'd like to know?"
)

CONTEXT_PROMPT_TEMPLATE = """Based on {name}'s professional background:

{context}

Question: {query}

Please provide a helpful response about {name}'s background."""


def build_chat_config(profile: ParsedCV) -> ChatServiceConfig:
    """Derive the assistant's prompts from the profile."""
    info = profile.personal_info
    name = (info.name if info else None) or "this professional"
    title = (info.title if info else None) or "professional"
    skills = profile.skill_list()[:10]

    return ChatServiceConfig(
        model=config.CHAT_MODEL,
        system_prompt=SYSTEM_PROMPT_TEMPLATE.format(
            name=name,
            title=title,
            skills=", ".join(skills) if skills else "various professional skills",
            experience_count=len(profile.experience),
            education_count=len(profile.education),
        ),
        no_context_reply=NO_CONTEXT_TEMPLATE.format(name=name),
    )


@dataclass
class ChatAnswer:
    answer: str
    sources: List[ContextSource] = field(default_factory=list)
    used_context: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "usedContext": self.used_context,
        }


class ChatService:
    """Retrieves context for a question and asks the chat model to answer it."""

    def __init__(
        self,
        query_processor: RAGQueryProcessor,
        llm,
        chat_config: ChatServiceConfig,
        professional_name: str = "this professional",
    ):
        """Initialize the chat service.

        Args:
            query_processor: Context retrieval over the portal's vector store
            llm: Client with ``async chat(messages, model, temperature, max_tokens)``
            chat_config: Prompts and sampling settings
            professional_name: Name used in the context prompt
        """
        self.query_processor = query_processor
        self.llm = llm
        self.chat_config = chat_config
        self.professional_name = professional_name

    async def answer(self, query: str, store: VectorStore) -> ChatAnswer:
        """Answer a visitor question.

        An empty retrieval result returns the fixed no-context reply without
        calling the chat model.

        Raises:
            httpx.HTTPError: If the chat model call fails
        """
        retrieved = await self.query_processor.retrieve_context(query, store)

        if retrieved.is_empty:
            logger.info("chat_answered_without_context", query_preview=query[:100])
            return ChatAnswer(answer=self.chat_config.no_context_reply)

        messages = [
            {"role": "system", "content": self.chat_config.system_prompt},
            {
                "role": "user",
                "content": CONTEXT_PROMPT_TEMPLATE.format(
                    name=self.professional_name,
                    context=retrieved.context,
                    query=query,
                ),
            },
        ]

        reply = await self.llm.chat(
            messages,
            model=self.chat_config.model,
            temperature=self.chat_config.temperature,
            max_tokens=self.chat_config.max_tokens,
        )

        logger.info(
            "chat_answered",
            response_length=len(reply),
            context_tokens=retrieved.token_count,
            source_count=len(retrieved.sources),
        )
        return ChatAnswer(answer=reply, sources=retrieved.sources, used_context=True)
