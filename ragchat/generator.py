"""
Generator Module

Takes the retrieved context, the session history and the new user message,
and streams an answer from the chat-completions API.

PROMPT ANATOMY:

+-------------------------------------------------+
| SYSTEM MESSAGE                                  |
| - assistant role + rules (answer from context)  |
| - CONTEXT: the retriever's block, may be empty  |
+-------------------------------------------------+
| HISTORY (oldest first, at most 20 turns)        |
+-------------------------------------------------+
| USER MESSAGE                                    |
+-------------------------------------------------+
                    |
                    v
        streamed assistant answer
"""

from typing import AsyncIterator, Dict, List, Optional, Sequence

from config.settings import get_settings
from ragchat.client import AsyncClient, create_openai_client
from ragchat.logger import get_logger
from ragchat.memory import Turn

logger = get_logger(__name__)


SYSTEM_PROMPT_TEMPLATE = """You are a helpful, conversational assistant for {assistant_name}. You provide precise and accurate information based on the knowledge base provided.

IMPORTANT RULES:
- Only answer questions using the context provided below
- If the answer is not in the context, clearly state: "I don't have that information in my knowledge base."
- Be conversational, helpful, and friendly
- Do not make up or hallucinate information
- Keep responses concise but complete

CONTEXT:
{context}"""


class ChatGenerator:
    """
    Stream answers from the OpenAI chat-completions API.

    The generator owns what goes into the prompt (build_messages) and
    hands back the raw content deltas (stream); storing the final answer
    is up to the caller.
    """

    def __init__(
        self,
        client: Optional[AsyncClient] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        assistant_name: Optional[str] = None,
        system_prompt_template: str = SYSTEM_PROMPT_TEMPLATE
    ):
        """
        Initialize the generator.

        Args:
            client: Async OpenAI client (defaults to one built from settings)
            model: Chat model or Azure deployment (defaults to settings)
            temperature: Sampling temperature (defaults to settings)
            max_tokens: Maximum tokens in the answer (defaults to settings)
            assistant_name: Who the assistant speaks for (defaults to settings)
            system_prompt_template: Template with {assistant_name} and {context}
        """
        settings = get_settings()

        self.model = model or settings.openai.chat_model
        self.temperature = settings.openai.temperature if temperature is None else temperature
        self.max_tokens = settings.openai.max_tokens if max_tokens is None else max_tokens
        self.assistant_name = assistant_name or settings.assistant_name
        self.system_prompt_template = system_prompt_template
        self._client = client

    @property
    def client(self) -> AsyncClient:
        # Built on first use so prompt building works without credentials
        if self._client is None:
            self._client = create_openai_client(get_settings().openai)
        return self._client

    def build_system_prompt(self, context: str) -> str:
        return self.system_prompt_template.format(
            assistant_name=self.assistant_name,
            context=context
        )

    def build_messages(
        self,
        context: str,
        history: Sequence[Turn],
        message: str
    ) -> List[Dict[str, str]]:
        """
        Assemble the chat-completions message list.

        Returns:
            [system prompt with context, *history, new user message]
        """
        return [
            {"role": "system", "content": self.build_system_prompt(context)},
            *(turn.to_message() for turn in history),
            {"role": "user", "content": message},
        ]

    async def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """
        Stream the answer as content deltas.

        Closing the iterator early closes the underlying HTTP stream.
        """
        logger.debug("Requesting chat completion (%d messages, model %s)", len(messages), self.model)
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            stream=True,
            temperature=self.temperature,
            max_tokens=self.max_tokens
        )

        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            await response.close()

    async def generate(self, messages: List[Dict[str, str]]) -> str:
        """Collect the whole streamed answer into one string."""
        parts = []
        async for content in self.stream(messages):
            parts.append(content)
        return "".join(parts)

    async def aclose(self):
        if self._client is not None:
            await self._client.close()
