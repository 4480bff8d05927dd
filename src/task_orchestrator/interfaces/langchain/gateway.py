"""AI gateway backed by an OpenAI chat model through LangChain."""

import json
import logging
from typing import Any

from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from task_orchestrator.config import DEFAULT_PLANNER_MODEL
from task_orchestrator.key_storage.key_manager import APIKeyManager

GATEWAY_PROMPT = """You are an AI assistant embedded in a software development workflow.
Answer precisely. When asked for JSON, reply with JSON only.

Current workspace context:
{context}"""


class LangChainGateway:
    """Sends prompts with workspace context to a chat model."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_PLANNER_MODEL,
        temperature: float = 0,
    ):
        """Initialize the gateway.

        Args:
            api_key: OpenAI API key; resolved through APIKeyManager when omitted
            model: Chat model name
            temperature: Sampling temperature
        """
        self.logger = logging.getLogger(__name__)

        if api_key is None:
            api_key, _ = APIKeyManager().get_api_key()
        if not api_key:
            raise ValueError(
                "No API key found. Please configure an OpenAI API key through "
                "environment variables or the OS keychain."
            )

        self.model = model
        self.llm = ChatOpenAI(api_key=SecretStr(api_key), model=model, temperature=temperature)
        self.prompt = ChatPromptTemplate.from_messages(
            [
                ("system", GATEWAY_PROMPT),
                ("user", "{prompt}"),
            ]
        )

    async def send_message(self, prompt: str, context: dict[str, Any]) -> str:
        chain = self.prompt | self.llm
        self.logger.debug(f"Sending {len(prompt)} character prompt to {self.model}")
        response = await chain.ainvoke(
            {"prompt": prompt, "context": json.dumps(context, indent=2, default=str)}
        )
        return _text_content(response.content)


def _text_content(content: Any) -> str:
    """Flatten message content that may be a list of text blocks."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)
