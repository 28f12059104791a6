"""Direct Anthropic API integration for LLM operations."""

import os
from typing import Any, Dict, List, Optional

from anthropic import Anthropic

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT_SECONDS = 60.0


def _extract_text(response: Any) -> str:
    if hasattr(response, 'content') and response.content:
        text_parts = []
        for block in response.content:
            if hasattr(block, 'text'):
                text_parts.append(block.text)
            elif isinstance(block, dict) and 'text' in block:
                text_parts.append(block['text'])
        return "".join(text_parts)
    return ""


def _extract_tool_input(response: Any, tool_name: str) -> Optional[Any]:
    for block in getattr(response, 'content', None) or []:
        block_type = getattr(block, 'type', None)
        if block_type is None and isinstance(block, dict):
            block_type = block.get('type')
        if block_type != 'tool_use':
            continue
        name = getattr(block, 'name', None) if not isinstance(block, dict) else block.get('name')
        if name != tool_name:
            continue
        return getattr(block, 'input', None) if not isinstance(block, dict) else block.get('input')
    return None


class LLMClientWrapper:
    """Wrapper around the Anthropic client with prompt and structured-output helpers."""

    def __init__(
        self,
        client: Anthropic,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def _params(self, system_prompt: str, user_prompt: str, temperature: Optional[float],
                max_tokens: Optional[int]) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = [{"role": "user", "content": user_prompt}]
        params: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": messages,
            "system": system_prompt,
        }
        if temperature is not None:
            params["temperature"] = temperature
        if self.timeout is not None:
            params["timeout"] = self.timeout
        return params

    def invoke_with_prompt(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Simplified invoke with system and user prompts.

        Args:
            system_prompt: System instructions
            user_prompt: User query
            temperature: Override default temperature (0.0-1.0)
            max_tokens: Maximum tokens in response

        Returns:
            LLM response text
        """
        params = self._params(system_prompt, user_prompt, temperature, max_tokens)
        response = self.client.messages.create(**params)
        return _extract_text(response)

    def invoke_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        tool_name: str,
        input_schema: Dict[str, Any],
        tool_description: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        """
        Ask for output matching ``input_schema`` by forcing a single tool call.

        Returns:
            The tool input (normally a dict) when the model called the tool,
            otherwise the plain response text.
        """
        params = self._params(system_prompt, user_prompt, temperature, max_tokens)
        params["tools"] = [{
            "name": tool_name,
            "description": tool_description or f"Record the {tool_name} output.",
            "input_schema": input_schema,
        }]
        params["tool_choice"] = {"type": "tool", "name": tool_name}

        response = self.client.messages.create(**params)
        tool_input = _extract_tool_input(response, tool_name)
        if tool_input is not None:
            return tool_input
        return _extract_text(response)


def build_llm_client(
    api_key: Optional[str] = None,
    model: str = DEFAULT_MODEL,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LLMClientWrapper:
    """Create an Anthropic client wrapper; SDK retries are off so callers own retry policy."""
    api_key = api_key or os.getenv('ANTHROPIC_API_KEY')
    if not api_key:
        raise ValueError("ANTHROPIC_API_KEY environment variable not set")
    client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
    return LLMClientWrapper(client, model=model, max_tokens=max_tokens, timeout=timeout)


def is_llm_available(api_key: Optional[str] = None) -> bool:
    """Check if LLM is configured."""
    return bool(api_key or os.getenv('ANTHROPIC_API_KEY'))
