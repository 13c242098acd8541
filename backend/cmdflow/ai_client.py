# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
AI Client
OpenAI-compatible chat-completions calls for workflow ai nodes.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from cmdflow.core.errors import ConfigurationError, InvocationError, InvocationTimeoutError

logger = logging.getLogger(__name__)

MODE_INSTRUCTIONS = {
    "transform": (
        "You are a data transformation assistant. Transform the input data according to "
        "the user's instructions. Return ONLY the transformed data."
    ),
    "classify": (
        "You are a classification assistant. Classify the input into the categories specified. "
        'Return a JSON object with "category" and "confidence" fields.'
    ),
    "extract": (
        "You are a data extraction assistant. Extract the requested fields from the input. "
        "Return a JSON object with the extracted fields."
    ),
    "decide": (
        "You are a decision assistant. Analyze the input and decide true or false based on the "
        'criteria. Return a JSON object: {"result": true/false, "reason": "..."}'
    ),
    "generate": "You are a content generation assistant. Generate content based on the prompt and input data.",
    "summarize": "You are a summarization assistant. Summarize the input data concisely.",
}

JSON_INSTRUCTION = (
    "\n\nIMPORTANT: Return ONLY valid JSON. No markdown, no code fences, "
    "no explanation. Just the JSON object."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def build_messages(prompt: str, input_value: Any, mode: str = "transform", json_output: bool = True) -> List[Dict]:
    """System prompt for the mode plus the user prompt with the input attached"""
    system = MODE_INSTRUCTIONS.get(mode, MODE_INSTRUCTIONS["transform"])
    if json_output:
        system += JSON_INSTRUCTION

    if isinstance(input_value, str):
        input_text = input_value
    else:
        input_text = json.dumps(input_value if input_value is not None else "", indent=2, default=str)

    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"{prompt}\n\nInput data:\n{input_text}"},
    ]


def parse_json_content(content: str) -> Any:
    """Decode model output as JSON, falling back to a fenced block, else the raw text"""
    try:
        return json.loads(content)
    except (json.JSONDecodeError, TypeError):
        pass

    match = _FENCE_RE.search(content or "")
    if match:
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            pass
    return content


class AIClient:
    """Thin chat-completions client; one instance shared by all ai nodes"""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self._http = http_client
        self._owns_http = http_client is None

    async def complete(
        self,
        messages: List[Dict],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        json_output: bool = False,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> str:
        """
        Run one chat completion and return the assistant text.

        Raises:
            ConfigurationError: No endpoint or API key
            InvocationTimeoutError: Request exceeded timeout
            InvocationError: Transport failure or non-2xx response
        """
        url = api_url or self.api_url
        key = api_key or self.api_key
        if not url:
            raise ConfigurationError("No AI API endpoint configured")
        if not key:
            raise ConfigurationError("No AI API key configured")

        body: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if json_output:
            body["response_format"] = {"type": "json_object"}

        if self._http is None:
            self._http = httpx.AsyncClient()
            self._owns_http = True

        logger.info(f"AI completion via {url} (model={body['model']})")
        try:
            response = await self._http.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            raise InvocationTimeoutError(f"AI request timed out after {self.timeout:g}s", timeout=self.timeout)
        except httpx.HTTPError as e:
            raise InvocationError(f"AI request failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {"error": response.text[:200]}

        if response.is_error:
            error = data.get("error") if isinstance(data, dict) else None
            if isinstance(error, dict):
                error = error.get("message")
            raise InvocationError(f"AI API error ({response.status_code}): {error or json.dumps(data)[:200]}")

        choices = data.get("choices") or []
        if choices:
            return (choices[0].get("message") or {}).get("content") or ""
        return data.get("content") or ""

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
