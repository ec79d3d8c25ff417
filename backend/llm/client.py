"""
LLM client wrapper for OpenAI-compatible chat completion APIs.
Handles request retries, response cleaning and JSON extraction.
"""
import json
import time
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple

import requests

from utils.config import config
from utils.cleaning import ResponseCleaner

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Structured response from LLM."""
    content: str
    is_valid: bool
    raw_response: Dict[str, Any]
    tokens_used: int = 0
    model: str = ""


class LLMClient:
    """
    Client for an OpenAI-compatible /chat/completions endpoint.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = (base_url or config.llm.base_url).rstrip("/")
        self.completion_url = f"{self.base_url}{config.llm.completion_endpoint}"
        self.api_key = api_key if api_key is not None else config.llm.api_key
        self.timeout = config.llm.timeout
        self.max_retries = config.llm.max_retries
        logger.info(f"LLM Client initialized: {self.completion_url} (timeout={self.timeout}s)")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _make_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Make HTTP request to LLM server with retries."""
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                response = requests.post(
                    self.completion_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()
            except requests.exceptions.Timeout as e:
                last_error = e
                if attempt < self.max_retries:
                    time.sleep(1 * (attempt + 1))
            except requests.exceptions.RequestException as e:
                last_error = e
                if attempt < self.max_retries:
                    time.sleep(0.5 * (attempt + 1))

        raise ConnectionError(f"Failed to reach LLM server after {self.max_retries + 1} attempts: {last_error}")

    def generate(
        self,
        prompt: Optional[str] = None,
        messages: Optional[List[Dict[str, str]]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            prompt: Single user prompt (used when messages is not given)
            messages: Full chat message list (system/user/assistant)
            max_tokens: Maximum tokens to generate (None uses default)
            temperature: Sampling temperature (None uses default)
            model: Model name (None uses the default model)
            json_mode: Ask the server for a JSON object response

        Returns:
            LLMResponse with raw content; is_valid is False on any failure
        """
        if messages is None:
            messages = [{"role": "user", "content": prompt or ""}]

        model_name = model or config.llm.model
        payload = {
            "model": model_name,
            "messages": messages,
            "max_tokens": max_tokens or config.llm.default_max_tokens,
            "temperature": config.llm.default_temperature if temperature is None else temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            response = self._make_request(payload)
            choices = response.get("choices") or [{}]
            content = (choices[0].get("message") or {}).get("content") or ""
            tokens = (response.get("usage") or {}).get("total_tokens", 0)

            return LLMResponse(
                content=content,
                is_valid=bool(content.strip()),
                raw_response=response,
                tokens_used=tokens,
                model=model_name,
            )
        except Exception as e:
            logger.warning(f"LLM request failed ({model_name}): {e}")
            return LLMResponse(
                content="",
                is_valid=False,
                raw_response={"error": str(e)},
                tokens_used=0,
                model=model_name,
            )

    def generate_text(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 300,
        temperature: float = 0.7,
        model: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """
        Generate an interviewer reply with cleaning.

        Returns:
            Tuple of (cleaned_text, is_valid)
        """
        response = self.generate(messages=messages, max_tokens=max_tokens, temperature=temperature, model=model)

        if not response.is_valid:
            logger.warning(f"LLM response invalid: {response.raw_response.get('error', 'empty content')}")
            return "", False

        cleaned, is_valid = ResponseCleaner.clean_interviewer_response(response.content)
        logger.info(f"Cleaned response (valid={is_valid}): {cleaned[:100] if cleaned else 'EMPTY'}")
        return cleaned, is_valid

    def generate_json(
        self,
        prompt: str,
        max_tokens: int = 300,
        temperature: float = 0.0,
        model: Optional[str] = None,
    ) -> Tuple[Optional[Dict], bool]:
        """
        Generate a JSON object response.

        Returns:
            Tuple of (parsed_json, is_valid)
        """
        response = self.generate(
            prompt=prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            model=model,
            json_mode=True,
        )

        if not response.is_valid:
            return None, False

        cleaned = ResponseCleaner.clean_json_response(response.content)

        try:
            return json.loads(cleaned), True
        except json.JSONDecodeError:
            try:
                # Fix trailing commas
                fixed = cleaned.replace(",}", "}").replace(",]", "]")
                return json.loads(fixed), True
            except json.JSONDecodeError:
                logger.warning(f"Could not parse JSON from LLM: {cleaned[:120]}")
                return None, False

    def health_check(self) -> bool:
        """Check if LLM server is responding."""
        try:
            response = self.generate("Hello", max_tokens=5)
            return response.is_valid
        except Exception:
            return False


# Global client instance
llm_client = LLMClient()
