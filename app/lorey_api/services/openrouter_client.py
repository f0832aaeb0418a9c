"""Client wrapper around the OpenRouter chat-completions API."""
from __future__ import annotations

import json
import os
import re
import time
from typing import Any, Dict, List, Optional

import requests
from flask import current_app

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class LoreyServiceError(Exception):
    """Base error for failed generation calls."""


class ImageGenerationError(LoreyServiceError):
    """The image model answered without any usable image."""


class OpenRouterClient:
    """Lightweight client for text, JSON and image generation via OpenRouter."""

    DEFAULT_API_URL = "https://openrouter.ai/api/v1"
    DEFAULT_STORY_MODEL = "anthropic/claude-sonnet-4.5"
    DEFAULT_SUMMARY_MODEL = "google/gemma-2-27b-it"
    DEFAULT_IMAGE_MODEL = "google/gemini-2.5-flash-image-preview"
    DEFAULT_REFERER = "http://localhost:3000"
    DEFAULT_TIMEOUT = 300
    MAX_RETRIES = 3
    RETRY_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}
    BACKOFF_INITIAL_SECONDS = 1.5
    BACKOFF_MAX_SECONDS = 30

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        self.api_root = os.getenv("OPENROUTER_API_URL", self.DEFAULT_API_URL).rstrip("/")
        self.story_model = os.getenv("OPENROUTER_STORY_MODEL", self.DEFAULT_STORY_MODEL)
        self.summary_model = os.getenv("OPENROUTER_SUMMARY_MODEL", self.DEFAULT_SUMMARY_MODEL)
        self.image_model = os.getenv("OPENROUTER_IMAGE_MODEL", self.DEFAULT_IMAGE_MODEL)
        self.referer = os.getenv("OPENROUTER_REFERER", self.DEFAULT_REFERER)
        try:
            self.timeout = int(os.getenv("OPENROUTER_TIMEOUT_SECONDS", str(self.DEFAULT_TIMEOUT)))
        except ValueError:
            self.timeout = self.DEFAULT_TIMEOUT

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self, title: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": title,
        }

    def chat(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        title: str = "Lorey",
        extra: Optional[Dict[str, Any]] = None,
        disable_retries: bool = False,
    ) -> Dict[str, Any]:
        """POST one chat-completions request and return the decoded body.

        Retryable HTTP statuses, timeouts and connection errors are retried with
        exponential backoff; anything else is raised to the caller.
        """
        payload: Dict[str, Any] = {"model": model or self.story_model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if extra:
            payload.update(extra)

        attempt = 0
        backoff = self.BACKOFF_INITIAL_SECONDS
        max_attempts = 1 if disable_retries else self.MAX_RETRIES

        while attempt < max_attempts:
            try:
                response = requests.post(
                    f"{self.api_root}/chat/completions",
                    json=payload,
                    headers=self._headers(title),
                    timeout=self.timeout,
                )
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError as exc:
                    current_app.logger.error("Failed to parse OpenRouter response as JSON: %s", exc)
                    return {}

            except requests.exceptions.HTTPError as exc:
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code in self.RETRY_STATUS_CODES and attempt < max_attempts - 1:
                    wait = min(backoff, self.BACKOFF_MAX_SECONDS)
                    current_app.logger.warning(
                        "OpenRouter HTTP %s for model %s. Retrying in %.1fs (attempt %s/%s).",
                        status_code,
                        payload["model"],
                        wait,
                        attempt + 1,
                        max_attempts,
                    )
                    time.sleep(wait)
                    attempt += 1
                    backoff *= 2
                    continue
                current_app.logger.error("OpenRouter HTTP error: %s - %s", status_code, exc)
                raise

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                if attempt < max_attempts - 1:
                    wait = min(backoff, self.BACKOFF_MAX_SECONDS)
                    current_app.logger.warning(
                        "OpenRouter request timed out/connection error (%s). Retrying in %.1fs (attempt %s/%s).",
                        exc,
                        wait,
                        attempt + 1,
                        max_attempts,
                    )
                    time.sleep(wait)
                    attempt += 1
                    backoff *= 2
                    continue
                current_app.logger.error("OpenRouter request failed after retries: %s", exc)
                raise

        return {}

    @staticmethod
    def _extract_message(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            return None
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        return message if isinstance(message, dict) else None

    def generate_text(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.8,
        max_tokens: Optional[int] = None,
        title: str = "Lorey",
    ) -> Optional[str]:
        """Send a prompt and return the first choice's text, or None."""
        if not self.is_configured:
            current_app.logger.error("OpenRouter API not configured - API key missing")
            return None

        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        data = self.chat(messages, model=model, temperature=temperature, max_tokens=max_tokens, title=title)
        content = message_text(self._extract_message(data))
        if not content.strip():
            current_app.logger.error(
                "OpenRouter response contained empty text. Full response: %s",
                str(data)[:500],
            )
            return None
        return content

    def generate_json(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.8,
        max_tokens: Optional[int] = None,
        title: str = "Lorey",
    ) -> Optional[Any]:
        """Send a prompt and attempt to parse JSON out of the response."""
        text = self.generate_text(
            prompt,
            system_instruction=system_instruction,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            title=title,
        )
        if text is None:
            return None

        parsed = parse_json_content(text)
        if parsed is None:
            current_app.logger.error(
                "OpenRouter JSON parsing failed. Text length: %s, First 500 chars: %s",
                len(text),
                text[:500],
            )
        return parsed

    def generate_image(self, prompt: str, title: str = "Lorey - Image Generator") -> str:
        """Request one image and return its URL or data URL."""
        if not self.is_configured:
            raise ImageGenerationError("OpenRouter API key not configured")

        data = self.chat(
            [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
            model=self.image_model,
            title=title,
            extra={
                "generation_config": {"modalities": ["image", "text"]},
                "image_config": {"aspect_ratio": "1:1"},
            },
            disable_retries=True,
        )
        image_url = self._extract_image_url(data)
        if not image_url:
            raise ImageGenerationError("No image found in response")
        return image_url

    @classmethod
    def _extract_image_url(cls, data: Dict[str, Any]) -> Optional[str]:
        """Find the first image in the shapes OpenRouter image models return."""
        message = cls._extract_message(data)
        if message is None:
            return None

        for part in message.get("images") or []:
            url = cls._image_from_part(part)
            if url:
                return url

        for image in data.get("images") or []:
            if isinstance(image, dict) and image.get("url"):
                return image["url"]

        content = message.get("content")
        if isinstance(content, list):
            for part in content:
                url = cls._image_from_part(part)
                if url:
                    return url
        elif isinstance(content, str) and content.startswith("data:image"):
            return content
        return None

    @staticmethod
    def _image_from_part(part: Any) -> Optional[str]:
        if not isinstance(part, dict):
            return None
        image_url = part.get("image_url")
        if isinstance(image_url, dict) and image_url.get("url"):
            return image_url["url"]
        inline = part.get("inline_data")
        if isinstance(inline, dict) and inline.get("data"):
            mime_type = inline.get("mime_type") or "image/png"
            return f"data:{mime_type};base64,{inline['data']}"
        return None


def message_text(message: Optional[Dict[str, Any]]) -> str:
    """Text of a chat message whose content is a string or a list of parts."""
    if not message:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"] for part in content
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        )
    return ""


def parse_json_content(text: Optional[str]) -> Optional[Any]:
    """Decode the JSON value a model wrote, ignoring fences and surrounding prose.

    Models routed through OpenRouter often wrap the payload in a ```json fence
    or add a sentence before or after it. The first decodable object or array
    in the text wins.
    """
    if not text:
        return None

    text = text.strip()
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for start, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        return value
    return None


def get_openrouter_client() -> OpenRouterClient:
    """Factory helper to allow lazy imports without circular references."""
    return OpenRouterClient()
