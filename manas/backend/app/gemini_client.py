from __future__ import annotations

import json
import logging
import os
import re
from typing import Optional

import requests

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_FALLBACK_MODEL = "gemini-2.0-flash-lite"
DEFAULT_TIMEOUT = 30


class GeminiError(Exception):
    """Any failure talking to the generative-language API."""


class GeminiQuotaError(GeminiError):
    pass


class GeminiAuthError(GeminiError):
    pass


class GeminiResponseError(GeminiError):
    """The model answered, but not with something we can use."""


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", cleaned)
        cleaned = re.sub(r"\s*```\s*$", "", cleaned)
    return cleaned


def parse_json_lenient(content: str) -> dict:
    if not content or not content.strip():
        raise ValueError("empty model response")
    text = strip_code_fences(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in model response")
        try:
            parsed = json.loads(text[start:end + 1])
        except json.JSONDecodeError as exc:
            raise ValueError(f"could not parse model JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("model JSON is not an object")
    return parsed


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        fallback_model: Optional[str] = DEFAULT_FALLBACK_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.model = model
        self.fallback_model = fallback_model
        self.timeout = timeout

    def _post(self, model: str, prompt: str) -> str:
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        try:
            resp = requests.post(
                GEMINI_API_URL.format(model=model),
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GeminiError(f"network error: {exc}") from exc

        if resp.status_code == 429 or (not resp.ok and "quota" in (resp.text or "").lower()):
            raise GeminiQuotaError(f"quota exhausted for {model}")
        if resp.status_code in (401, 403):
            raise GeminiAuthError(f"API key rejected ({resp.status_code})")
        if resp.status_code == 400 and "api key" in (resp.text or "").lower():
            raise GeminiAuthError("invalid API key")
        if not resp.ok:
            raise GeminiError(f"HTTP {resp.status_code}: {(resp.text or '')[:300]}")

        try:
            data = resp.json()
            parts = data["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GeminiResponseError("unexpected response shape") from exc
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise GeminiResponseError("empty model response")
        return text

    def generate(self, prompt: str) -> str:
        try:
            return self._post(self.model, prompt)
        except GeminiQuotaError:
            if not self.fallback_model:
                raise
            logger.warning("Quota hit on %s, trying %s", self.model, self.fallback_model)
            return self._post(self.fallback_model, prompt)

    def generate_json(self, prompt: str) -> dict:
        raw = self.generate(prompt)
        try:
            return parse_json_lenient(raw)
        except ValueError as exc:
            raise GeminiResponseError(str(exc)) from exc


def get_gemini_client() -> Optional[GeminiClient]:
    api_key = (os.getenv("GEMINI_API_KEY") or os.getenv("GEMINI_FALLBACK_API_KEY") or "").strip()
    if not api_key:
        return None
    try:
        timeout = float(os.getenv("GEMINI_TIMEOUT", DEFAULT_TIMEOUT))
    except ValueError:
        timeout = DEFAULT_TIMEOUT
    return GeminiClient(
        api_key=api_key,
        model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
        fallback_model=os.getenv("GEMINI_FALLBACK_MODEL", DEFAULT_FALLBACK_MODEL) or None,
        timeout=timeout,
    )
