from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException, Timeout

from crossword.errors import GenerationUnavailable
from crossword.llm_prompts import build_messages

log = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip()
OPENAI_ENDPOINT = os.getenv("OPENAI_ENDPOINT", "https://api.openai.com/v1/chat/completions").strip()

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini").strip()
OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

# Groq (OpenAI-compatible) fallback provider
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "").strip()
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant").strip()
GROQ_ENDPOINT = "https://api.groq.com/openai/v1/chat/completions"

try:
    TEMPERATURE = float(os.getenv("TEMPERATURE", "1.0"))
except Exception:
    TEMPERATURE = 1.0

try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1500"))
except Exception:
    LLM_MAX_TOKENS = 1500

try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "30"))
except Exception:
    LLM_TIMEOUT_SECS = 30.0


def _providers() -> List[Dict[str, str]]:
    """Configured providers in preference order."""
    out: List[Dict[str, str]] = []
    if OPENAI_API_KEY:
        out.append({"name": "openai", "endpoint": OPENAI_ENDPOINT, "model": OPENAI_MODEL, "key": OPENAI_API_KEY})
    if OPENROUTER_API_KEY:
        out.append(
            {"name": "openrouter", "endpoint": OPENROUTER_ENDPOINT, "model": OPENROUTER_MODEL, "key": OPENROUTER_API_KEY}
        )
    if GROQ_API_KEY:
        out.append({"name": "groq", "endpoint": GROQ_ENDPOINT, "model": GROQ_MODEL, "key": GROQ_API_KEY})
    return out


def status() -> Dict[str, Any]:
    providers = _providers()
    if not providers:
        return {"provider": None, "model": None, "has_token": False, "fallbacks": []}
    first = providers[0]
    return {
        "provider": first["name"],
        "model": first["model"],
        "has_token": True,
        "fallbacks": [p["name"] for p in providers[1:]],
    }


def probe() -> Dict[str, Any]:
    info = status()
    return {"ok": bool(info["has_token"]), "using": info["provider"]}


def worst_case_secs() -> float:
    """Longest generate() can take: every provider tried, each with the JSON-mode retry."""
    return max(1, len(_providers())) * 2 * LLM_TIMEOUT_SECS


def _extract_text(data: Any) -> Optional[str]:
    try:
        text = data.get("choices", [{}])[0].get("message", {}).get("content")
    except (AttributeError, IndexError, TypeError):
        return None
    if not isinstance(text, str) or not text.strip():
        return None
    return text


def _call_provider(provider: Dict[str, str]) -> Optional[str]:
    """One chat-completions request; returns the raw content or None on any failure."""
    name = provider["name"]
    headers = {
        "Authorization": f"Bearer {provider['key']}",
        "Content-Type": "application/json",
    }
    if name == "openrouter":
        headers["X-Title"] = "daily-crossword"
    body: Dict[str, Any] = {
        "model": provider["model"],
        "messages": build_messages(),
        "temperature": TEMPERATURE,
        "max_tokens": LLM_MAX_TOKENS,
    }
    # Try JSON mode if supported; retry without on 400
    body_with_json = dict(body)
    body_with_json["response_format"] = {"type": "json_object"}

    try:
        resp = requests.post(provider["endpoint"], headers=headers, json=body_with_json, timeout=LLM_TIMEOUT_SECS)
        if resp.status_code == 400:
            log.info("llm %s rejected json mode; retrying without response_format", name)
            resp = requests.post(provider["endpoint"], headers=headers, json=body, timeout=LLM_TIMEOUT_SECS)
    except Timeout:
        log.warning("llm %s timed out after %.1fs", name, LLM_TIMEOUT_SECS)
        return None
    except RequestException as e:
        log.warning("llm %s request error: %r", name, e)
        return None

    if resp.status_code != 200:
        log.warning("llm %s HTTP %s: %s", name, resp.status_code, (resp.text or "")[:400])
        return None

    try:
        data = resp.json()
    except ValueError:
        log.warning("llm %s: non-JSON HTTP body", name)
        return None

    text = _extract_text(data)
    if text is None:
        log.warning("llm %s: empty response text", name)
    return text


def generate() -> str:
    """Ask the first working provider for today's puzzle and return its raw text.

    The text is returned verbatim; it still has to go through the normalizer.
    Raises GenerationUnavailable when no provider is configured or all fail.
    """
    providers = _providers()
    if not providers:
        raise GenerationUnavailable("No LLM provider configured")
    tried: List[str] = []
    for provider in providers:
        log.info("llm attempting provider=%s model=%s", provider["name"], provider["model"])
        text = _call_provider(provider)
        if text is not None:
            log.info("llm chosen provider=%s chars=%d", provider["name"], len(text))
            return text
        tried.append(provider["name"])
    raise GenerationUnavailable(f"All LLM providers failed: {', '.join(tried)}")
