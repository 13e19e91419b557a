"""Narrow LLM interfaces used by chunkers, the classifier and the extractor."""
import json
import logging
import re
from typing import Any, Dict, Optional, Sequence

from services.llm_client import LLMClient, LLMClientError

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_payload(text: str) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of an LLM reply, or None."""
    if not text:
        return None
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?", "", cleaned).rstrip("`").strip()
    match = _JSON_BLOCK.search(cleaned)
    if not match:
        return None
    try:
        payload = json.loads(match.group(0))
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class LLMOracle:
    """
    Ask the LLM for a label or a JSON document.

    Every method returns None instead of raising: a failed call, an unknown
    label or a non-JSON reply all mean "no signal" and callers fall back to
    their deterministic rules.
    """

    def __init__(self, llm_client: LLMClient, model: Optional[str] = None):
        self.llm_client = llm_client
        self.model = model

    async def classify(
        self,
        text: str,
        options: Sequence[str],
        instruction: str = "Classify the text."
    ) -> Optional[str]:
        """
        Pick one label from `options` for `text`.

        Args:
            text: Text to classify
            options: Allowed labels (matched case-insensitively)
            instruction: Task description placed before the text

        Returns:
            One of `options`, or None when the LLM gives no usable answer
        """
        prompt = (
            f"{instruction}\n\n"
            f"Text:\n{text}\n\n"
            f"Answer with exactly one of: {', '.join(options)}. "
            f"Reply with the label only."
        )
        try:
            response = await self.llm_client.complete(
                [{"role": "user", "content": prompt}],
                temperature=0.0,
                max_tokens=10,
                model=self.model
            )
        except LLMClientError as e:
            logger.warning(f"Oracle classify failed: {e.error.code}")
            return None

        answer = response.text.strip().strip(".\"'`").lower()
        for option in options:
            if answer == option.lower():
                return option
        # Tolerate "Label: experience" style replies
        last_word = answer.split()[-1] if answer else ""
        for option in options:
            if last_word == option.lower():
                return option

        logger.debug(f"Oracle returned unusable label: {response.text[:50]!r}")
        return None

    async def complete_json(
        self,
        system: str,
        prompt: str,
        max_tokens: int = 800
    ) -> Optional[Dict[str, Any]]:
        """Run a completion expected to return a JSON object."""
        try:
            response = await self.llm_client.complete(
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
                max_tokens=max_tokens,
                model=self.model
            )
        except LLMClientError as e:
            logger.warning(f"Oracle JSON completion failed: {e.error.code}")
            return None

        payload = parse_json_payload(response.text)
        if payload is None:
            logger.warning("Oracle reply was not valid JSON")
        return payload

    async def complete_text(self, prompt: str, max_tokens: int = 100) -> Optional[str]:
        try:
            response = await self.llm_client.complete(
                [{"role": "user", "content": prompt}],
                temperature=0.2,
                max_tokens=max_tokens,
                model=self.model
            )
        except LLMClientError as e:
            logger.warning(f"Oracle text completion failed: {e.error.code}")
            return None
        text = response.text.strip()
        return text or None


class NullOracle:
    """Oracle that never has an opinion; exercises fallback paths only."""

    async def classify(self, text: str, options: Sequence[str], instruction: str = "") -> Optional[str]:
        return None

    async def complete_json(self, system: str, prompt: str, max_tokens: int = 800) -> Optional[Dict[str, Any]]:
        return None

    async def complete_text(self, prompt: str, max_tokens: int = 100) -> Optional[str]:
        return None
