"""
Relevance classifier - asks a local LM Studio model whether a post is about a keyword.

LM Studio speaks the OpenAI chat-completions protocol, so we use the openai SDK
pointed at {lm_studio_url}/v1. Hard timeout on every call.

Parsing is tolerant: reasoning models wrap output in <think> blocks and smaller
models drift from JSON, so we fall back to a YES/NO reading before giving up.
Transport failures raise ClassifierError; an unreadable reply is NOT an error and
yields a not-relevant, zero-confidence verdict.
"""
import json
import logging
import re
import time
from typing import Optional

from feedwatch.models.queue import ClassificationResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes Reddit posts for relevance. "
    "Always respond with valid JSON."
)

PROMPT_TEMPLATE = """You are a helpful assistant that determines if Reddit posts are relevant to a specific topic.

Topic: "{keyword}"

Reddit Post Title: "{title}"
Reddit Post Content: "{body}"

Is this post relevant to the topic "{keyword}"? Consider:
1. Does the post directly discuss the topic?
2. Is it asking questions about the topic?
3. Is it sharing news, updates, or experiences related to the topic?
4. Ignore posts that only mention the keyword in passing or unrelated context.

Respond with a JSON object containing:
- "relevant": true or false
- "reasoning": brief explanation (1-2 sentences)
- "confidence": number between 0 and 1

Example response:
{{"relevant": true, "reasoning": "The post discusses new features in the latest update.", "confidence": 0.9}}"""

YES_NO_CONFIDENCE = 0.5

_HTML_ENTITIES = {
    "&amp;": "&",
    "&nbsp;": " ",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}


class ClassifierError(Exception):
    """The model could not be reached or returned a non-OK response."""
    pass


def clean_html_entities(content: Optional[str], max_length: int = 2000) -> str:
    text = content or "No content"
    for entity, char in _HTML_ENTITIES.items():
        text = text.replace(entity, char)
    return text[:max_length]


def build_prompt(keyword: str, title: str, body: str) -> str:
    return PROMPT_TEMPLATE.format(
        keyword=keyword,
        title=title,
        body=clean_html_entities(body),
    )


def _sanitize_output_text(text: str) -> str:
    """Remove hidden reasoning blocks returned by reasoning models."""
    if not text:
        return ""
    cleaned = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL | re.IGNORECASE)
    return cleaned.strip()


def parse_yes_no(text: str) -> Optional[bool]:
    """
    Read a YES/NO verdict. Tries, in order: "Answer: YES", a YES/NO alone on a
    line, then the last YES/NO anywhere. Returns None if there is none.
    """
    answer = re.search(r"Answer:\s*(YES|NO)\b", text, flags=re.IGNORECASE)
    if answer:
        return answer.group(1).upper() == "YES"

    standalone = re.search(r"(?:^|\n)\s*(YES|NO)\s*(?:\n|$)", text, flags=re.IGNORECASE)
    if standalone:
        return standalone.group(1).upper() == "YES"

    every = re.findall(r"\b(YES|NO)\b", text, flags=re.IGNORECASE)
    if every:
        return every[-1].upper() == "YES"
    return None


def _extract_json_object(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        return None


def parse_classification(raw: str) -> ClassificationResult:
    """Turn raw model output into a verdict. Never raises."""
    text = _sanitize_output_text(raw)

    data = _extract_json_object(text)
    if data is not None and "relevant" in data:
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        relevant = data["relevant"]
        if isinstance(relevant, str):
            relevant = relevant.strip().lower() in ("true", "yes")
        return ClassificationResult(
            relevant=bool(relevant),
            reasoning=str(data.get("reasoning", "")),
            confidence=min(max(confidence, 0.0), 1.0),
        )

    verdict = parse_yes_no(text)
    if verdict is not None:
        return ClassificationResult(relevant=verdict, reasoning=text, confidence=YES_NO_CONFIDENCE)

    logger.warning("Failed to parse LM Studio response: %s", text[:200])
    return ClassificationResult(
        relevant=False,
        reasoning="Failed to parse AI response",
        confidence=0.0,
    )


class RelevanceClassifier:
    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_seconds: float = 60.0,
        api_key: str = "lm-studio",
        client=None,
    ):
        self.model = model
        if client is None:
            from openai import AsyncOpenAI
            client = AsyncOpenAI(
                base_url=f"{base_url.rstrip('/')}/v1",
                api_key=api_key,
                timeout=timeout_seconds,
                max_retries=0,
            )
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "RelevanceClassifier":
        return cls(
            base_url=settings.lm_studio_url,
            model=settings.lm_studio_model,
            timeout_seconds=settings.lm_studio_timeout_ms / 1000,
            api_key=settings.lm_studio_api_key,
        )

    async def classify(self, keyword: str, title: str, body: str) -> ClassificationResult:
        from openai import OpenAIError

        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(keyword, title, body)},
                ],
                temperature=0.3,
                max_tokens=150,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise ClassifierError(f"LM Studio error: {e}") from e
        latency_ms = int((time.monotonic() - start) * 1000)

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        result = parse_classification(content)
        logger.debug(
            "Classified in %dms: relevant=%s confidence=%.2f",
            latency_ms, result.relevant, result.confidence,
            extra={"keyword": keyword},
        )
        return result

    async def check_health(self) -> bool:
        """True when the model server answers /v1/models."""
        try:
            models = await self._client.models.list()
            names = [m.id for m in models.data]
            logger.info("LM Studio is healthy. Available models: %s", ", ".join(names))
            return True
        except Exception as e:
            logger.warning("LM Studio health check failed: %s", str(e))
            return False

    async def aclose(self) -> None:
        await self._client.close()
