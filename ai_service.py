import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import settings
from validators import DateValidator, TextValidator


logger = logging.getLogger(__name__)

CATEGORIES = ["技术", "科幻", "文学", "历史", "艺术", "管理", "其他"]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class BookSuggestion:
    """Catalog fields proposed by the assistant for a title. Advisory only."""
    author: str = ""
    category: str = ""
    summary: str = ""
    isbn: str = ""
    publish_date: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author,
            "category": self.category,
            "summary": self.summary,
            "isbn": self.isbn,
            "publish_date": self.publish_date,
        }

    def merged_into(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Fill the empty fields of a create/update payload with the suggestion."""
        merged = dict(payload)
        for key, value in self.to_dict().items():
            if value and not merged.get(key):
                merged[key] = value
        return merged


class BookMetadataService:
    """Asks a Gemini model for catalog metadata given a book title.

    Every failure (feature disabled, no key, network error, unexpected
    reply) is logged and reported as ``None``; callers treat that as "no
    suggestion".
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = settings.gemini_base_url.rstrip("/")
        self.timeout = settings.ai_timeout
        self._transport = transport

    def is_available(self) -> bool:
        return settings.enable_ai_features and bool(self.api_key)

    @staticmethod
    def build_prompt(title: str) -> str:
        return (
            f'请为书名"{title}"提供详细信息。以JSON格式返回，包含：author(作者)、'
            f"category(分类：{'/'.join(CATEGORIES)}之一)、summary(50-100字中文简介)、"
            "isbn(ISBN号)、publishDate(出版日期，YYYY-MM-DD格式)。"
        )

    async def _generate(self, prompt: str) -> Optional[str]:
        """Send one prompt and return the model's reply text."""
        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException:
            logger.error(f"Gemini request timed out after {self.timeout}s")
            return None
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            return None

        response_time_ms = int((time.time() - start_time) * 1000)
        if response.status_code != 200:
            logger.error(f"Gemini request failed: {response.status_code} - {response.text[:200]}")
            return None

        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.error("Gemini reply had an unexpected shape")
            return None
        logger.info(f"Gemini reply received in {response_time_ms}ms ({len(text)} chars)")
        return text

    @staticmethod
    def parse_suggestion(text: str) -> Optional[BookSuggestion]:
        """Pull the first JSON object out of free text and keep the known fields."""
        match = _JSON_OBJECT.search(text or "")
        if not match:
            return None
        try:
            data = json.loads(match.group(0))
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None

        def field(key: str) -> str:
            value = data.get(key)
            return TextValidator.sanitize_text(str(value)) if value is not None else ""

        publish_date = field("publishDate")
        return BookSuggestion(
            author=field("author"),
            category=field("category"),
            summary=field("summary"),
            isbn=field("isbn"),
            publish_date=publish_date if DateValidator.is_iso_date(publish_date) else "",
        )

    async def suggest_book_metadata(self, title: str) -> Optional[BookSuggestion]:
        if not title or not title.strip():
            return None
        if not self.is_available():
            logger.warning("AI metadata assistant is not configured")
            return None

        text = await self._generate(self.build_prompt(title.strip()))
        if text is None:
            return None
        suggestion = self.parse_suggestion(text)
        if suggestion is None:
            logger.warning(f"Could not read a metadata suggestion for {title!r}")
        return suggestion
