"""
extractor.py — Claude-powered extraction of opportunity postings from page HTML.
Malformed model output never raises: it is logged and treated as "nothing found".
"""

import json
from datetime import date
from typing import Optional
from urllib.parse import urljoin

import anthropic

from config import (
    ANTHROPIC_API_KEY, CATEGORIES, EXTRACTION_DEFAULT_LOCATION, EXTRACTION_MAX_TOKENS,
    EXTRACTION_MODEL, EXTRACTION_TIMEOUT, FALLBACK_CATEGORY, MAX_CONTENT_CHARS,
)
from errors import ExtractionTimeout
from models import OpportunityType, ParsedOpportunity
from monitoring import get_logger

logger = get_logger("extractor")

EXTRACTION_PROMPT = """You are extracting student opportunities (scholarships, internships, fellowships and grants) from a web page.

Today's date is {today}.

Read the HTML below and list every distinct opportunity posting it contains. Ignore navigation, ads, news articles and anything that is not an opportunity someone can apply to.

For each opportunity return an object with exactly these fields:
- "title": the opportunity's name
- "description": one or two sentences describing it
- "type": one of "scholarship", "internship", "fellowship", "grant" (lowercase, nothing else)
- "deadline": the application deadline as YYYY-MM-DD. If there is no deadline, or the deadline is already in the past, use "{far_future}". Never return a past date.
- "link": the URL of the opportunity's own page if present, otherwise the page URL
- "location": where it takes place or who may apply, or "{default_location}" if unknown
- "amount": the award or stipend as written (e.g. "$5,000", "Full tuition"), or null
- "category": exactly one of: {categories}. If none fits, use "{fallback_category}".

You MUST respond with a JSON array only, no markdown, no backticks, no other text. Return [] if the page has no opportunities.
[{{"title": "Global Excellence Scholarship", "description": "Merit award for international undergraduates.", "type": "scholarship", "deadline": "2026-03-01", "link": "https://example.org/global-excellence", "location": "Worldwide", "amount": "$25,000", "category": "{example_category}"}}]

HTML:
{content}"""


class ExtractionEngine:
    """Turns raw page HTML into candidate opportunities with one model call."""

    def __init__(
        self,
        api_key: str = ANTHROPIC_API_KEY,
        model: str = EXTRACTION_MODEL,
        max_tokens: int = EXTRACTION_MAX_TOKENS,
        max_content_chars: int = MAX_CONTENT_CHARS,
        timeout: float = EXTRACTION_TIMEOUT,
        categories: Optional[list[str]] = None,
        client=None,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.max_content_chars = max_content_chars
        self.timeout = timeout
        self.categories = list(categories if categories is not None else CATEGORIES)
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def build_prompt(self, html_content: str, today: Optional[date] = None) -> str:
        today = today or date.today()
        return EXTRACTION_PROMPT.format(
            today=today.isoformat(),
            far_future=date(today.year + 1, 12, 31).isoformat(),
            default_location=EXTRACTION_DEFAULT_LOCATION,
            categories=", ".join(f'"{c}"' for c in self.categories),
            fallback_category=FALLBACK_CATEGORY,
            example_category=self.categories[0] if self.categories else FALLBACK_CATEGORY,
            content=html_content[:self.max_content_chars],
        )

    async def parse_content_to_opportunities(
        self,
        html_content: str,
        base_url: Optional[str] = None,
    ) -> list[ParsedOpportunity]:
        """
        Extract candidates from page HTML. Returns [] for empty content, a
        missing API key, API errors and unparseable responses.
        Raises ExtractionTimeout if the model call times out.
        """
        if not html_content or not html_content.strip():
            return []

        if self._client is None and not self.api_key:
            logger.error("ANTHROPIC_API_KEY not set — cannot extract opportunities")
            return []

        if len(html_content) > self.max_content_chars:
            logger.info(f"Truncating content from {len(html_content)} to {self.max_content_chars} chars")

        items = await self._call_claude(self.build_prompt(html_content))
        if items is None:
            return []

        candidates = []
        for item in items:
            candidate = self._to_candidate(item, base_url)
            if candidate is not None:
                candidates.append(candidate)

        dropped = len(items) - len(candidates)
        logger.info(
            f"Extraction complete: {len(candidates)} candidates"
            + (f" ({dropped} invalid items dropped)" if dropped else "")
        )
        return candidates

    async def _call_claude(self, prompt: str) -> Optional[list]:
        """Call Claude and parse a JSON array from the response."""
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
            text = _reply_text(response)
        except anthropic.APITimeoutError:
            raise ExtractionTimeout(self.timeout) from None
        except anthropic.APIError as e:
            logger.error(f"Claude API error: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected Claude response: {type(e).__name__}: {e}")
            return None

        if not text:
            logger.warning("Claude response contained no text block")
            return None

        # Clean up response — remove markdown code fences if present
        if text.startswith("```"):
            text = text.split("\n", 1)[-1]
            if text.endswith("```"):
                text = text[:-3]
            text = text.strip()

        start, end = text.find("["), text.rfind("]")
        if start == -1 or end < start:
            logger.warning(f"Claude response contained no JSON array: {text[:200]}")
            return None

        try:
            result = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse Claude JSON response: {e}")
            return None

        if not isinstance(result, list):
            logger.warning(f"Claude response was not a list: {type(result).__name__}")
            return None
        return result

    def _to_candidate(self, item, base_url: Optional[str]) -> Optional[ParsedOpportunity]:
        """Validate one raw item. Returns None for items that cannot be used."""
        if not isinstance(item, dict):
            return None

        title = _clean(item.get("title"))
        if not title:
            return None

        try:
            opportunity_type = OpportunityType(_clean(item.get("type")).lower())
        except ValueError:
            logger.debug(f"Dropping '{title}': unsupported type {item.get('type')!r}")
            return None

        link = _clean(item.get("link"))
        if base_url:
            link = urljoin(base_url, link) if link else base_url

        category = _clean(item.get("category"))
        if category not in self.categories:
            category = FALLBACK_CATEGORY

        return ParsedOpportunity(
            title=title,
            type=opportunity_type,
            description=_clean(item.get("description")),
            link=link,
            location=_clean(item.get("location")) or EXTRACTION_DEFAULT_LOCATION,
            category=category,
            deadline=_clean(item.get("deadline")) or None,
            amount=_clean(item.get("amount")) or None,
        )


def _reply_text(response) -> str:
    """Text of the first text block; "" when the reply has none."""
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", "text") == "text":
            return (getattr(block, "text", "") or "").strip()
    return ""


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()
