"""Test doubles for the network-facing collaborators."""

import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

from models import OpportunityType, ParsedOpportunity


def make_candidate(**overrides) -> ParsedOpportunity:
    fields = {
        "title": "Global Excellence Scholarship",
        "type": OpportunityType.SCHOLARSHIP,
        "description": "Merit award for international undergraduates.",
        "link": "https://example.org/global-excellence",
        "location": "Worldwide",
        "category": "International Scholarships",
        "deadline": "2030-03-01",
        "amount": None,
    }
    fields.update(overrides)
    return ParsedOpportunity(**fields)


class FakeFetcher:
    def __init__(self, content: str = "<html><body>listing</body></html>", error: Exception = None):
        self.content = content
        self.error = error
        self.calls = []
        # Set to an asyncio.Event to hold every fetch until it is set
        self.gate = None

    async def fetch_page_content(self, url: str) -> str:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.content


class FakeExtractor:
    def __init__(self, results=None, error: Exception = None, delay: float = 0):
        self.results = list(results or [])
        self.error = error
        self.delay = delay
        self.calls = []

    async def parse_content_to_opportunities(self, html_content, base_url=None):
        self.calls.append((html_content, base_url))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeMessages:
    def __init__(self, text: str = "[]", error: Exception = None, blocks: list = None):
        self.text = text
        self.error = error
        self.blocks = blocks
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.blocks is not None:
            return SimpleNamespace(content=list(self.blocks))
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


class FakeClaude:
    """Stands in for anthropic.AsyncAnthropic: only messages.create is used."""

    def __init__(self, text: str = "[]", error: Exception = None, blocks: list = None):
        self.messages = FakeMessages(text, error, blocks)


_UNSET = object()


def candidate_due_in(now: datetime, days: int, deadline=_UNSET, **overrides) -> ParsedOpportunity:
    """Candidate whose deadline date is `days` calendar days after `now`."""
    if deadline is _UNSET:
        deadline = (now + timedelta(days=days)).date().isoformat()
    return make_candidate(deadline=deadline, **overrides)
