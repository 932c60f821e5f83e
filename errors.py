"""
errors.py — Exception taxonomy for the opportunity crawler.

status_code mirrors the HTTP status an outer API layer should answer with.
"""


class CrawlerError(Exception):
    """Base exception for the crawler core"""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CrawlerError):
    """Input rejected before any state change"""

    status_code = 400


class ConflictError(CrawlerError):
    """Duplicate url, already-running crawl, or delete with a running crawl"""

    status_code = 409


class NotFoundError(CrawlerError):
    """Unknown source, crawl log or draft id"""

    status_code = 404

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidStateError(CrawlerError):
    """Operation not allowed in the record's current state"""

    status_code = 400


# --- Fetch-time errors (recorded on the crawl log, never raised to start_crawl callers) ---

class FetchError(CrawlerError):
    """Base class for errors retrieving a source page"""

    status_code = 502


class FetchTimeout(FetchError):
    """The request exceeded the fetch timeout"""

    status_code = 504

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Request to {url} timed out after {timeout:g}s")


class HttpStatusError(FetchError):
    """The server answered with a non-2xx/3xx status"""

    def __init__(self, url: str, code: int):
        self.url = url
        self.code = code
        super().__init__(f"HTTP {code} fetching {url}")


class NetworkError(FetchError):
    """Connection, DNS, TLS or redirect-loop failure"""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Network error fetching {url}: {reason}")


class UnsupportedContentType(FetchError):
    """The response is not an HTML document"""

    status_code = 415

    def __init__(self, url: str, content_type: str | None):
        self.url = url
        self.content_type = content_type
        super().__init__(
            f"Unsupported content type for {url}: {content_type or 'missing'}"
        )


# --- Extraction-time errors ---

class ExtractionError(CrawlerError):
    """AI extraction could not complete"""

    status_code = 502


class ExtractionTimeout(ExtractionError):
    """The model call exceeded the extraction timeout"""

    status_code = 504

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"AI extraction timed out after {timeout:g}s")
