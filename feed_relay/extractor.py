from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

import aiohttp
from lxml import html as lxml_html
from readability import Document

from .exceptions import ExtractionError
from .fetcher import USER_AGENT
from .models import Article
from .summarizers import (
    ErrorClassifier,
    NullSummarizer,
    Summarizer,
    SummaryErrorKind,
    classify_error,
    trim_incomplete_sentence,
)

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 20
WARN_TEXT_LENGTH = 100

_REDUNDANT_NEWLINES = re.compile(r"\n{3,}")

_LOG_MESSAGES = {
    SummaryErrorKind.RATE_LIMITED: "Summarizer quota exceeded (429 Too Many Requests)",
    SummaryErrorKind.UNAUTHORIZED: "Summarizer unauthorized - invalid API key",
    SummaryErrorKind.TOO_SHORT: "Article text is too short to summarize",
    SummaryErrorKind.SERVER_ERROR: "Summarizer server error",
    SummaryErrorKind.DISABLED: "Summarizer is not configured, skipping summary generation",
    SummaryErrorKind.OTHER: "Failed to generate summary",
}


def cleanup_text(text: str) -> str:
    return _REDUNDANT_NEWLINES.sub("\n", text).strip()


def readable_text(markup: str) -> str:
    """
    Main-content text of an HTML page or fragment.

    Falls back to the text of the whole document when readability cannot
    find (or parse) a main content block.
    """
    try:
        summary_html = Document(markup).summary()
        text = lxml_html.fromstring(summary_html).text_content()
        if text.strip():
            return cleanup_text(text)
    except Exception as e:
        logger.warning("Readability failed, using raw text content: %s", e)
    try:
        return cleanup_text(lxml_html.fromstring(markup).text_content())
    except Exception:
        # Not markup at all (or empty).
        return cleanup_text(markup)


class ContentExtractor:
    """
    Turn an article into a short summary.

    Source text is the article's stored summary, or the page behind its link
    when there is none. Every failure is raised as ExtractionError; callers
    deliver the article without a summary in that case.
    """

    def __init__(
        self,
        summarizer: Optional[Summarizer],
        *,
        session: Optional[aiohttp.ClientSession] = None,
        page_timeout: float = 30.0,
        summarize_timeout: float = 600.0,
        classifier: ErrorClassifier = classify_error,
    ) -> None:
        self.summarizer = summarizer
        self.page_timeout = page_timeout
        self.summarize_timeout = summarize_timeout
        self.classifier = classifier
        self._session = session

    async def extract(self, article: Article) -> str:
        logger.info("Extracting summary for article: %s", article.title)
        try:
            return await self._extract(article)
        except ExtractionError as e:
            logger.error("%s: %s", _LOG_MESSAGES[e.kind], e)
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = self.classifier(e)
            logger.error("%s: %s", _LOG_MESSAGES[kind], e)
            raise ExtractionError(kind, str(e)) from e

    async def _extract(self, article: Article) -> str:
        if self.summarizer is None or isinstance(self.summarizer, NullSummarizer):
            raise ExtractionError(SummaryErrorKind.DISABLED, "summarizer is disabled")

        if article.summary:
            logger.info("Using existing article summary")
            raw = article.summary
        else:
            logger.info("Article has no summary, fetching content from URL: %s", article.link)
            raw = await self._fetch_page(article.link)

        text = await asyncio.to_thread(readable_text, raw)

        if len(text) < WARN_TEXT_LENGTH:
            logger.warning("Article text is too short (%d chars), may not generate good summary", len(text))
            if len(text) < MIN_TEXT_LENGTH:
                raise ExtractionError(SummaryErrorKind.TOO_SHORT, "article text is too short to summarize")

        preview = text if len(text) <= 100 else text[:100] + "..."
        logger.info("Article content extracted, length: %d chars, preview: %s", len(text), preview)

        summary = await asyncio.wait_for(
            asyncio.to_thread(self.summarizer.summarize, text),
            timeout=self.summarize_timeout,
        )
        summary = trim_incomplete_sentence(summary)
        if not summary:
            raise ExtractionError(SummaryErrorKind.OTHER, "summarizer returned empty text")

        logger.info("Summary generated successfully: %s", summary[:80])
        return summary

    async def _fetch_page(self, url: str) -> str:
        timeout = aiohttp.ClientTimeout(total=self.page_timeout)
        headers = {"User-Agent": USER_AGENT}
        if self._session is not None:
            return await self._get(self._session, url, headers, timeout)
        async with aiohttp.ClientSession() as session:
            return await self._get(session, url, headers, timeout)

    @staticmethod
    async def _get(session: aiohttp.ClientSession, url: str, headers: dict, timeout: aiohttp.ClientTimeout) -> str:
        async with session.get(url, headers=headers, timeout=timeout) as resp:
            if not 200 <= resp.status < 300:
                raise ExtractionError(
                    SummaryErrorKind.OTHER,
                    f"bad response status: {resp.status} {resp.reason} for URL: {url}",
                )
            return await resp.text(errors="replace")
