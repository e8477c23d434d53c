from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from .exceptions import ExtractionError, SummarizerError

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "You are a concise news summarizer. Return a single short paragraph (max ~3 sentences) "
    "describing what the article is about. Objective, no opinions. No preface, no title, no bullets."
)


class SummaryErrorKind(enum.Enum):
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    SERVER_ERROR = "server_error"
    TOO_SHORT = "too_short"
    DISABLED = "disabled"
    OTHER = "other"


ErrorClassifier = Callable[[BaseException], SummaryErrorKind]


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        val = getattr(error, attr, None)
        if isinstance(val, int) and not isinstance(val, bool):
            return val
    return None


def classify_error(error: BaseException) -> SummaryErrorKind:
    """
    Map a summarizer/extraction failure to a SummaryErrorKind.

    Providers report most failures only as free text, so this falls back to
    matching status codes inside the message. "500" in an unrelated message
    will be misread as a server error.
    """
    if isinstance(error, (SummarizerError, ExtractionError)):
        return error.kind

    status = _status_of(error)
    if status == 429:
        return SummaryErrorKind.RATE_LIMITED
    if status in (401, 403):
        return SummaryErrorKind.UNAUTHORIZED
    if status is not None and 500 <= status < 600:
        return SummaryErrorKind.SERVER_ERROR

    text = str(error).lower()
    if "disabled" in text:
        return SummaryErrorKind.DISABLED
    if "429" in text or "too many requests" in text or "quota exceeded" in text:
        return SummaryErrorKind.RATE_LIMITED
    if "401" in text or "unauthorized" in text:
        return SummaryErrorKind.UNAUTHORIZED
    if "too short" in text:
        return SummaryErrorKind.TOO_SHORT
    if "500" in text or "502" in text or "503" in text:
        return SummaryErrorKind.SERVER_ERROR
    return SummaryErrorKind.OTHER


class ApiKeyStore:
    """
    Process-wide summarizer API key.

    Set once at startup from configuration and replaceable at run time (the
    `!setkey` command); the next summarize call picks up the new value.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._key = key or ""

    def get(self) -> str:
        with self._lock:
            return self._key

    def set(self, key: str) -> None:
        with self._lock:
            self._key = (key or "").strip()
        logger.info("Summarizer API key updated (configured: %s)", bool(key))

    @property
    def is_set(self) -> bool:
        return bool(self.get())


class Summarizer(Protocol):
    def summarize(self, text: str) -> str:  # pragma: no cover - interface
        ...


@dataclass
class SummarizeOptions:
    provider: str = "openai"  # "openai" | "gemini"
    model: Optional[str] = None
    prompt: str = DEFAULT_PROMPT
    timeout_sec: float = 600.0


_TERMINATORS = (".", "!", "?", "…")


def trim_incomplete_sentence(text: str) -> str:
    """Trim, and cut a trailing unfinished sentence after the last '.'."""
    text = (text or "").strip()
    if not text or text.endswith(_TERMINATORS) or "." not in text:
        return text
    sentences = text.split(".")
    return ".".join(sentences[:-1]) + "."


class NullSummarizer:
    def summarize(self, text: str) -> str:
        raise SummarizerError(SummaryErrorKind.DISABLED, "summarizer is disabled")

    def check_key(self) -> str:
        return "Summarizer is not configured"


class OpenAISummarizer:
    """
    Chat-completions summarizer. Calls are serialized: the underlying client is
    rebuilt whenever the key changes and is not shared across calls in flight.
    """

    def __init__(self, *, keys: ApiKeyStore, model: Optional[str], prompt: str = DEFAULT_PROMPT,
                 timeout_sec: float = 600.0) -> None:
        try:
            import openai  # type: ignore
        except Exception as e:  # pragma: no cover - surfaced at startup
            raise RuntimeError("openai package is required for OpenAI summarization. Install with `pip install openai`.") from e
        self._openai = openai
        self._keys = keys
        self._model = model or "gpt-4o-mini"
        self._prompt = prompt or DEFAULT_PROMPT
        self._timeout = timeout_sec
        self._lock = threading.Lock()
        self._client: Any = None
        self._client_key = ""
        logger.info("OpenAI summarizer is enabled: %s", keys.is_set)

    def _client_for(self, key: str) -> Any:
        if self._client is None or key != self._client_key:
            self._client = self._openai.OpenAI(api_key=key)
            self._client_key = key
        return self._client

    def _complete(self, system: str, user: str, max_tokens: int, timeout: float) -> Any:
        key = self._keys.get()
        if not key:
            raise SummarizerError(SummaryErrorKind.DISABLED, "openai summarizer is disabled")
        client = self._client_for(key)
        return client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=1,
            top_p=1,
            timeout=timeout,
        )

    def summarize(self, text: str) -> str:
        with self._lock:
            logger.info("Generating summary with OpenAI using model: %s", self._model)
            try:
                resp = self._complete(self._prompt, text, 1024, self._timeout)
            except SummarizerError:
                raise
            except Exception as e:
                kind = classify_error(e)
                logger.error("OpenAI API error (%s): %s", kind.value, e)
                raise SummarizerError(kind, f"OpenAI API error: {e}") from e

        content = resp.choices[0].message.content if resp and resp.choices else None
        if not content:
            raise SummarizerError(SummaryErrorKind.OTHER, "no choices in openai response")
        content = content.strip()
        logger.info("Successfully generated summary with OpenAI: %s", content[:80])
        return content

    def check_key(self) -> str:
        """Smallest possible request; returns a human-readable key status."""
        with self._lock:
            try:
                self._complete("You are a helpful assistant.", "Hello", 5, 30.0)
            except Exception as e:
                kind = classify_error(e)
                logger.warning("OpenAI key check failed (%s): %s", kind.value, e)
                return _KEY_STATUS.get(kind, "Error checking API key")
        return "API key is working correctly"


class GeminiSummarizer:
    def __init__(self, *, keys: ApiKeyStore, model: Optional[str], prompt: str = DEFAULT_PROMPT,
                 timeout_sec: float = 600.0) -> None:
        try:
            import google.generativeai as genai  # type: ignore
        except Exception as e:  # pragma: no cover - surfaced at startup
            raise RuntimeError("google-generativeai package is required for Gemini summarization. Install with `pip install google-generativeai`.") from e
        self._genai = genai
        self._keys = keys
        self._model_name = model or "gemini-1.5-flash"
        self._prompt = prompt or DEFAULT_PROMPT
        self._timeout = timeout_sec
        self._lock = threading.Lock()
        self._configured_key = ""
        logger.info("Gemini summarizer is enabled: %s", keys.is_set)

    def _generate(self, text: str, timeout: float) -> Any:
        key = self._keys.get()
        if not key:
            raise SummarizerError(SummaryErrorKind.DISABLED, "gemini summarizer is disabled")
        if key != self._configured_key:
            self._genai.configure(api_key=key)
            self._configured_key = key
        model = self._genai.GenerativeModel(self._model_name, system_instruction=self._prompt)
        return model.generate_content(text, request_options={"timeout": timeout})

    def summarize(self, text: str) -> str:
        with self._lock:
            logger.info("Generating summary with Gemini using model: %s", self._model_name)
            try:
                resp = self._generate(text, self._timeout)
                content = getattr(resp, "text", None)
            except SummarizerError:
                raise
            except Exception as e:
                kind = classify_error(e)
                logger.error("Gemini API error (%s): %s", kind.value, e)
                raise SummarizerError(kind, f"Gemini API error: {e}") from e

        if not content:
            raise SummarizerError(SummaryErrorKind.OTHER, "empty gemini response")
        return str(content).strip()

    def check_key(self) -> str:
        with self._lock:
            try:
                self._generate("Hello", 30.0)
            except Exception as e:
                kind = classify_error(e)
                logger.warning("Gemini key check failed (%s): %s", kind.value, e)
                return _KEY_STATUS.get(kind, "Error checking API key")
        return "API key is working correctly"


_KEY_STATUS = {
    SummaryErrorKind.DISABLED: "API key not configured",
    SummaryErrorKind.RATE_LIMITED: "Error 429: API quota limit exceeded. Check your plan or billing.",
    SummaryErrorKind.UNAUTHORIZED: "Error 401: invalid API key.",
    SummaryErrorKind.SERVER_ERROR: "Provider server error. Try again later.",
}


def build_summarizer(options: Optional[SummarizeOptions], keys: ApiKeyStore) -> Summarizer:
    if not options:
        return NullSummarizer()
    provider = (options.provider or "").lower()
    if provider == "openai":
        return OpenAISummarizer(keys=keys, model=options.model, prompt=options.prompt, timeout_sec=options.timeout_sec)
    if provider in {"gemini", "google", "googleai"}:
        return GeminiSummarizer(keys=keys, model=options.model, prompt=options.prompt, timeout_sec=options.timeout_sec)
    # Unknown provider → no-op
    return NullSummarizer()
