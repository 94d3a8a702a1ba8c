"""Client for LibreTranslate-compatible translation endpoints."""
import asyncio
import json
import logging
import re
from typing import Dict, Iterable, Optional, Tuple

import httpx
from aiolimiter import AsyncLimiter

from site_localizer.translation_cache import TranslationCache

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://libretranslate.com/translate"
DEFAULT_TIMEOUT = 20.0
DEFAULT_DELAY = 0.1

# Response fields checked in order; the first non-empty string wins.
RESPONSE_TEXT_FIELDS = ("translatedText", "result", "translation")

_LEADING_WS = re.compile(r'^\s*')
_TRAILING_WS = re.compile(r'\s*$')


class TranslationError(Exception):
    """Raised when the remote service cannot produce a translation."""


def is_whitespace_only(text: Optional[str]) -> bool:
    return not text or text.isspace()


def split_surrounding_whitespace(text: str) -> Tuple[str, str]:
    """Return the leading and trailing whitespace runs of ``text``."""
    leading = _LEADING_WS.match(text).group(0)
    if len(leading) == len(text):
        return leading, ''
    trailing = _TRAILING_WS.search(text).group(0)
    return leading, trailing


def _require_utf8(text: str, role: str) -> None:
    """Cache keys and values are written as UTF-8, so text without a UTF-8 form is refused."""
    try:
        text.encode('utf-8')
    except UnicodeEncodeError as enc_exc:
        raise TranslationError(f"{role} text has no UTF-8 form: {enc_exc}") from enc_exc


def parse_translation_response(body: str) -> str:
    """
    Pull the translated text out of a response body.

    Accepts a JSON object carrying one of ``RESPONSE_TEXT_FIELDS``, a bare JSON
    string, or plain text. Anything else falls back to the raw body.
    """
    try:
        data = json.loads(body)
    except ValueError:
        return body

    if isinstance(data, dict):
        for field in RESPONSE_TEXT_FIELDS:
            value = data.get(field)
            if isinstance(value, str) and value:
                return value
        return body
    if isinstance(data, str):
        return data
    return body


class TranslationClient:
    """
    Translates single strings through the remote endpoint, memoized by a
    ``TranslationCache``.

    Calls are issued one at a time by the caller; there is no retry. After every
    remote call the client sleeps ``delay`` seconds to stay polite to free
    endpoints. Use as an async context manager so the HTTP client is closed.
    """

    def __init__(
            self,
            cache: TranslationCache,
            api_url: str = DEFAULT_API_URL,
            api_key: str = '',
            source_language: str = 'en',
            timeout: float = DEFAULT_TIMEOUT,
            delay: float = DEFAULT_DELAY,
            rate_limiter: Optional[AsyncLimiter] = None,
            http_client: Optional[httpx.AsyncClient] = None
    ):
        self.cache = cache
        self.api_url = api_url
        self.api_key = api_key
        self.source_language = source_language
        self.timeout = timeout
        self.delay = delay
        self.rate_limiter = rate_limiter
        self.remote_calls = 0
        self._http_client = http_client
        self._owns_http_client = http_client is None

    async def __aenter__(self) -> "TranslationClient":
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _build_payload(self, text: str, target_language: str) -> Dict[str, str]:
        payload = {
            'q': text,
            'source': self.source_language,
            'target': target_language,
            'format': 'text'
        }
        if self.api_key:
            payload['api_key'] = self.api_key
        return payload

    async def _request(self, text: str, target_language: str) -> str:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_http_client = True
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        self.remote_calls += 1
        try:
            response = await self._http_client.post(
                self.api_url,
                json=self._build_payload(text, target_language),
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
            response.raise_for_status()
        except (httpx.HTTPError, UnicodeEncodeError) as request_exc:
            logger.error("Translation API error for text: %r -> %s", text[:100], request_exc)
            raise TranslationError(str(request_exc)) from request_exc
        finally:
            await asyncio.sleep(self.delay)

        return parse_translation_response(response.text)

    async def translate(self, text: str, target_language: str) -> str:
        """
        Translate ``text`` into ``target_language``.

        The original leading and trailing whitespace is put back around the
        remote result, so spacing in markup survives translation.

        Raises:
            TranslationError: The remote call failed.
        """
        if is_whitespace_only(text):
            return text

        cached = self.cache.get(target_language, text)
        if cached is not None:
            return cached

        _require_utf8(text, "Source")
        translated_core = await self._request(text, target_language)
        leading, trailing = split_surrounding_whitespace(text)
        translated = leading + translated_core + trailing
        _require_utf8(translated, "Translated")

        self.cache.put(target_language, text, translated)
        self.cache.flush()
        logger.debug("Translated [%s] %r -> %r", target_language, text, translated)
        return translated


async def translate_unique(translator, texts: Iterable[str], target_language: str) -> Dict[str, Optional[str]]:
    """
    Translate every distinct text once, sequentially and in first-seen order.

    A text whose translation fails maps to ``None``; the remaining texts are
    still translated.
    """
    results: Dict[str, Optional[str]] = {}
    for text in texts:
        if text in results:
            continue
        try:
            results[text] = await translator.translate(text, target_language)
        except TranslationError as exc:
            logger.warning(f"Keeping original text for {text[:60]!r} [{target_language}]: {exc}")
            results[text] = None
    return results
