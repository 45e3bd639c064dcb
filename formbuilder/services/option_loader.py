"""
Paginated option loading for api-dropdown fields and columns.

Remote endpoints answer in one of three shapes: a bare array, a page object
with ``results`` and an optional ``next`` cursor, or an object whose values
are the options. All three are normalized into an ``OptionPage``.
"""
import json
import logging
import threading
from collections import OrderedDict
from os import environ
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import requests

from formbuilder.schemas.form import Option, OptionPage
from formbuilder.utils.exceptions import OptionLoadError

logger = logging.getLogger(__name__)

OPTION_LOADER_TIMEOUT = float(environ.get('OPTION_LOADER_TIMEOUT', "10"))
OPTION_LOADER_CACHE_SIZE = int(environ.get('OPTION_LOADER_CACHE_SIZE', "256"))

VALUE_KEYS = ("id", "value", "name", "label")
LABEL_KEYS = ("title", "name", "label", "id")


def _serialize(item: Any) -> str:
    try:
        return json.dumps(item, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(item)


def _first_present(item: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return _serialize(item)


def to_option(item: Any) -> Option:
    """Derive value and label from a remote item, falling back to its serialization"""
    if isinstance(item, dict):
        return Option(value=_first_present(item, VALUE_KEYS), label=_first_present(item, LABEL_KEYS))
    return Option(value=str(item), label=str(item))


def normalize_response(payload: Any) -> OptionPage:
    if isinstance(payload, list):
        return OptionPage(options=[to_option(item) for item in payload])

    if isinstance(payload, dict):
        if isinstance(payload.get("results"), list):
            next_cursor = payload.get("next")
            return OptionPage(
                options=[to_option(item) for item in payload["results"]],
                has_more=bool(next_cursor),
                next_page_token=str(next_cursor) if next_cursor else None,
            )
        return OptionPage(options=[to_option(item) for item in payload.values()])

    logger.warning(f"Unexpected option payload type {type(payload).__name__}")
    return OptionPage()


def _is_absolute_url(token: str) -> bool:
    parsed = urlparse(token)
    return bool(parsed.scheme and parsed.netloc)


class OptionLoader:
    """
    Loads option pages for one dropdown.

    Only the most recent query counts: when a newer ``load_page`` call starts
    before an older one returns, the older result comes back with
    ``superseded=True`` and no options.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = OPTION_LOADER_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout
        self._lock = threading.Lock()
        self._latest_ticket = 0

    def _take_ticket(self) -> int:
        with self._lock:
            self._latest_ticket += 1
            return self._latest_ticket

    def _is_latest(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._latest_ticket

    def _fetch(self, search_text: str, page_token: Optional[str], endpoint: str) -> Any:
        if page_token and _is_absolute_url(page_token):
            url, params = page_token, None
        else:
            url, params = endpoint, {"search": search_text or "", "page": page_token or "1"}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"Error loading options from {url}: {str(e)}")
            raise OptionLoadError(f"Options could not be loaded from {endpoint}")
        except ValueError as e:
            logger.error(f"Option endpoint {url} returned invalid JSON: {str(e)}")
            raise OptionLoadError(f"Options from {endpoint} are not valid JSON")

    def load_page(self, search_text: str, page_token: Optional[str], endpoint: str) -> OptionPage:
        """
        Fetch one page of options

        Args:
            search_text: Text typed into the dropdown
            page_token: None for the first page, else the previous page's token
            endpoint: Remote endpoint URL

        Returns:
            The normalized page, or an empty superseded page
        """
        ticket = self._take_ticket()
        payload = self._fetch(search_text, page_token, endpoint)

        if not self._is_latest(ticket):
            logger.debug(f"Discarding superseded option page for {endpoint} ({search_text!r})")
            return OptionPage(superseded=True)
        return normalize_response(payload)


class OptionLoaderRegistry:
    """
    One loader per (client, endpoint), so clients do not supersede each other.

    All loaders share one ``requests.Session``. At most ``max_loaders`` are
    kept; the least recently used loader is dropped past that. Callers without
    a client key get a fresh loader every time and are never superseded.
    """

    def __init__(self, max_loaders: int = OPTION_LOADER_CACHE_SIZE):
        self.max_loaders = max_loaders
        self.session = requests.Session()
        self._loaders: "OrderedDict[Tuple[str, str], OptionLoader]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, client: Optional[str], endpoint: str) -> OptionLoader:
        if not client:
            return OptionLoader(session=self.session)

        key = (client, endpoint)
        with self._lock:
            loader = self._loaders.get(key)
            if loader is None:
                loader = OptionLoader(session=self.session)
                self._loaders[key] = loader
                while len(self._loaders) > self.max_loaders:
                    evicted, _ = self._loaders.popitem(last=False)
                    logger.debug(f"Dropped option loader for {evicted}")
            else:
                self._loaders.move_to_end(key)
            return loader

    def __len__(self) -> int:
        return len(self._loaders)

    def clear(self) -> None:
        """Forget every loader and close the shared session"""
        with self._lock:
            self._loaders.clear()
            self.session.close()
            self.session = requests.Session()


option_loaders = OptionLoaderRegistry()
