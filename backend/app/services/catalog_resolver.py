from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote, urlencode

from backend.app.services.tool_arguments import strip_wrapping_quotes

LOGGER = logging.getLogger("demo_playback.catalog")

DEFAULT_SIGNED_URL_TTL_SECONDS = 3_600
_ABSOLUTE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


class VideoResolutionError(Exception):
    def __init__(self, title: str) -> None:
        super().__init__(f"Video not found: {title}")
        self.title = title


class PlayableUrlError(Exception):
    pass


@dataclass(frozen=True)
class ResolvedTitle:
    title: str
    index: int


class VideoCatalog:
    """Ordered, distinct video titles for one demo session."""

    def __init__(self, titles: Iterable[str]) -> None:
        ordered: list[str] = []
        seen: set[str] = set()
        for raw_title in titles:
            if not isinstance(raw_title, str):
                continue
            title = raw_title.strip()
            if not title or title in seen:
                continue
            seen.add(title)
            ordered.append(title)
        self._titles = tuple(ordered)

    @property
    def titles(self) -> tuple[str, ...]:
        return self._titles

    def __len__(self) -> int:
        return len(self._titles)

    def __contains__(self, title: object) -> bool:
        return title in self._titles

    def index_of(self, title: str | None) -> int | None:
        if title is None:
            return None
        try:
            return self._titles.index(title)
        except ValueError:
            return None

    def next_title(self, current_title: str | None) -> str | None:
        index = self.index_of(current_title)
        if index is None or not self._titles:
            return None
        return self._titles[(index + 1) % len(self._titles)]


class StorageCollaborator(Protocol):
    def lookup_reference(self, title: str) -> str | None:
        ...

    def create_signed_url(self, reference: str, ttl_seconds: int) -> str:
        ...


class StaticVideoStorage:
    """
    In-memory title -> storage reference map with HMAC-signed URLs.

    References that are already absolute URLs are returned untouched by
    `CatalogResolver`; everything else is signed against `base_url`.
    """

    def __init__(
        self,
        references: Mapping[str, str],
        *,
        base_url: str,
        signing_secret: str | None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._references = dict(references)
        self._base_url = base_url.rstrip("/")
        self._signing_secret = signing_secret
        self._clock = clock

    def lookup_reference(self, title: str) -> str | None:
        return self._references.get(title)

    def create_signed_url(self, reference: str, ttl_seconds: int) -> str:
        if self._signing_secret is None:
            raise PlayableUrlError("Storage signing secret is not configured.")
        path = reference.strip().lstrip("/")
        if not path:
            raise PlayableUrlError("Storage reference is empty.")
        expires = int(self._clock()) + max(1, ttl_seconds)
        signature = hmac.new(
            self._signing_secret.encode("utf-8"),
            f"{path}:{expires}".encode(),
            hashlib.sha256,
        ).hexdigest()
        query = urlencode({"expires": expires, "signature": signature})
        return f"{self._base_url}/{quote(path)}?{query}"


class CatalogResolver:
    def __init__(
        self,
        storage: StorageCollaborator,
        *,
        signed_url_ttl_seconds: int = DEFAULT_SIGNED_URL_TTL_SECONDS,
    ) -> None:
        self._storage = storage
        self._signed_url_ttl_seconds = signed_url_ttl_seconds

    def resolve_title(self, catalog: VideoCatalog, raw_title: str | None) -> ResolvedTitle | None:
        """Exact match first, then a case-insensitive match."""
        if not isinstance(raw_title, str):
            return None
        requested = strip_wrapping_quotes(raw_title)
        if not requested:
            return None

        index = catalog.index_of(requested)
        if index is not None:
            return ResolvedTitle(title=requested, index=index)

        folded = requested.casefold()
        for index, title in enumerate(catalog.titles):
            if title.casefold() == folded:
                LOGGER.info(
                    "catalog title resolved case-insensitively requested=%s resolved=%s",
                    requested,
                    title,
                )
                return ResolvedTitle(title=title, index=index)
        return None

    def require_title(self, catalog: VideoCatalog, raw_title: str | None) -> ResolvedTitle:
        resolved = self.resolve_title(catalog, raw_title)
        if resolved is None:
            raise VideoResolutionError(strip_wrapping_quotes(raw_title or ""))
        return resolved

    def get_playable_url(self, stored_reference: str) -> str:
        if _ABSOLUTE_URL_PATTERN.match(stored_reference.strip()):
            return stored_reference.strip()
        try:
            return self._storage.create_signed_url(stored_reference, self._signed_url_ttl_seconds)
        except PlayableUrlError:
            raise
        except Exception as exc:
            raise PlayableUrlError(f"Could not sign storage reference: {exc}") from exc

    def playable_url_for(self, title: str) -> str:
        reference = self._storage.lookup_reference(title)
        if reference is None:
            raise PlayableUrlError(f"No storage reference for video: {title}")
        return self.get_playable_url(reference)
