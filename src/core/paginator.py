"""Lectura paginada de colecciones ordenadas del servidor.

Por qué en `core/`:
- La navegación (primera/siguiente/anterior) y el cache no dependen de qué
  colección se lea; el endpoint concreto entra como `PageLoader`.

Nota:
- El servidor decide cuántos elementos trae cada página suya. El fetcher
  guarda esas páginas crudas por token y sirve páginas de cliente de como
  mucho `page_size` elementos, con un `PagePosition` (token + offset) como
  cursor. Así ir hacia atrás o repetir una página no vuelve a la red.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog
from pydantic import ValidationError

from core.config import AppSettings
from core.domain.models import (
    ErrorKind,
    Fail,
    Ok,
    Page,
    PageCursor,
    PagePosition,
    PaymentRecord,
    RequestOutcome,
)
from core.interfaces.transport import Operations
from core.session import SessionManager

logger = structlog.get_logger()

T = TypeVar("T")

PageLoader = Callable[[PageCursor | None, int], Awaitable[RequestOutcome[tuple[list[T], PageCursor | None]]]]


def _key(cursor: PagePosition | None) -> PagePosition | None:
    # La primera página tiene una sola clave, venga como None o como posición 0.
    return None if cursor is None or cursor.is_start else cursor


class PaginatedFetcher(Generic[T]):
    """Cache de páginas por cursor + navegación hacia delante y atrás.

    Se registra en la sesión: `disconnect()` lo vacía.
    """

    def __init__(
        self,
        session: SessionManager,
        loader: PageLoader,
        *,
        page_size: int = 20,
        name: str = "pages",
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._session = session
        self._loader = loader
        self._page_size = page_size
        self._name = name
        self._cache: dict[PagePosition | None, Page[T]] = {}
        self._server_pages: dict[PageCursor | None, tuple[list[T], PageCursor | None]] = {}
        # Cursor de entrada de la página i (la 0 siempre es None).
        self._trail: list[PagePosition | None] = [None]
        self._index = -1
        session.attach(self)

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def current_index(self) -> int:
        """-1 hasta que se carga la primera página."""

        return self._index

    def cached(self, cursor: PagePosition | None) -> Page[T] | None:
        return self._cache.get(_key(cursor))

    def clear(self) -> None:
        self._cache.clear()
        self._server_pages.clear()
        self._trail = [None]
        self._index = -1

    async def _server_page(
        self, token: PageCursor | None, page_size: int
    ) -> RequestOutcome[tuple[list[T], PageCursor | None]]:
        raw = self._server_pages.get(token)
        if raw is not None:
            return Ok(raw)

        generation = self._session.generation
        outcome = await self._loader(token, page_size)
        if isinstance(outcome, Fail):
            logger.info("page_fetch_failed", fetcher=self._name, kind=outcome.kind.value, error=outcome.message)
            return outcome

        if not self._session.is_current(generation):
            logger.info("stale_result_discarded", fetcher=self._name)
            return Fail.of(ErrorKind.STALE, "session changed while the page was loading")

        self._server_pages[token] = outcome.value
        return outcome

    async def fetch_page(self, cursor: PagePosition | None, page_size: int) -> RequestOutcome[Page[T]]:
        if page_size < 1:
            return Fail.of(ErrorKind.VALIDATION, "page size must be at least 1")

        key = _key(cursor)
        hit = self._cache.get(key)
        if hit is not None and hit.page_size == page_size:
            return Ok(hit)

        token = key.server if key is not None else None
        offset = key.offset if key is not None else 0
        loaded = await self._server_page(token, page_size)
        if isinstance(loaded, Fail):
            return loaded

        items, server_next = loaded.value
        if offset and offset >= len(items):
            return Fail.of(ErrorKind.VALIDATION, "cursor points past the end of its server page")

        end = offset + page_size
        if end < len(items):
            cursor_out: PagePosition | None = PagePosition(server=token, offset=end)
        elif server_next is not None:
            cursor_out = PagePosition(server=server_next)
        else:
            cursor_out = None

        page: Page[T] = Page(cursor_in=key, items=list(items[offset:end]), cursor_out=cursor_out, page_size=page_size)
        self._cache[key] = page
        return Ok(page)

    async def page_at(self, index: int) -> RequestOutcome[Page[T]]:
        """Página `index` (0 = primera). Si no conocemos su cursor, se re-camina desde la primera."""

        if index < 0:
            return Fail.of(ErrorKind.VALIDATION, "page index must be >= 0")

        while len(self._trail) <= index:
            outcome = await self.fetch_page(self._trail[-1], self._page_size)
            if isinstance(outcome, Fail):
                return outcome
            if outcome.value.cursor_out is None:
                return Fail.of(ErrorKind.VALIDATION, f"page {index} is past the last page")
            self._trail.append(outcome.value.cursor_out)

        outcome = await self.fetch_page(self._trail[index], self._page_size)
        if isinstance(outcome, Ok):
            self._index = index
            if outcome.value.cursor_out is not None and len(self._trail) == index + 1:
                self._trail.append(outcome.value.cursor_out)
        return outcome

    async def first(self) -> RequestOutcome[Page[T]]:
        return await self.page_at(0)

    async def next(self) -> RequestOutcome[Page[T]]:
        return await self.page_at(self._index + 1)

    async def previous(self) -> RequestOutcome[Page[T]]:
        if self._index <= 0:
            return Fail.of(ErrorKind.VALIDATION, "already at the first page")
        return await self.page_at(self._index - 1)

    async def walk(self, max_pages: int) -> RequestOutcome[list[Page[T]]]:
        """Hasta `max_pages` páginas desde la primera, en orden del servidor."""

        pages: list[Page[T]] = []
        outcome = await self.first()
        while True:
            if isinstance(outcome, Fail):
                return outcome
            pages.append(outcome.value)
            if len(pages) >= max_pages or not outcome.value.has_more:
                return Ok(pages)
            outcome = await self.next()


def payments_fetcher(session: SessionManager, settings: AppSettings | None = None) -> PaginatedFetcher[PaymentRecord]:
    """Fetcher del historial de pagos (`listPayments`)."""

    settings = settings or AppSettings()

    async def load(
        cursor: PageCursor | None, page_size: int
    ) -> RequestOutcome[tuple[list[PaymentRecord], PageCursor | None]]:
        body = {"page_token": cursor.model_dump() if cursor is not None else None}
        outcome = await session.call(Operations.LIST_PAYMENTS, body)
        if isinstance(outcome, Fail):
            return outcome
        try:
            records = [PaymentRecord.model_validate(raw) for raw in outcome.value.get("payments") or []]
            token = outcome.value.get("next_page_token")
            next_cursor = PageCursor.model_validate(token) if token else None
        except ValidationError as exc:
            return Fail.of(ErrorKind.PROTOCOL, f"unexpected listPayments response: {exc.error_count()} errors")
        return Ok((records, next_cursor))

    return PaginatedFetcher(session, load, page_size=settings.default_page_size, name="payments")
