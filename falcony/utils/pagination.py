"""Cursor pagination driver.

Copyright (c) 2024 Felix Geilert
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from falcony.models import Page, PaginationCursor

QueryParams = Mapping[str, Any]
PageHandler = Callable[[list[Any]], Any]
FetchPage = Callable[[str, list[tuple[str, str]]], Awaitable[Mapping[str, Any]]]


def to_query_params(
    cursor: PaginationCursor | None = None,
    query: QueryParams | None = None,
) -> list[tuple[str, str]]:
    """Merge cursor fields and static query parameters.

    List and tuple values expand to repeated keys.
    """
    params: list[tuple[str, str]] = list(cursor.to_params()) if cursor else []
    for key, value in (query or {}).items():
        if isinstance(value, (list, tuple)):
            params.extend((key, str(item)) for item in value)
        else:
            params.append((key, str(value)))
    return params


async def call_handler(handler: PageHandler, items: list[Any]) -> Any:
    """Call a page handler, awaiting it when it is a coroutine."""
    result = handler(items)
    if inspect.isawaitable(result):
        result = await result
    return result


class Paginator:
    """Fetches pages until the collection is exhausted.

    Only one page is held at a time; each is handed to the caller's handler
    before the next is requested. Handler return values are ignored, so a
    run always continues to exhaustion or to an error.
    """

    def __init__(self, fetch: FetchPage, logger: logging.Logger | None = None):
        self._fetch = fetch
        self.logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        resource_path: str,
        page_handler: PageHandler,
        query: QueryParams | None = None,
    ) -> int:
        """Drive pagination of ``resource_path``.

        Returns:
            The number of items seen.
        """
        seen = 0
        cursor: PaginationCursor | None = None
        finished = False

        while not finished:
            params = to_query_params(cursor, query)
            self.logger.info(
                "Requesting page of %s",
                resource_path,
                extra={"resource_path": resource_path, "request_params": params},
            )
            page: Page[Any] = Page.from_payload(await self._fetch(resource_path, params))

            if page.errors:
                self.logger.error(
                    "Encountered error(s) in api response",
                    extra={"resource_path": resource_path, "page_errors": [err.to_dict() for err in page.errors]},
                )

            await call_handler(page_handler, page.items)

            self.logger.info(
                "Pagination response details",
                extra={"pagination": page.cursor, "resources_length": len(page.items)},
            )

            seen += len(page.items)
            cursor = page.cursor
            finished = self._is_finished(seen, len(page.items), cursor)

            self.logger.info(
                "Post-request pagination state",
                extra={"seen": seen, "total": cursor.total, "finished": finished},
            )
        return seen

    @staticmethod
    def _is_finished(seen: int, page_size: int, cursor: PaginationCursor) -> bool:
        if seen == 0 or page_size == 0:
            return True
        if cursor.total is not None:
            return seen >= cursor.total
        return not cursor.has_continuation

