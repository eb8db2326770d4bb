from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from .core import IncomingRequest, RequestError

logger = logging.getLogger(__name__)

RequestHandler = Callable[[IncomingRequest], None]
NotificationHandler = Callable[[Optional[Any]], None]
FallbackHandler = Callable[[str, Optional[Any]], None]


class Router:
    """
    Dispatches peer-initiated traffic by method name.

    Requests without a handler are answered with "Method not found" so the
    peer never waits on an unanswered call. Notifications without a handler
    go to ``fallback``.
    """

    def __init__(
        self,
        requests: Mapping[str, RequestHandler],
        notifications: Mapping[str, NotificationHandler],
        fallback: Optional[FallbackHandler] = None,
    ) -> None:
        self._requests: Dict[str, RequestHandler] = dict(requests)
        self._notifications: Dict[str, NotificationHandler] = dict(notifications)
        self._fallback = fallback

    def dispatch_request(self, request: IncomingRequest) -> None:
        handler = self._requests.get(request.method)
        if handler is None:
            request.fail(RequestError.method_not_found(request.method))
            return
        try:
            handler(request)
        except RequestError as re:
            self._fail_unanswered(request, re)
        except ValidationError as ve:
            self._fail_unanswered(request, RequestError.invalid_params({"details": str(ve)}))
        except Exception as err:  # noqa: BLE001
            logger.error("Unexpected error in handler for %s", request.method, exc_info=True)
            self._fail_unanswered(request, RequestError.internal_error({"details": str(err)}))

    def dispatch_notification(self, method: str, params: Optional[Any]) -> None:
        handler = self._notifications.get(method)
        try:
            if handler is not None:
                handler(params)
            elif self._fallback is not None:
                self._fallback(method, params)
            else:
                logger.debug("Unhandled notification %s", method)
        except Exception:  # noqa: BLE001
            # Notifications do not produce responses
            logger.error("Error handling notification %s", method, exc_info=True)

    @staticmethod
    def _fail_unanswered(request: IncomingRequest, error: RequestError) -> None:
        if not request.answered:
            request.fail(error)
