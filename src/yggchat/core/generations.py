"""Registry of in-flight generations so they can be stopped by message id."""

from __future__ import annotations

import logging

from yggchat.core.cancellation import CancellationToken

_logger = logging.getLogger(__name__)


class GenerationManager:
    """Maps message ids to the ``CancellationToken`` of their generation."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def create(self, message_id: str) -> CancellationToken:
        token = CancellationToken()
        self._tokens[message_id] = token
        _logger.debug("Generation registered for message %s (%d live)",
                      message_id, len(self._tokens))
        return token

    def get(self, message_id: str) -> CancellationToken | None:
        return self._tokens.get(message_id)

    def abort(self, message_id: str) -> bool:
        """Cancel the generation for *message_id*.  False if none is live.

        The entry is removed before the token fires, so listeners that call
        ``clear()`` or ``create()`` for the same id see a consistent registry.
        """
        token = self._tokens.pop(message_id, None)
        if token is None:
            _logger.info("No live generation for message %s", message_id)
            return False
        token.cancel()
        _logger.info("Generation for message %s aborted", message_id)
        return True

    def clear(self, message_id: str, token: CancellationToken | None = None) -> None:
        """Forget a finished generation.

        With *token*, the entry is only removed while it still belongs to that
        token; a newer generation registered under the same id is kept.
        """
        if token is not None and self._tokens.get(message_id) is not token:
            return
        self._tokens.pop(message_id, None)

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._tokens
