"""Veiling of the OAuth state sent to service providers.

The state the operator hands out is self-describing (it names the token
object, namespace and scopes). The provider and anyone observing the
redirect only ever see a random replacement; the real state is recovered
from the user agent's session on callback.
"""

from __future__ import annotations

import structlog

from spi_oauth.oauth.errors import GenerationError, MissingStateError
from spi_oauth.oauth.secure_random import generate_random_string
from spi_oauth.oauth.session import SessionContext

logger = structlog.get_logger()

VEILED_STATE_LENGTH = 32
MAX_VEIL_ATTEMPTS = 3

_KEY_PREFIX = "veil:"


class StateVeil:
    """Maps veiled states to real states inside the caller's session."""

    def __init__(self, consume_on_unveil: bool = False):
        """Initialize the veil.

        Args:
            consume_on_unveil: Delete the mapping once it has been read.
                Off by default, so a veiled state stays readable until the
                session expires.
        """
        self._consume_on_unveil = consume_on_unveil

    async def veil(self, session: SessionContext, real_state: str) -> str:
        """Record `real_state` in the session under a fresh random key.

        Raises:
            MissingStateError: If real_state is empty
            GenerationError: If no unused random key could be produced
        """
        if not real_state:
            logger.error("Request has no state parameter")
            raise MissingStateError()

        for _ in range(MAX_VEIL_ATTEMPTS):
            veiled = generate_random_string(VEILED_STATE_LENGTH)
            if await session.put_if_absent(_KEY_PREFIX + veiled, real_state):
                logger.debug("State veiled", veil=veiled)
                return veiled

        raise GenerationError("random veiled state collided repeatedly")

    async def unveil(self, session: SessionContext, query_state: str) -> str:
        """Return the real state for `query_state`, or "" if it is unknown.

        Raises:
            MissingStateError: If query_state is empty
        """
        if not query_state:
            logger.error("Request has no state parameter")
            raise MissingStateError()

        key = _KEY_PREFIX + query_state
        real_state = await session.get(key)
        if real_state is None:
            logger.debug("Veiled state not found in session", veil=query_state)
            return ""

        if self._consume_on_unveil:
            await session.delete(key)
        logger.debug("State unveiled", veil=query_state)
        return real_state
