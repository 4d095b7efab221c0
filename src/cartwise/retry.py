"""Bounded, fixed-delay retry for tax-rate inference."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .config import TAX_MAX_RETRIES, TAX_RETRY_DELAY
from .errors import ExtractionError, TaxAnalysisError
from .models import TaxRate

logger = logging.getLogger("cartwise")


class MissingRateError(Exception):
    """The model answered in valid JSON but gave no rate."""

    def __init__(self, explanation: str | None = None):
        super().__init__(explanation or "tax rate was null")
        self.explanation = explanation


class TaxRetryController:
    """Runs one tax-rate attempt, then up to `max_retries` more.

    Extraction failures and null rates are retried after a fixed delay. Any
    other error (transport, credentials) propagates on the spot. Running out
    of attempts raises TaxAnalysisError.
    """

    def __init__(
        self,
        max_retries: int = TAX_MAX_RETRIES,
        delay: float = TAX_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.delay = delay
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    async def run(self, attempt: Callable[[int], Awaitable[TaxRate]], item_name: str) -> float:
        state = {"attempts": 0, "explanation": None}

        async def one_attempt() -> float:
            number = state["attempts"]
            state["attempts"] += 1
            state["explanation"] = None
            outcome = await attempt(number)
            if outcome.tax_rate is None:
                state["explanation"] = outcome.explanation
                raise MissingRateError(outcome.explanation)
            return outcome.tax_rate

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type((ExtractionError, MissingRateError)),
            sleep=self._sleep,
            before_sleep=lambda rs: logger.warning(
                "Tax detection for %r failed, retrying (%d/%d): %s",
                item_name,
                rs.attempt_number,
                self.max_retries,
                rs.outcome.exception() if rs.outcome else "unknown",
            ),
            reraise=True,
        )
        try:
            return await retrying(one_attempt)
        except (ExtractionError, MissingRateError):
            attempts = state["attempts"]
            logger.warning("Tax detection for %r failed after %d attempts", item_name, attempts)
            explanation = state["explanation"]
            message = explanation or f"Unable to determine tax rate for '{item_name}' after {attempts} attempts"
            raise TaxAnalysisError(message, explanation=explanation) from None
