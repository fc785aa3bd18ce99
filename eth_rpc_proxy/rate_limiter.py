"""Token bucket rate limiting for outbound JSON-RPC calls.

- Every upstream call, including the extra ``eth_getLogs`` legs the batcher creates,
  must :py:meth:`TokenBucketRateLimiter.acquire` a token first

- Bucket state lives in memory and resets when the process restarts

- Concurrent acquirers are serialised with :py:class:`asyncio.Lock`.
  The waiting task keeps holding the lock while it sleeps and re-checks the bucket
  after waking up, so two tasks can never spend the same token.

- The bucket starts full. A full bucket can be drained at once and the tokens minted
  during the following 60 seconds spent as well, so the worst case inside one
  60 second window is ``2 * capacity`` calls. Sustained throughput is ``capacity`` per minute.
  Lower the safety margin if the provider enforces a strict rolling window.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

#: Default provider request ceiling
DEFAULT_MAX_REQUESTS_PER_MINUTE = 2000

#: Stay below the provider ceiling by this factor
DEFAULT_SAFETY_MARGIN = 0.9

_FLOAT_TOLERANCE = 1e-9


@dataclass(slots=True)
class TokenBucketState:
    """Mutable bucket state.

    Times are seconds from :py:func:`time.monotonic` or whatever clock
    the limiter was constructed with.
    """

    #: How many tokens the bucket holds when full
    capacity: int

    #: Tokens currently available, ``0 <= tokens <= capacity``
    tokens: int

    #: Clock reading up to which minted tokens have been accounted for
    last_refill: float

    #: Seconds it takes to mint one token
    refill_interval: float


class TokenBucketRateLimiter:
    """Pace calls below ``max_requests_per_minute * safety_margin``.

    Example:

    .. code-block:: python

        limiter = TokenBucketRateLimiter(max_requests_per_minute=2000)

        await limiter.acquire()
        response = await upstream.send(payload)

    """

    def __init__(
        self,
        max_requests_per_minute: int = DEFAULT_MAX_REQUESTS_PER_MINUTE,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """Create a full bucket.

        :param max_requests_per_minute:
            Request ceiling of the upstream provider

        :param safety_margin:
            Multiplier applied to the ceiling, so we never hit the provider limit exactly

        :param clock:
            Monotonic clock returning seconds. Overridden in tests.

        :param sleep:
            Coroutine function used to wait. Overridden in tests.

        :raise ValueError:
            If the settings leave less than one token per minute
        """
        assert max_requests_per_minute > 0, f"Bad max_requests_per_minute: {max_requests_per_minute}"
        assert 0 < safety_margin <= 1, f"Bad safety_margin: {safety_margin}"

        capacity = math.floor(max_requests_per_minute * safety_margin)
        if capacity < 1:
            raise ValueError(f"Rate limit {max_requests_per_minute}/min with safety margin {safety_margin} gives zero capacity")

        self.max_requests_per_minute = max_requests_per_minute
        self.safety_margin = safety_margin
        self.clock = clock
        self.sleep = sleep
        self.state = TokenBucketState(
            capacity=capacity,
            tokens=capacity,
            last_refill=clock(),
            refill_interval=60.0 / capacity,
        )

        #: How many times a caller had to wait for a token
        self.wait_count = 0

        self._lock = asyncio.Lock()

    def __repr__(self):
        return f"<TokenBucketRateLimiter {self.state.tokens}/{self.state.capacity} tokens, one per {self.state.refill_interval:.4f}s>"

    @property
    def capacity(self) -> int:
        return self.state.capacity

    def refill(self) -> float:
        """Mint tokens for the whole intervals elapsed since the last refill.

        Only the consumed whole intervals move ``last_refill`` forward,
        the fractional remainder carries over to the next refill.

        :return:
            Clock reading used for the refill
        """
        state = self.state
        now = self.clock()
        elapsed = now - state.last_refill
        # Tolerate float error so that sleeping exactly one interval always mints a token
        minted = math.floor(elapsed / state.refill_interval + _FLOAT_TOLERANCE)
        if minted > 0:
            state.tokens = min(state.capacity, state.tokens + minted)
            state.last_refill += minted * state.refill_interval
        return now

    async def acquire(self):
        """Wait until a token is available and consume it.

        Never fails. There is no upper bound on how long we wait.
        """
        async with self._lock:
            while True:
                now = self.refill()
                state = self.state
                if state.tokens >= 1:
                    state.tokens -= 1
                    return

                # Time until the next whole interval is complete
                wait = state.refill_interval - (now - state.last_refill)
                self.wait_count += 1
                logger.debug("Rate limit reached, waiting %f seconds for the next token", wait)
                await self.sleep(max(wait, 0))
