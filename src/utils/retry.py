from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type
import asyncio


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry: fixed delay when backoff is 1.0, exponential otherwise"""
    max_attempts: int = 3
    delay: float = 0.35
    backoff: float = 1.0

    def delays(self):
        """Sleep durations between attempts (one fewer than max_attempts)"""
        delay = self.delay
        for _ in range(self.max_attempts - 1):
            yield delay
            delay *= self.backoff

    async def run(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        **kwargs,
    ) -> Any:
        """Await func until it returns, re-raising the last error once attempts run out"""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                if on_retry:
                    on_retry(attempt, e)
                await sleep(next(delays))
