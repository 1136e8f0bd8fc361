import unittest

from utils.retry import RetryPolicy


class FlakyCall:
    def __init__(self, failures: int, result="ok"):
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return self.result


class RetryPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.sleeps = []

    async def fake_sleep(self, seconds):
        self.sleeps.append(seconds)

    async def test_returns_after_transient_failures(self):
        call = FlakyCall(failures=2)
        result = await RetryPolicy(max_attempts=3, delay=0.35).run(call, sleep=self.fake_sleep)
        self.assertEqual(result, "ok")
        self.assertEqual(call.calls, 3)
        self.assertEqual(self.sleeps, [0.35, 0.35])

    async def test_reraises_last_error_when_exhausted(self):
        call = FlakyCall(failures=5)
        retries = []
        with self.assertRaises(ConnectionError) as ctx:
            await RetryPolicy(max_attempts=3).run(
                call, on_retry=lambda attempt, e: retries.append(attempt), sleep=self.fake_sleep
            )
        self.assertEqual(str(ctx.exception), "failure 3")
        self.assertEqual(call.calls, 3)
        self.assertEqual(retries, [1, 2])

    async def test_unlisted_errors_are_not_retried(self):
        call = FlakyCall(failures=1)
        with self.assertRaises(ConnectionError):
            await RetryPolicy().run(call, retry_on=(TimeoutError,), sleep=self.fake_sleep)
        self.assertEqual(call.calls, 1)

    async def test_invalid_attempts_rejected(self):
        with self.assertRaises(ValueError):
            await RetryPolicy(max_attempts=0).run(FlakyCall(0))

    def test_exponential_backoff_delays(self):
        self.assertEqual(list(RetryPolicy(max_attempts=4, delay=1.0, backoff=2.0).delays()), [1.0, 2.0, 4.0])


if __name__ == "__main__":
    unittest.main()
