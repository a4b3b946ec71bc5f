# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import datetime
import threading
from unittest import TestCase

from mock_clock import MockClock

from amazon.opentelemetry.adaptive_sampler._rate_limiter import _RateLimiter


def spend_times(rate_limiter: _RateLimiter, attempts: int) -> int:
    spent = 0
    for _ in range(0, attempts):
        if rate_limiter.try_spend(1):
            spent += 1
    return spent


class TestRateLimiter(TestCase):
    def test_try_spend(self):
        time_now = datetime.datetime.fromtimestamp(1707551387.0)
        clock = MockClock(time_now)
        rate_limiter = _RateLimiter(1, 30, clock)

        # Bucket starts full
        self.assertEqual(spend_times(rate_limiter, 100), 30)

        clock.add_time(0.5)
        self.assertEqual(spend_times(rate_limiter, 100), 15)

        clock.add_time(1000)
        self.assertEqual(spend_times(rate_limiter, 100), 30)

    def test_zero_quota_never_spends(self):
        clock = MockClock(datetime.datetime.fromtimestamp(1707551387.0))
        rate_limiter = _RateLimiter(1, 0, clock)
        self.assertEqual(spend_times(rate_limiter, 10), 0)
        clock.add_time(10)
        self.assertEqual(spend_times(rate_limiter, 10), 0)

    def test_fractional_refill(self):
        clock = MockClock(datetime.datetime.fromtimestamp(1707551387.0))
        rate_limiter = _RateLimiter(1, 1, clock)
        self.assertTrue(rate_limiter.try_spend(1))
        self.assertFalse(rate_limiter.try_spend(1))

        clock.add_time(0.3)
        self.assertFalse(rate_limiter.try_spend(1))
        clock.add_time(0.3)
        self.assertFalse(rate_limiter.try_spend(1))
        clock.add_time(0.4)
        self.assertTrue(rate_limiter.try_spend(1))
        self.assertFalse(rate_limiter.try_spend(1))

    def test_clock_moving_backwards_does_not_refill(self):
        clock = MockClock(datetime.datetime.fromtimestamp(1707551387.0))
        rate_limiter = _RateLimiter(1, 5, clock)
        self.assertEqual(spend_times(rate_limiter, 10), 5)

        clock.add_time(-10)
        self.assertEqual(spend_times(rate_limiter, 10), 0)
        # Refill is measured from the latest observed time
        clock.add_time(10.2)
        self.assertEqual(spend_times(rate_limiter, 10), 1)

    def test_max_balance_caps_the_bucket(self):
        clock = MockClock(datetime.datetime.fromtimestamp(1707551387.0))
        rate_limiter = _RateLimiter(2, 3, clock)
        self.assertEqual(spend_times(rate_limiter, 100), 6)
        clock.add_time(60)
        self.assertEqual(spend_times(rate_limiter, 100), 6)

    def test_concurrent_spend_never_overdraws(self):
        clock = MockClock(datetime.datetime.fromtimestamp(1707551387.0))
        rate_limiter = _RateLimiter(1, 50, clock)
        spent_per_thread = [0] * 20

        def spend(index):
            spent_per_thread[index] = spend_times(rate_limiter, 20)

        threads = [threading.Thread(target=spend, args=(index,)) for index in range(0, 20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sum(spent_per_thread), 50)
