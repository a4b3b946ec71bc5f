# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from decimal import Decimal
from threading import Lock

from amazon.opentelemetry.adaptive_sampler._clock import _Clock


class _RateLimiter:
    """Token bucket refilled at `quota` tokens per second.

    The bucket holds at most `max_balance_in_seconds` worth of tokens and starts full, so a freshly
    created limiter can spend its whole burst right away.
    """

    def __init__(self, max_balance_in_seconds: int, quota: int, clock: _Clock):
        # max_balance_in_seconds is usually 1
        self._clock = clock
        self._quota = Decimal(quota)
        self._capacity = Decimal(max_balance_in_seconds) * self._quota

        self.__tokens = self._capacity
        self.__last_refill = self._clock.now()
        self.__lock = Lock()

    def try_spend(self, cost: float) -> bool:
        if self._quota == 0:
            return False

        cost = Decimal(cost)
        with self.__lock:
            now = self._clock.now()
            elapsed = self._clock.seconds_between(self.__last_refill, now)
            # A clock moving backwards neither refills nor rewinds the bucket
            if elapsed > 0:
                self.__tokens = min(self._capacity, self.__tokens + elapsed * self._quota)
                self.__last_refill = now
            if self.__tokens - cost >= 0:
                self.__tokens -= cost
                return True
            # No changes to the bucket
            return False
