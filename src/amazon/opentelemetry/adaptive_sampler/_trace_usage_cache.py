# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import datetime
from collections import OrderedDict
from threading import Lock
from typing import Optional, Tuple

from amazon.opentelemetry.adaptive_sampler._aws_xray_adaptive_sampling_config import _UsageType
from amazon.opentelemetry.adaptive_sampler._clock import _Clock

DEFAULT_MAX_TRACES = 100_000
DEFAULT_TRACE_TTL_SECONDS = 600


class _TraceUsageCache:
    """How adaptive sampling already used each recent trace, keyed by trace id.

    An entry expires `ttl_seconds` after it was last written. Once `max_size` entries are held the
    least recently written one is evicted.
    """

    def __init__(
        self,
        clock: _Clock,
        max_size: int = DEFAULT_MAX_TRACES,
        ttl_seconds: float = DEFAULT_TRACE_TTL_SECONDS,
    ):
        self._clock = clock
        self.__max_size = max_size
        self.__ttl = clock.time_delta(ttl_seconds)
        # Ordered by write time, so expired entries are always at the front
        self.__entries: "OrderedDict[int, Tuple[_UsageType, datetime.datetime]]" = OrderedDict()
        self.__lock = Lock()

    def get(self, trace_id: int) -> Optional[_UsageType]:
        with self.__lock:
            self.__expire(self._clock.now())
            entry = self.__entries.get(trace_id, None)
            return entry[0] if entry is not None else None

    def put(self, trace_id: int, usage: _UsageType) -> None:
        with self.__lock:
            now = self._clock.now()
            self.__entries.pop(trace_id, None)
            self.__entries[trace_id] = (usage, now + self.__ttl)
            self.__expire(now)
            while len(self.__entries) > self.__max_size:
                self.__entries.popitem(last=False)

    def __len__(self) -> int:
        with self.__lock:
            self.__expire(self._clock.now())
            return len(self.__entries)

    def __expire(self, now: datetime.datetime) -> None:
        while self.__entries:
            trace_id, (_, expiry) = next(iter(self.__entries.items()))
            if expiry > now:
                return
            del self.__entries[trace_id]
