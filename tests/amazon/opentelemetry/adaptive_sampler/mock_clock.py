# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

import datetime

from amazon.opentelemetry.adaptive_sampler._clock import _Clock


class MockClock(_Clock):
    def __init__(self, dt: datetime.datetime = None):
        super().__init__()
        self.time_now = dt if dt is not None else datetime.datetime.now()

    def now(self) -> datetime.datetime:
        return self.time_now

    def add_time(self, seconds: float) -> None:
        self.time_now += self.time_delta(seconds)

    def set_time(self, dt: datetime.datetime) -> None:
        self.time_now = dt
