# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from typing import Optional, Sequence

from typing_extensions import override

from amazon.opentelemetry.adaptive_sampler._clock import _Clock
from amazon.opentelemetry.adaptive_sampler._rate_limiting_sampler import _RateLimitingSampler
from opentelemetry.context import Context
from opentelemetry.sdk.trace.sampling import Decision, ParentBased, Sampler, SamplingResult, TraceIdRatioBased
from opentelemetry.trace import Link, SpanKind
from opentelemetry.trace.span import TraceState
from opentelemetry.util.types import Attributes

DEFAULT_FALLBACK_RATE = 0.05


class _FallbackSampler(Sampler):
    """Samples 1 req/sec, then a fixed 5% of the remaining requests.

    Used until the first sampling rules arrive, and for any span that no rule matches.
    """

    def __init__(self, clock: _Clock):
        self.__rate_limiting_sampler = _RateLimitingSampler(1, clock)
        self.__fixed_rate_sampler = TraceIdRatioBased(DEFAULT_FALLBACK_RATE)

    @override
    def should_sample(
        self,
        parent_context: Optional[Context],
        trace_id: int,
        name: str,
        kind: SpanKind = None,
        attributes: Attributes = None,
        links: Sequence[Link] = None,
        trace_state: TraceState = None,
    ) -> SamplingResult:
        sampling_result = self.__rate_limiting_sampler.should_sample(
            parent_context, trace_id, name, kind=kind, attributes=attributes, links=links, trace_state=trace_state
        )
        if sampling_result.decision is not Decision.DROP:
            return sampling_result
        return self.__fixed_rate_sampler.should_sample(
            parent_context, trace_id, name, kind=kind, attributes=attributes, links=links, trace_state=trace_state
        )

    @override
    def get_description(self) -> str:
        description = (
            "FallbackSampler{fallback sampling with sampling config of 1 req/sec and 5% of additional requests}"
        )
        return description


def _create_default_initial_sampler(clock: _Clock) -> Sampler:
    return ParentBased(_FallbackSampler(clock))
