# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from typing import Callable, Optional

from typing_extensions import override

from amazon.opentelemetry.adaptive_sampler.aws_xray_remote_sampler import AwsXRayRemoteSampler
from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor


class AdaptiveSamplingSpanProcessor(SpanProcessor):
    """Hands every finished span to `AwsXRayRemoteSampler.adapt_sampling`.

    Anomalous spans that were not sampled are passed to `span_batcher`, for example
    `lambda span: exporter.export([span])`. The sampler should be configured with an adaptive sampling
    config so that spans it does not sample are still recorded and reach this processor.
    """

    _sampler: AwsXRayRemoteSampler
    _span_batcher: Callable[[ReadableSpan], None]

    def __init__(self, sampler: AwsXRayRemoteSampler, span_batcher: Callable[[ReadableSpan], None]):
        if sampler is None:
            raise ValueError("sampler must not be None")
        self._sampler = sampler
        self._span_batcher = span_batcher

    @override
    def on_start(self, span: Span, parent_context: Optional[Context] = None) -> None:
        pass

    @override
    def on_end(self, span: ReadableSpan) -> None:
        self._sampler.adapt_sampling(span, self._span_batcher)

    @override
    def shutdown(self) -> None:
        pass

    @override
    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True
