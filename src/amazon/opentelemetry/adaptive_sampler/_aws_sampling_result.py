# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import hashlib
from types import MappingProxyType
from typing import Optional

from opentelemetry.sdk.trace.sampling import SamplingResult
from opentelemetry.trace.span import TraceState
from opentelemetry.util.types import AttributeValue

AWS_XRAY_SAMPLING_RULE = "aws.xray.sampling_rule"


class _AwsSamplingResult(SamplingResult):
    """A sampling result tagged with the name of the sampling rule that produced it.

    When given a rule hash, the trace state also carries it under `xrsr` unless the trace already
    has one, so every span of a trace, in this service and downstream, knows which rule decided.
    """

    AWS_XRAY_SAMPLING_RULE_TRACE_STATE_KEY = "xrsr"

    def __init__(
        self,
        result: SamplingResult,
        sampling_rule_name: Optional[str] = None,
        sampling_rule_hash: Optional[str] = None,
    ):
        super().__init__(result.decision, result.attributes, result.trace_state)

        # super will have defined self.attributes by this point
        if sampling_rule_name is not None:
            self.__add_attribute(AWS_XRAY_SAMPLING_RULE, sampling_rule_name)

        if sampling_rule_hash is not None:
            if self.trace_state is None:
                self.trace_state = TraceState()
            if self.trace_state.get(self.AWS_XRAY_SAMPLING_RULE_TRACE_STATE_KEY) is None:
                self.trace_state = self.trace_state.add(self.AWS_XRAY_SAMPLING_RULE_TRACE_STATE_KEY, sampling_rule_hash)

        self.sampling_rule_name = sampling_rule_name

    def __add_attribute(self, key: str, value: AttributeValue):
        self.attributes = MappingProxyType(
            {
                **self.attributes,
                key: value,
            }
        )


def _hash_rule_name(rule_name: str) -> str:
    # First 8 bytes of the SHA-256 digest, short enough for a trace state value
    return hashlib.sha256(rule_name.encode("utf-8")).hexdigest()[:16]
