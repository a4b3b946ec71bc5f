# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import re
from enum import Enum
from typing import List, Optional


class _UsageType(Enum):
    BOTH = "both"
    SAMPLING_BOOST = "sampling-boost"
    ANOMALY_TRACE_CAPTURE = "anomaly-trace-capture"
    NEITHER = "neither"

    @staticmethod
    def is_used_for_boost(usage: Optional["_UsageType"]) -> bool:
        return usage in (_UsageType.BOTH, _UsageType.SAMPLING_BOOST)

    @staticmethod
    def is_used_for_anomaly_trace_capture(usage: Optional["_UsageType"]) -> bool:
        return usage in (_UsageType.BOTH, _UsageType.ANOMALY_TRACE_CAPTURE)


class _AWSXRayAdaptiveSamplingConfig:
    """Local adaptive sampling configuration.

    `anomaly_conditions` decide which finished spans are anomalies. Without conditions, a span with
    an HTTP status code above 499 (or with an error status and no status code) is one. Anomalies
    boost the sampling rate of rules that allow it and are captured even when not sampled, at most
    `anomaly_capture_limit` traces per second.
    """

    def __init__(
        self,
        version: float,
        anomaly_conditions: Optional[List["_AnomalyConditions"]] = None,
        anomaly_capture_limit: Optional["_AnomalyCaptureLimit"] = None,
    ):
        if not isinstance(version, float):
            raise ValueError("Invalid adaptive sampling configuration")
        if anomaly_conditions is not None and not isinstance(anomaly_conditions, List):
            raise ValueError("Invalid anomaly conditions configuration")
        if anomaly_capture_limit is not None and not isinstance(anomaly_capture_limit, _AnomalyCaptureLimit):
            raise ValueError("Invalid anomaly capture limit configuration")

        self.version = version
        self.anomaly_conditions = anomaly_conditions
        self.anomaly_capture_limit = anomaly_capture_limit

    @classmethod
    def from_dict(cls, config: dict) -> "_AWSXRayAdaptiveSamplingConfig":
        """Decodes the JSON form, e.g. `{"version": 1.0, "anomalyCaptureLimit": {"anomalyTracesPerSecond": 2}}`."""
        if not isinstance(config, dict):
            raise ValueError("Invalid adaptive sampling configuration")

        version = config.get("version")
        # JSON writes 1.0 as 1
        if isinstance(version, int) and not isinstance(version, bool):
            version = float(version)

        anomaly_conditions = config.get("anomalyConditions")
        if isinstance(anomaly_conditions, list):
            anomaly_conditions = [_AnomalyConditions.from_dict(condition) for condition in anomaly_conditions]

        anomaly_capture_limit = config.get("anomalyCaptureLimit")
        if anomaly_capture_limit is not None:
            if not isinstance(anomaly_capture_limit, dict):
                raise ValueError("Invalid anomaly capture limit configuration")
            anomaly_capture_limit = _AnomalyCaptureLimit(anomaly_capture_limit.get("anomalyTracesPerSecond"))

        return cls(version, anomaly_conditions=anomaly_conditions, anomaly_capture_limit=anomaly_capture_limit)


class _AnomalyConditions:
    def __init__(
        self,
        error_code_regex: Optional[str] = None,
        operations: Optional[List[str]] = None,
        high_latency_ms: Optional[int] = None,
        usage: Optional[_UsageType] = None,
    ):
        if error_code_regex is not None and not isinstance(error_code_regex, str):
            raise ValueError("Invalid errorCodeRegex in anomaly condition")
        if operations is not None and not isinstance(operations, List):
            raise ValueError("Invalid operations in anomaly condition")
        if high_latency_ms is not None and not isinstance(high_latency_ms, int):
            raise ValueError("Invalid highLatencyMs in anomaly condition")
        if usage is not None and not isinstance(usage, _UsageType):
            raise ValueError("Invalid usage in anomaly condition")
        self.error_code_regex = error_code_regex
        self.operations = operations
        self.high_latency_ms = high_latency_ms
        self.usage = usage

        self.error_code_pattern = None
        if error_code_regex is not None:
            try:
                self.error_code_pattern = re.compile(error_code_regex)
            except re.error as err:
                raise ValueError("Invalid errorCodeRegex in anomaly condition") from err

    @classmethod
    def from_dict(cls, condition: dict) -> "_AnomalyConditions":
        if not isinstance(condition, dict):
            raise ValueError("Invalid anomaly conditions configuration")
        usage = condition.get("usage")
        if usage is not None:
            try:
                usage = _UsageType(usage)
            except ValueError as err:
                raise ValueError("Invalid usage in anomaly condition") from err
        return cls(
            error_code_regex=condition.get("errorCodeRegex"),
            operations=condition.get("operations"),
            high_latency_ms=condition.get("highLatencyMs"),
            usage=usage,
        )


class _AnomalyCaptureLimit:
    def __init__(self, anomaly_traces_per_second: int):
        if anomaly_traces_per_second is None or not isinstance(anomaly_traces_per_second, int):
            raise ValueError("Invalid anomalyTracesPerSecond in anomaly capture limit")
        self.anomaly_traces_per_second = anomaly_traces_per_second
