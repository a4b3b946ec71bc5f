# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import json
import os
from logging import getLogger
from typing import Optional, Tuple

from amazon.opentelemetry.adaptive_sampler._aws_xray_adaptive_sampling_config import _AWSXRayAdaptiveSamplingConfig
from amazon.opentelemetry.adaptive_sampler.aws_xray_remote_sampler import AwsXRayRemoteSampler
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.sampling import Sampler

_logger = getLogger(__name__)

AWS_XRAY_ADAPTIVE_SAMPLING_CONFIG = "AWS_XRAY_ADAPTIVE_SAMPLING_CONFIG"


def _parse_sampler_argument(sampler_argument: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    # Example value
    # OTEL_TRACES_SAMPLER_ARG=endpoint=http://localhost:2000,polling_interval=360
    endpoint: str = None
    polling_interval: int = None

    if sampler_argument is None:
        return endpoint, polling_interval

    for arg in sampler_argument.split(","):
        key_value = arg.split("=", 1)
        if len(key_value) != 2:
            continue
        key = key_value[0].strip()
        value = key_value[1].strip()
        if key == "endpoint":
            endpoint = value
        elif key == "polling_interval":
            try:
                polling_interval = int(value)
            except ValueError as error:
                _logger.error("polling_interval in OTEL_TRACES_SAMPLER_ARG must be a number: %s", error)
                continue
            if polling_interval < 0:
                _logger.error("polling_interval in OTEL_TRACES_SAMPLER_ARG must not be negative: %s", value)
                polling_interval = None
    return endpoint, polling_interval


def _parse_adaptive_sampling_config(config_value: Optional[str]) -> Optional[_AWSXRayAdaptiveSamplingConfig]:
    # Example value
    # AWS_XRAY_ADAPTIVE_SAMPLING_CONFIG={"version": 1.0, "anomalyCaptureLimit": {"anomalyTracesPerSecond": 2}}
    if not config_value:
        return None
    try:
        return _AWSXRayAdaptiveSamplingConfig.from_dict(json.loads(config_value))
    except (json.JSONDecodeError, ValueError) as error:
        _logger.error("Ignoring invalid %s: %s", AWS_XRAY_ADAPTIVE_SAMPLING_CONFIG, error)
    return None


def aws_xray_remote_sampler_factory(sampler_argument: Optional[str]) -> Sampler:
    """Builds the sampler for `OTEL_TRACES_SAMPLER=xray`, called by the OpenTelemetry SDK with
    the value of `OTEL_TRACES_SAMPLER_ARG`."""
    endpoint, polling_interval = _parse_sampler_argument(sampler_argument)
    _logger.debug("XRay Sampler Endpoint: %s", str(endpoint))
    _logger.debug("XRay Sampler Polling Interval: %s", str(polling_interval))
    adaptive_sampling_config = _parse_adaptive_sampling_config(os.environ.get(AWS_XRAY_ADAPTIVE_SAMPLING_CONFIG))
    return AwsXRayRemoteSampler(
        resource=Resource.create(),
        endpoint=endpoint,
        polling_interval=polling_interval,
        adaptive_sampling_config=adaptive_sampling_config,
    )
