# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import copy
import datetime
from typing import Optional, Sequence

from amazon.opentelemetry.adaptive_sampler._clock import _Clock
from amazon.opentelemetry.adaptive_sampler._matcher import _Matcher, cloud_platform_mapping
from amazon.opentelemetry.adaptive_sampler._rate_limiting_sampler import _RateLimitingSampler
from amazon.opentelemetry.adaptive_sampler._sampling_rule import _SamplingRule
from amazon.opentelemetry.adaptive_sampler._sampling_statistics_document import (
    _SamplingBoostStatisticsDocument,
    _SamplingStatistics,
    _SamplingStatisticsDocument,
)
from amazon.opentelemetry.adaptive_sampler._sampling_target import _SamplingTarget
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    Decision,
    ParentBased,
    Sampler,
    SamplingResult,
    TraceIdRatioBased,
)
from opentelemetry.semconv.resource import CloudPlatformValues, ResourceAttributes
from opentelemetry.semconv.trace import SpanAttributes
from opentelemetry.trace import Link, SpanKind
from opentelemetry.trace.span import TraceState
from opentelemetry.util.types import Attributes

DEFAULT_TARGET_POLLING_INTERVAL_SECONDS = 10

# Value of http.request.method when the instrumentation did not recognize the method
_OTHER_REQUEST_METHOD = "_OTHER"
_HTTP_REQUEST_METHOD_ORIGINAL = "http.request.method_original"
# Deprecated host key, still emitted by older instrumentations
_NET_HOST_NAME = "net.host.name"


class _SamplingRuleApplier:
    """Runtime state of one sampling rule.

    A rule starts out borrowing 1 req/sec from its reservoir (or with no reservoir at all when
    ReservoirSize is 0). Each target received from X-Ray produces a new applier through
    `with_target`, which either installs the assigned reservoir quota until its TTL or removes the
    reservoir. A rule with a SamplingRateBoost may also be assigned a boosted fixed rate, used in place
    of the target's fixed rate until the boost expires. Appliers are never modified once built, but
    every applier derived from the same rule shares one `_SamplingStatistics`.
    """

    def __init__(
        self,
        sampling_rule: _SamplingRule,
        client_id: str,
        clock: _Clock,
        statistics: Optional[_SamplingStatistics] = None,
    ):
        self.__client_id = client_id
        self._clock = clock
        self.sampling_rule = sampling_rule

        self.__statistics = statistics if statistics is not None else _SamplingStatistics()

        # No target yet, a snapshot can be reported right away
        self.__next_snapshot_time = self._clock.now()

        # Borrowing has no end time, only a quota from a target does
        self.__reservoir_expiry = self._clock.max()
        if sampling_rule.ReservoirSize > 0:
            # Until calling GetSamplingTargets, borrow 1 req/sec if reservoir size is positive
            self.__reservoir_sampler = self.__create_rate_limited(1)
            self.__borrowing = True
        else:
            self.__reservoir_sampler = ALWAYS_OFF
            self.__borrowing = False

        self.__fixed_rate_sampler = self.__create_fixed_rate(sampling_rule.FixedRate)
        # No boost until a target assigns one
        self.__boosted_fixed_rate_sampler = self.__fixed_rate_sampler
        self.__boost_expiry = self._clock.now()

        self.__attribute_matchers = _Matcher.compile_attributes(sampling_rule.Attributes)
        self.__url_path_matcher = _Matcher.compile(sampling_rule.URLPath)
        self.__http_method_matcher = _Matcher.compile(sampling_rule.HTTPMethod)
        self.__host_matcher = _Matcher.compile(sampling_rule.Host)
        self.__service_name_matcher = _Matcher.compile(sampling_rule.ServiceName)
        self.__service_type_matcher = _Matcher.compile(sampling_rule.ServiceType)
        self.__resource_arn_matcher = _Matcher.compile(sampling_rule.ResourceARN)

    @property
    def rule_name(self) -> str:
        return self.sampling_rule.RuleName

    @property
    def borrowing(self) -> bool:
        return self.__borrowing

    @property
    def next_snapshot_time(self) -> datetime.datetime:
        return self.__next_snapshot_time

    @property
    def reservoir_expiry(self) -> datetime.datetime:
        return self.__reservoir_expiry

    @property
    def boost_expiry(self) -> datetime.datetime:
        return self.__boost_expiry

    @property
    def has_boost(self) -> bool:
        return self.sampling_rule.SamplingRateBoost is not None

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
        self.__statistics.increment_request()

        now = self._clock.now()
        if now < self.__reservoir_expiry:
            result = self.__reservoir_sampler.should_sample(
                parent_context, trace_id, name, kind=kind, attributes=attributes, links=links, trace_state=trace_state
            )
            if result.decision is not Decision.DROP:
                self.__statistics.increment_sampled(borrowed=self.__borrowing)
                return result

        fixed_rate_sampler = self.__fixed_rate_sampler
        if now < self.__boost_expiry:
            fixed_rate_sampler = self.__boosted_fixed_rate_sampler
        result = fixed_rate_sampler.should_sample(
            parent_context, trace_id, name, kind=kind, attributes=attributes, links=links, trace_state=trace_state
        )
        if result.decision is not Decision.DROP:
            self.__statistics.increment_sampled()
        return result

    def snapshot(self, now: datetime.datetime) -> Optional[_SamplingStatisticsDocument]:
        # Statistics are held back until the interval requested by X-Ray has elapsed
        if now < self.__next_snapshot_time:
            return None
        return self.__statistics.get_then_reset(self.__client_id, self.rule_name, now)

    def boost_snapshot(self, now: datetime.datetime, service_name: str) -> Optional[_SamplingBoostStatisticsDocument]:
        if now < self.__next_snapshot_time:
            return None
        return self.__statistics.get_then_reset_boost(self.rule_name, service_name, now)

    def count_trace(self) -> None:
        self.__statistics.increment_trace()

    def count_anomaly_trace(self, sampled: bool) -> None:
        self.__statistics.increment_anomaly(sampled)

    def with_target(self, target: _SamplingTarget, now: datetime.datetime) -> "_SamplingRuleApplier":
        new_applier = copy.copy(self)
        new_applier.__fixed_rate_sampler = self.__create_fixed_rate(target.FixedRate)

        # A quota should always come with a TTL
        if target.ReservoirQuota is not None and target.ReservoirQuotaTTL is not None:
            new_applier.__reservoir_sampler = self.__create_rate_limited(target.ReservoirQuota)
            new_applier.__reservoir_expiry = self._clock.from_timestamp(target.ReservoirQuotaTTL)
        else:
            new_applier.__reservoir_sampler = ALWAYS_OFF
            new_applier.__reservoir_expiry = now

        boost = target.SamplingBoost
        if boost is not None and boost.BoostRateTTL is not None and boost.BoostRate >= target.FixedRate:
            new_applier.__boosted_fixed_rate_sampler = self.__create_fixed_rate(boost.BoostRate)
            new_applier.__boost_expiry = self._clock.from_timestamp(boost.BoostRateTTL)
        else:
            new_applier.__boosted_fixed_rate_sampler = new_applier.__fixed_rate_sampler
            new_applier.__boost_expiry = now

        interval = target.Interval if target.Interval is not None else DEFAULT_TARGET_POLLING_INTERVAL_SECONDS
        new_applier.__next_snapshot_time = now + self._clock.time_delta(interval)
        new_applier.__borrowing = False
        return new_applier

    def with_next_snapshot_time(self, next_snapshot_time: datetime.datetime) -> "_SamplingRuleApplier":
        new_applier = copy.copy(self)
        new_applier.__next_snapshot_time = next_snapshot_time
        return new_applier

    def matches(self, resource: Resource, attributes: Attributes) -> bool:
        url_path = None
        url_full = None
        http_request_method = None
        server_address = None
        service_name = None

        if attributes is not None:
            url_path = attributes.get(SpanAttributes.URL_PATH, attributes.get(SpanAttributes.HTTP_TARGET, None))
            url_full = attributes.get(SpanAttributes.URL_FULL, attributes.get(SpanAttributes.HTTP_URL, None))
            http_request_method = attributes.get(
                SpanAttributes.HTTP_REQUEST_METHOD, attributes.get(SpanAttributes.HTTP_METHOD, None)
            )
            if http_request_method == _OTHER_REQUEST_METHOD:
                http_request_method = attributes.get(_HTTP_REQUEST_METHOD_ORIGINAL, None)
            server_address = attributes.get(SpanAttributes.SERVER_ADDRESS, None)
            if server_address is None:
                server_address = attributes.get(_NET_HOST_NAME, attributes.get(SpanAttributes.HTTP_HOST, None))

        # Resource shouldn't be none as it should default to empty resource
        if resource is not None:
            service_name = resource.attributes.get(ResourceAttributes.SERVICE_NAME, None)

        url_path = _as_str(url_path)
        url_full = _as_str(url_full)
        http_request_method = _as_str(http_request_method)
        server_address = _as_str(server_address)
        service_name = _as_str(service_name)

        # target may be in url
        if url_path is None and url_full is not None:
            url_path = _get_url_path(url_full)

        return (
            _Matcher.attribute_match(attributes, self.__attribute_matchers)
            and self.__url_path_matcher.matches(url_path)
            and self.__http_method_matcher.matches(http_request_method)
            and self.__host_matcher.matches(server_address)
            and self.__service_name_matcher.matches(service_name)
            and self.__service_type_matcher.matches(_get_service_type(resource))
            and self.__resource_arn_matcher.matches(_get_arn(resource, attributes))
        )

    def __create_rate_limited(self, quota: int) -> Sampler:
        return ParentBased(_RateLimitingSampler(quota, self._clock))

    # pylint: disable=no-self-use
    def __create_fixed_rate(self, rate: float) -> Sampler:
        return ParentBased(TraceIdRatioBased(rate))

    def __repr__(self) -> str:
        return f"SamplingRuleApplier{{rule={self.rule_name}, borrowing={self.__borrowing}}}"


def _get_url_path(url_full: str) -> Optional[str]:
    # For network calls, URL usually has `scheme://host[:port][path][?query][#fragment]` format
    # Per semantic conventions, url.full is always populated with scheme://host/target.
    # If scheme or host is missing, assume it's bad instrumentation and ignore.
    scheme_end_index = url_full.find("://")
    if scheme_end_index <= 0:
        return None
    authority_start = scheme_end_index + len("://")
    path_index = url_full.find("/", authority_start)
    if path_index == -1:
        if authority_start == len(url_full):
            return None
        # No path, equivalent to root path
        return "/"
    if path_index == authority_start:
        return None
    return url_full[path_index:]


def _get_service_type(resource: Resource) -> Optional[str]:
    if resource is None:
        return None

    cloud_platform = _as_str(resource.attributes.get(ResourceAttributes.CLOUD_PLATFORM, None))
    if cloud_platform is None:
        return None

    return cloud_platform_mapping.get(cloud_platform, None)


def _get_arn(resource: Resource, attributes: Attributes) -> Optional[str]:
    if resource is None:
        return None
    arn = resource.attributes.get(ResourceAttributes.AWS_ECS_CONTAINER_ARN, None)
    if arn is not None:
        return _as_str(arn)
    if resource.attributes.get(ResourceAttributes.CLOUD_PLATFORM, None) == CloudPlatformValues.AWS_LAMBDA.value:
        arn = resource.attributes.get(SpanAttributes.CLOUD_RESOURCE_ID, None)
        if arn is not None:
            return _as_str(arn)
        if attributes is not None:
            return _as_str(attributes.get(SpanAttributes.CLOUD_RESOURCE_ID, None))
    return None


def _as_str(value) -> Optional[str]:
    # Attribute values are not always strings, rules match their string form
    if value is None or isinstance(value, str):
        return value
    return str(value)
