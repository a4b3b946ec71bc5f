# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import datetime
from logging import getLogger
from typing import Callable, Collection, Dict, List, Mapping, Optional, Sequence, Tuple

from typing_extensions import override

from amazon.opentelemetry.adaptive_sampler._aws_sampling_result import _AwsSamplingResult, _hash_rule_name
from amazon.opentelemetry.adaptive_sampler._aws_xray_adaptive_sampling_config import (
    _AWSXRayAdaptiveSamplingConfig,
    _UsageType,
)
from amazon.opentelemetry.adaptive_sampler._clock import _Clock
from amazon.opentelemetry.adaptive_sampler._rate_limiter import _RateLimiter
from amazon.opentelemetry.adaptive_sampler._sampling_rule import _SamplingRule
from amazon.opentelemetry.adaptive_sampler._sampling_rule_applier import (
    DEFAULT_TARGET_POLLING_INTERVAL_SECONDS,
    _SamplingRuleApplier,
)
from amazon.opentelemetry.adaptive_sampler._sampling_statistics_document import (
    _SamplingBoostStatisticsDocument,
    _SamplingStatisticsDocument,
)
from amazon.opentelemetry.adaptive_sampler._sampling_target import _SamplingTarget
from amazon.opentelemetry.adaptive_sampler._trace_usage_cache import _TraceUsageCache
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.sampling import Sampler, SamplingResult
from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.semconv.trace import SpanAttributes
from opentelemetry.trace import Link, SpanKind, StatusCode
from opentelemetry.trace.span import TraceState
from opentelemetry.util.types import Attributes

_logger = getLogger(__name__)

AWS_LOCAL_OPERATION = "aws.local.operation"
UNKNOWN_OPERATION = "UnknownOperation"


class _RuleSetSampler(Sampler):
    """Immutable, priority ordered set of sampling rule appliers.

    Every update (`with_targets`) returns a new instance so a sampling decision in flight on another
    thread always sees a consistent set of appliers. The adaptive sampling state (trace usage cache
    and anomaly capture limiter) is carried over to every updated instance.
    """

    def __init__(
        self,
        resource: Resource,
        fallback_sampler: Sampler,
        clock: _Clock,
        rule_appliers: Sequence[_SamplingRuleApplier],
        adaptive_sampling_config: Optional[_AWSXRayAdaptiveSamplingConfig] = None,
        trace_usage_cache: Optional[_TraceUsageCache] = None,
        anomaly_capture_limiter: Optional[_RateLimiter] = None,
    ):
        self.__resource = resource
        self._fallback_sampler = fallback_sampler
        self._clock = clock
        self.__rule_appliers: Tuple[_SamplingRuleApplier, ...] = tuple(
            sorted(rule_appliers, key=lambda applier: applier.sampling_rule)
        )
        self.__rule_hashes: Dict[str, str] = {
            applier.rule_name: _hash_rule_name(applier.rule_name) for applier in self.__rule_appliers
        }
        self.__rule_names_by_hash: Dict[str, str] = {
            rule_hash: rule_name for rule_name, rule_hash in self.__rule_hashes.items()
        }

        self.__service_name = ""
        if resource is not None:
            service_name = resource.attributes.get(ResourceAttributes.SERVICE_NAME, None)
            if service_name is not None:
                self.__service_name = str(service_name)

        self.__boost_rule_exists = any(applier.has_boost for applier in self.__rule_appliers)
        self.__adaptive_sampling_config = adaptive_sampling_config
        self.__trace_usage_cache = trace_usage_cache if trace_usage_cache is not None else _TraceUsageCache(clock)
        if anomaly_capture_limiter is None and adaptive_sampling_config is not None:
            capture_limit = adaptive_sampling_config.anomaly_capture_limit
            traces_per_second = capture_limit.anomaly_traces_per_second if capture_limit is not None else 1
            anomaly_capture_limiter = _RateLimiter(1, traces_per_second, clock)
        # Anomalies are only captured when adaptive sampling is configured locally
        self.__anomaly_capture_limiter = anomaly_capture_limiter

    @classmethod
    def from_sampling_rules(
        cls,
        sampling_rules: List[_SamplingRule],
        previous_rules: Mapping[str, _SamplingRule],
        resource: Resource,
        fallback_sampler: Sampler,
        client_id: str,
        clock: _Clock,
        adaptive_sampling_config: Optional[_AWSXRayAdaptiveSamplingConfig] = None,
    ) -> "_RuleSetSampler":
        """Builds a rule set with fresh appliers and statistics.

        A rule that fails validation is replaced by the last valid rule of the same name, if any.
        """
        valid_rules: Dict[str, _SamplingRule] = {}
        for sampling_rule in sampling_rules:
            try:
                sampling_rule.validate()
            except ValueError as err:
                rule_name = sampling_rule.RuleName if isinstance(sampling_rule.RuleName, str) else ""
                previous_rule = previous_rules.get(rule_name, None)
                if previous_rule is None:
                    _logger.debug("Skipping sampling rule %s: %s", rule_name, err)
                    continue
                _logger.debug("Keeping previous definition of sampling rule %s: %s", rule_name, err)
                sampling_rule = previous_rule
            if sampling_rule.RuleName in valid_rules:
                _logger.debug("Ignoring duplicate sampling rule: %s", sampling_rule.RuleName)
                continue
            valid_rules[sampling_rule.RuleName] = sampling_rule

        rule_appliers = [_SamplingRuleApplier(rule, client_id, clock) for rule in valid_rules.values()]
        return cls(resource, fallback_sampler, clock, rule_appliers, adaptive_sampling_config=adaptive_sampling_config)

    @property
    def rule_appliers(self) -> Tuple[_SamplingRuleApplier, ...]:
        return self.__rule_appliers

    @property
    def sampling_rules(self) -> Dict[str, _SamplingRule]:
        return {applier.rule_name: applier.sampling_rule for applier in self.__rule_appliers}

    @property
    def trace_usage_cache(self) -> _TraceUsageCache:
        return self.__trace_usage_cache

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
        for rule_applier in self.__rule_appliers:
            if rule_applier.matches(self.__resource, attributes):
                result = rule_applier.should_sample(
                    parent_context,
                    trace_id,
                    name,
                    kind=kind,
                    attributes=attributes,
                    links=links,
                    trace_state=trace_state,
                )
                return _AwsSamplingResult(
                    result,
                    sampling_rule_name=rule_applier.rule_name,
                    sampling_rule_hash=self.__rule_hashes[rule_applier.rule_name],
                )

        # X-Ray always returns a default rule that matches every request, reaching here is a bug
        # in either the rule matching or X-Ray
        _logger.warning("No sampling rule matched the request, using fallback sampler")
        return self._fallback_sampler.should_sample(
            parent_context, trace_id, name, kind=kind, attributes=attributes, links=links, trace_state=trace_state
        )

    @override
    def get_description(self) -> str:
        return "RuleSetSampler{" + ", ".join(repr(applier) for applier in self.__rule_appliers) + "}"

    def adapt_sampling(self, span: ReadableSpan, span_batcher: Callable[[ReadableSpan], None]) -> None:
        """Reacts to a finished span: anomalies are handed to `span_batcher` when not sampled, and
        counted towards boosting the sampling rate of the rule that decided the trace."""
        if not self.__boost_rule_exists and self.__adaptive_sampling_config is None:
            return

        should_boost_sampling, should_capture_anomaly_span = self.__detect_anomaly(span)
        sampled = span.context.trace_flags.sampled

        trace_id = span.context.trace_id
        existing_usage = self.__trace_usage_cache.get(trace_id)
        is_new_trace = existing_usage is None

        is_span_captured = False
        if _UsageType.is_used_for_anomaly_trace_capture(existing_usage) or (
            should_capture_anomaly_span
            and not sampled
            and self.__anomaly_capture_limiter is not None
            and self.__anomaly_capture_limiter.try_spend(1)
        ):
            span_batcher(span)
            is_span_captured = True

        is_counted_as_anomaly_for_boost = False
        if should_boost_sampling or is_new_trace:
            rule_applier = self.__find_rule_applier_to_report_to(span)
            if rule_applier is not None and rule_applier.has_boost:
                if should_boost_sampling and not _UsageType.is_used_for_boost(existing_usage):
                    rule_applier.count_anomaly_trace(sampled)
                    is_counted_as_anomaly_for_boost = True
                if is_new_trace:
                    rule_applier.count_trace()

        self.__trace_usage_cache.put(
            trace_id, _merge_usage(existing_usage, is_span_captured, is_counted_as_anomaly_for_boost)
        )

    def snapshot(self, now: datetime.datetime) -> List[_SamplingStatisticsDocument]:
        statistics = []
        for applier in self.__rule_appliers:
            document = applier.snapshot(now)
            if document is not None:
                statistics.append(document)
        return statistics

    def boost_snapshot(self, now: datetime.datetime) -> List[_SamplingBoostStatisticsDocument]:
        # Must run before `snapshot` with the same `now`, both are due at the same time
        boost_statistics = []
        for applier in self.__rule_appliers:
            if not applier.has_boost:
                continue
            document = applier.boost_snapshot(now, self.__service_name)
            if document is not None:
                boost_statistics.append(document)
        return boost_statistics

    def next_target_fetch_time(self) -> datetime.datetime:
        if not self.__rule_appliers:
            # There is always at least one rule in practice
            return self._clock.now() + self._clock.time_delta(DEFAULT_TARGET_POLLING_INTERVAL_SECONDS)
        return min(applier.next_snapshot_time for applier in self.__rule_appliers)

    def with_targets(
        self,
        targets: Mapping[str, _SamplingTarget],
        requested_rule_names: Collection[str],
        now: datetime.datetime,
    ) -> "_RuleSetSampler":
        default_next_snapshot_time = now + self._clock.time_delta(DEFAULT_TARGET_POLLING_INTERVAL_SECONDS)

        new_appliers: List[_SamplingRuleApplier] = []
        for applier in self.__rule_appliers:
            target = targets.get(applier.rule_name, None)
            if target is not None:
                new_appliers.append(applier.with_target(target, now))
            elif applier.rule_name in requested_rule_names:
                # X-Ray should return a target for every rule we reported, if it did not then
                # report again after the default interval
                new_appliers.append(applier.with_next_snapshot_time(default_next_snapshot_time))
            else:
                # Not reported this time, updated in a future target fetch
                new_appliers.append(applier)

        return _RuleSetSampler(
            self.__resource,
            self._fallback_sampler,
            self._clock,
            new_appliers,
            adaptive_sampling_config=self.__adaptive_sampling_config,
            trace_usage_cache=self.__trace_usage_cache,
            anomaly_capture_limiter=self.__anomaly_capture_limiter,
        )

    def __find_rule_applier_to_report_to(self, span: ReadableSpan) -> Optional[_SamplingRuleApplier]:
        # The rule that decided the trace, possibly in an upstream service, otherwise the matching rule
        rule_hash = None
        if span.context.trace_state is not None:
            rule_hash = span.context.trace_state.get(_AwsSamplingResult.AWS_XRAY_SAMPLING_RULE_TRACE_STATE_KEY)
        upstream_rule_name = self.__rule_names_by_hash.get(rule_hash, rule_hash) if rule_hash is not None else None

        matched_applier = None
        for applier in self.__rule_appliers:
            if applier.rule_name == upstream_rule_name:
                return applier
            if matched_applier is None and applier.matches(self.__resource, span.attributes):
                matched_applier = applier

        if matched_applier is None:
            _logger.debug("No sampling rule matched the span, it is not counted for sampling boost")
            return None
        # Spans continuing a trace from another service are reported by the service that sampled it
        if span.parent is not None and span.parent.is_valid:
            return None
        return matched_applier

    def __detect_anomaly(self, span: ReadableSpan) -> Tuple[bool, bool]:
        """Returns whether the span should boost sampling and whether it should be captured."""
        attributes = span.attributes if span.attributes is not None else {}
        status_code = attributes.get(
            SpanAttributes.HTTP_RESPONSE_STATUS_CODE, attributes.get(SpanAttributes.HTTP_STATUS_CODE, None)
        )

        anomaly_conditions = None
        if self.__adaptive_sampling_config is not None:
            anomaly_conditions = self.__adaptive_sampling_config.anomaly_conditions
        if anomaly_conditions is None:
            if _is_server_error(status_code) or (status_code is None and span.status.status_code is StatusCode.ERROR):
                return True, True
            return False, False

        # An empty list of conditions never detects anything
        should_boost_sampling = False
        should_capture_anomaly_span = False
        operation = attributes.get(AWS_LOCAL_OPERATION, None)
        if operation is None:
            operation = _generate_ingress_operation(attributes)
        latency_ms = _latency_ms(span)

        for condition in anomaly_conditions:
            # Skip conditions that would only re-apply an action already taken
            if (should_boost_sampling and condition.usage is _UsageType.SAMPLING_BOOST) or (
                should_capture_anomaly_span and condition.usage is _UsageType.ANOMALY_TRACE_CAPTURE
            ):
                continue
            if condition.operations and operation not in condition.operations:
                continue

            is_anomaly = False
            if status_code is not None and condition.error_code_pattern is not None:
                is_anomaly = condition.error_code_pattern.fullmatch(str(status_code)) is not None
            if condition.high_latency_ms is not None:
                is_anomaly = (condition.error_code_pattern is None or is_anomaly) and (
                    latency_ms >= condition.high_latency_ms
                )

            if is_anomaly:
                usage = condition.usage if condition.usage is not None else _UsageType.BOTH
                should_boost_sampling = should_boost_sampling or _UsageType.is_used_for_boost(usage)
                should_capture_anomaly_span = should_capture_anomaly_span or (
                    _UsageType.is_used_for_anomaly_trace_capture(usage)
                )
            if should_boost_sampling and should_capture_anomaly_span:
                break

        return should_boost_sampling, should_capture_anomaly_span


def _merge_usage(
    existing_usage: Optional[_UsageType], is_span_captured: bool, is_counted_for_boost: bool
) -> _UsageType:
    used_for_capture = is_span_captured or _UsageType.is_used_for_anomaly_trace_capture(existing_usage)
    used_for_boost = is_counted_for_boost or _UsageType.is_used_for_boost(existing_usage)
    if used_for_capture and used_for_boost:
        return _UsageType.BOTH
    if used_for_capture:
        return _UsageType.ANOMALY_TRACE_CAPTURE
    if used_for_boost:
        return _UsageType.SAMPLING_BOOST
    return _UsageType.NEITHER


def _is_server_error(status_code) -> bool:
    return isinstance(status_code, int) and not isinstance(status_code, bool) and status_code > 499


def _latency_ms(span: ReadableSpan) -> float:
    if span.start_time is None or span.end_time is None:
        return 0.0
    return (span.end_time - span.start_time) / 1_000_000


def _generate_ingress_operation(attributes: Attributes) -> str:
    """Operation of a server span, e.g. "GET /payment" for a request to /payment/1234."""
    http_target = attributes.get(SpanAttributes.URL_PATH, attributes.get(SpanAttributes.HTTP_TARGET, None))
    if not isinstance(http_target, str):
        return UNKNOWN_OPERATION

    # get the first part from API path string as operation value
    # the more levels/parts we get from API path the higher chance for getting high cardinality data
    operation = _extract_api_path_value(http_target)
    http_method = attributes.get(SpanAttributes.HTTP_REQUEST_METHOD, attributes.get(SpanAttributes.HTTP_METHOD, None))
    if http_method is not None:
        operation = f"{http_method} {operation}"
    return operation


def _extract_api_path_value(http_target: str) -> str:
    paths = http_target.split("/")
    if len(paths) > 1:
        return "/" + paths[1]
    return "/"
