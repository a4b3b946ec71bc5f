# Copyright The OpenTelemetry Authors
#
# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import random
import secrets
from logging import getLogger
from threading import Event, RLock, Timer
from typing import Callable, Dict, Optional, Sequence

from typing_extensions import override

from amazon.opentelemetry.adaptive_sampler._aws_xray_adaptive_sampling_config import _AWSXRayAdaptiveSamplingConfig
from amazon.opentelemetry.adaptive_sampler._aws_xray_sampling_client import _AwsXRaySamplingClient
from amazon.opentelemetry.adaptive_sampler._clock import _Clock
from amazon.opentelemetry.adaptive_sampler._fallback_sampler import _create_default_initial_sampler
from amazon.opentelemetry.adaptive_sampler._rule_set_sampler import _RuleSetSampler
from amazon.opentelemetry.adaptive_sampler._sampling_rule_applier import DEFAULT_TARGET_POLLING_INTERVAL_SECONDS
from amazon.opentelemetry.adaptive_sampler._sampling_rule import _SamplingRule, _SamplingRulesResponse
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.sampling import Decision, Sampler, SamplingResult
from opentelemetry.trace import Link, SpanKind
from opentelemetry.trace.span import TraceState
from opentelemetry.util.types import Attributes

_logger = getLogger(__name__)

DEFAULT_RULES_POLLING_INTERVAL_SECONDS = 300

DEFAULT_SAMPLING_PROXY_ENDPOINT = "http://127.0.0.1:2000"
# Upper bound of the jitter added to each targets poll
TARGET_POLLING_JITTER_SECONDS = 0.1


class AwsXRayRemoteSampler(Sampler):
    """
    Remote Sampler for OpenTelemetry that gets sampling configurations from AWS X-Ray

    Sampling rules are polled every `polling_interval` seconds (plus up to 1% jitter), and sampling
    targets whenever a rule's reporting interval has elapsed. Until the first rules arrive, spans are
    sampled by `initial_sampler`. Decisions never wait on X-Ray: they read the currently installed
    sampler, which the background pollers replace as a whole.

    With an `adaptive_sampling_config`, spans that are not sampled are still recorded so that
    `adapt_sampling` (usually called by `AdaptiveSamplingSpanProcessor`) sees every finished span.

    Args:
        resource: OpenTelemetry Resource (Optional)
        endpoint: proxy endpoint for AWS X-Ray Sampling (Optional)
        polling_interval: Polling interval for getSamplingRules call (Optional)
        log_level: custom log level configuration for remote sampler (Optional)
        initial_sampler: sampler used before sampling rules are received (Optional)
        clock: clock used for rate limiting, quota expiry and scheduling (Optional)
        adaptive_sampling_config: local anomaly conditions and capture limit (Optional)
    """

    __resource: Resource
    __polling_interval: int
    __xray_client: _AwsXRaySamplingClient

    def __init__(
        self,
        resource: Resource = None,
        endpoint: str = None,
        polling_interval: int = None,
        log_level=None,
        initial_sampler: Sampler = None,
        clock: _Clock = None,
        adaptive_sampling_config: _AWSXRayAdaptiveSamplingConfig = None,
    ):
        # Override default log level
        if log_level is not None:
            _logger.setLevel(log_level)

        if endpoint is None:
            _logger.info("`endpoint` is `None`. Defaulting to %s", DEFAULT_SAMPLING_PROXY_ENDPOINT)
            endpoint = DEFAULT_SAMPLING_PROXY_ENDPOINT
        if polling_interval is None:
            polling_interval = DEFAULT_RULES_POLLING_INTERVAL_SECONDS
        elif polling_interval < 0:
            raise ValueError("polling_interval must be non-negative")
        if resource is None:
            _logger.warning("OTel Resource provided is `None`. Defaulting to empty resource")
            resource = Resource.get_empty()

        self._clock = clock if clock is not None else _Clock()
        self.__resource = resource
        self.__polling_interval = polling_interval
        self.__xray_client = _AwsXRaySamplingClient(endpoint, log_level=log_level)
        self.__client_id = self.__generate_client_id()
        self.__adaptive_sampling_config = adaptive_sampling_config

        self.__initial_sampler = (
            initial_sampler if initial_sampler is not None else _create_default_initial_sampler(self._clock)
        )
        # Swapped as a whole by the pollers, read without locking by should_sample
        self.__sampler: Sampler = self.__initial_sampler

        self.__previous_rules_response: Optional[_SamplingRulesResponse] = None
        self.__previous_rules: Dict[str, _SamplingRule] = {}
        self.__rules_last_fetched = None

        # Serializes the two pollers, never taken on the sampling path
        self.__worker_lock = RLock()
        self.__shutdown = Event()
        self._rules_timer: Optional[Timer] = None
        self._targets_timer: Optional[Timer] = None

        # Fetch the first rules right away, on the poller thread
        self.__schedule_rules_poll(0)

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
        result = self.__sampler.should_sample(
            parent_context, trace_id, name, kind=kind, attributes=attributes, links=links, trace_state=trace_state
        )
        if self.__adaptive_sampling_config is not None and result.decision is Decision.DROP:
            # Recorded but not sampled, so adaptive sampling can still look at the finished span
            result = SamplingResult(Decision.RECORD_ONLY, result.attributes, result.trace_state)
        return result

    @override
    def get_description(self) -> str:
        return "AwsXRayRemoteSampler{" + self.__sampler.get_description() + "}"

    def adapt_sampling(self, span: ReadableSpan, span_batcher: Callable[[ReadableSpan], None]) -> None:
        """Counts a finished span towards sampling boost and captures it if it is an unsampled anomaly.

        Captured spans are passed to `span_batcher`. Does nothing until sampling rules are installed.
        """
        sampler = self.__sampler
        if isinstance(sampler, _RuleSetSampler):
            sampler.adapt_sampling(span, span_batcher)

    def shutdown(self) -> None:
        """Stops polling X-Ray. The last installed sampler keeps making decisions."""
        self.__shutdown.set()
        for timer in (self._rules_timer, self._targets_timer):
            if timer is not None:
                timer.cancel()
        self.__xray_client.close()

    def __start_sampling_rule_poller(self) -> None:
        with self.__worker_lock:
            try:
                self.__get_and_update_sampling_rules()
            # pylint: disable=broad-exception-caught
            except Exception as err:
                _logger.debug("Failed to update sampling rules: %s", err)
            # Add ~1% of jitter
            self.__schedule_rules_poll(self.__polling_interval + random.uniform(0, self.__polling_interval / 100))

    def __start_sampling_target_poller(self) -> None:
        with self.__worker_lock:
            try:
                next_poll = self.__get_and_update_sampling_targets()
            # pylint: disable=broad-exception-caught
            except Exception as err:
                _logger.debug("Failed to update sampling targets: %s", err)
                next_poll = DEFAULT_TARGET_POLLING_INTERVAL_SECONDS
            self.__schedule_targets_poll(next_poll)

    def __get_and_update_sampling_rules(self) -> None:
        with self.__worker_lock:
            if self.__shutdown.is_set():
                return
            response = self.__xray_client.get_sampling_rules()
            if response is None or self.__shutdown.is_set():
                return
            self.__rules_last_fetched = self._clock.now()
            if response == self.__previous_rules_response:
                return

            rule_set_sampler = _RuleSetSampler.from_sampling_rules(
                response.SamplingRules,
                self.__previous_rules,
                self.__resource,
                self.__initial_sampler,
                self.__client_id,
                self._clock,
                adaptive_sampling_config=self.__adaptive_sampling_config,
            )
            self.__sampler = rule_set_sampler
            self.__previous_rules_response = response
            self.__previous_rules = rule_set_sampler.sampling_rules
            _logger.debug("Installed sampling rules: %s", rule_set_sampler.get_description())

            # New rules start a new statistics window, report it after the default interval
            self.__schedule_targets_poll(DEFAULT_TARGET_POLLING_INTERVAL_SECONDS)

    def __get_and_update_sampling_targets(self) -> Optional[float]:
        """Exchanges due statistics for targets and returns the delay until the next exchange."""
        with self.__worker_lock:
            rule_set_sampler = self.__sampler
            if self.__shutdown.is_set() or not isinstance(rule_set_sampler, _RuleSetSampler):
                return DEFAULT_TARGET_POLLING_INTERVAL_SECONDS

            now = self._clock.now()
            boost_statistics = rule_set_sampler.boost_snapshot(now)
            statistics = rule_set_sampler.snapshot(now)
            requested_rule_names = {document.RuleName for document in statistics}

            response = self.__xray_client.get_sampling_targets(statistics, boost_statistics)
            if response is None:
                # Might be a transient API failure, try again after a default interval
                return DEFAULT_TARGET_POLLING_INTERVAL_SECONDS
            if self.__shutdown.is_set():
                return DEFAULT_TARGET_POLLING_INTERVAL_SECONDS

            for unprocessed in response.UnprocessedStatistics:
                _logger.debug(
                    "X-Ray could not process statistics of rule %s: %s %s",
                    unprocessed.RuleName,
                    unprocessed.ErrorCode,
                    unprocessed.Message,
                )
            for unprocessed in response.UnprocessedBoostStatistics:
                _logger.debug(
                    "X-Ray could not process boost statistics of rule %s: %s %s",
                    unprocessed.RuleName,
                    unprocessed.ErrorCode,
                    unprocessed.Message,
                )

            rule_set_sampler = rule_set_sampler.with_targets(response.targets_by_rule_name(), requested_rule_names, now)
            self.__sampler = rule_set_sampler

            last_rule_modification = self._clock.from_timestamp(response.LastRuleModification)
            if last_rule_modification > self.__rules_last_fetched:
                _logger.debug("Sampling rules were modified in X-Ray, refreshing rules")
                self.__get_and_update_sampling_rules()
                if self.__sampler is not rule_set_sampler:
                    # A new rule set was installed and scheduled its own targets poll
                    return None

            delay = self._clock.seconds_between(self._clock.now(), rule_set_sampler.next_target_fetch_time())
            return max(float(delay), 0.0) + random.uniform(0, TARGET_POLLING_JITTER_SECONDS)

    def __schedule_rules_poll(self, delay: float) -> None:
        if self.__shutdown.is_set():
            return
        self._rules_timer = Timer(delay, self.__start_sampling_rule_poller)
        self._rules_timer.daemon = True
        self._rules_timer.start()

    def __schedule_targets_poll(self, delay: Optional[float]) -> None:
        if delay is None or self.__shutdown.is_set():
            return
        existing_timer = self._targets_timer
        if existing_timer is not None:
            existing_timer.cancel()
        self._targets_timer = Timer(delay, self.__start_sampling_target_poller)
        self._targets_timer.daemon = True
        self._targets_timer.start()

    @staticmethod
    def __generate_client_id() -> str:
        # 24 random hex characters, identifies this process to X-Ray
        return secrets.token_hex(12)
