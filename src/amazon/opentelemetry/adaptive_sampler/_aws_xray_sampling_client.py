# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import json
from logging import getLogger
from typing import List, Optional

import requests

from amazon.opentelemetry.adaptive_sampler._sampling_rule import _SamplingRulesResponse
from amazon.opentelemetry.adaptive_sampler._sampling_statistics_document import (
    _SamplingBoostStatisticsDocument,
    _SamplingStatisticsDocument,
)
from amazon.opentelemetry.adaptive_sampler._sampling_target import _SamplingTargetResponse
from opentelemetry.context import _SUPPRESS_INSTRUMENTATION_KEY, attach, detach, set_value

_logger = getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 20


class _AwsXRaySamplingClient:
    """Calls the X-Ray sampling API (directly or through a collector/daemon proxy).

    Both calls return None when no usable response was received. Failures are logged and never
    raised, the caller keeps using what it already has.
    """

    def __init__(self, endpoint: str = None, log_level: str = None, timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS):
        # Override default log level
        if log_level is not None:
            _logger.setLevel(log_level)

        if endpoint is None:
            raise ValueError("endpoint must be specified")
        self.__get_sampling_rules_endpoint = endpoint + "/GetSamplingRules"
        # Lack of Get may look wrong but is correct
        self.__get_sampling_targets_endpoint = endpoint + "/SamplingTargets"
        self.__timeout = timeout

        self.__session = requests.Session()

    def get_sampling_rules(self) -> Optional[_SamplingRulesResponse]:
        # No pagination support yet, NextToken is always null
        response_json = self.__post(self.__get_sampling_rules_endpoint, {"NextToken": None})
        if response_json is None:
            return None
        if not isinstance(response_json, dict) or (
            "SamplingRuleRecords" not in response_json and "SamplingRule" not in response_json
        ):
            _logger.debug("SamplingRuleRecords is missing in getSamplingRules response: %s", response_json)
            return None
        try:
            return _SamplingRulesResponse(**response_json)
        # pylint: disable=broad-exception-caught
        except Exception as err:
            _logger.debug("Error occurred when decoding sampling rules: %s", err)
        return None

    def get_sampling_targets(
        self,
        statistics: List[_SamplingStatisticsDocument],
        boost_statistics: Optional[List[_SamplingBoostStatisticsDocument]] = None,
    ) -> Optional[_SamplingTargetResponse]:
        body = {"SamplingStatisticsDocuments": [document.to_dict() for document in statistics]}
        # Only rules that allow boosting report boost statistics
        if boost_statistics:
            body["SamplingBoostStatisticsDocuments"] = [document.to_dict() for document in boost_statistics]
        response_json = self.__post(self.__get_sampling_targets_endpoint, body)
        if response_json is None:
            return None
        if (
            not isinstance(response_json, dict)
            or "SamplingTargetDocuments" not in response_json
            or "LastRuleModification" not in response_json
        ):
            _logger.debug("getSamplingTargets response is invalid. Unable to update targets.")
            return None
        try:
            return _SamplingTargetResponse(**response_json)
        # pylint: disable=broad-exception-caught
        except Exception as err:
            _logger.debug("Error occurred when decoding sampling targets: %s", err)
        return None

    def close(self) -> None:
        self.__session.close()

    def __post(self, url: str, body: dict):
        headers = {"content-type": "application/json"}
        # The sampler must not trace its own calls to X-Ray
        token = attach(set_value(_SUPPRESS_INSTRUMENTATION_KEY, True))
        try:
            xray_response = self.__session.post(url=url, headers=headers, timeout=self.__timeout, json=body)
            xray_response.raise_for_status()
            return xray_response.json()
        except requests.exceptions.RequestException as req_err:
            _logger.debug("Request error occurred: %s", req_err)
        except json.JSONDecodeError as json_err:
            _logger.debug("Error in decoding JSON response: %s", json_err)
        # pylint: disable=broad-exception-caught
        except Exception as err:
            _logger.debug("Error occurred when calling %s: %s", url, err)
        finally:
            detach(token)
        return None
