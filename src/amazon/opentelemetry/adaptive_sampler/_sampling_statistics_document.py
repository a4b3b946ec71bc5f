# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import datetime
from threading import Lock


# Disable snake_case naming style so this class can match the statistics document request to X-Ray
# pylint: disable=invalid-name
class _SamplingStatisticsDocument:
    def __init__(
        self,
        clientID: str,
        ruleName: str,
        RequestCount: int = 0,
        BorrowCount: int = 0,
        SampledCount: int = 0,
        Timestamp: float = None,
    ):
        self.ClientID = clientID
        self.RuleName = ruleName
        # Seconds since epoch, X-Ray decodes fractional milliseconds
        self.Timestamp = Timestamp

        self.RequestCount = RequestCount
        self.BorrowCount = BorrowCount
        self.SampledCount = SampledCount

    def to_dict(self) -> dict:
        return {
            "ClientID": self.ClientID,
            "RuleName": self.RuleName,
            "Timestamp": self.Timestamp,
            "RequestCount": self.RequestCount,
            "BorrowCount": self.BorrowCount,
            "SampledCount": self.SampledCount,
        }


class _SamplingBoostStatisticsDocument:
    def __init__(
        self,
        ruleName: str,
        serviceName: str,
        TotalCount: int = 0,
        AnomalyCount: int = 0,
        SampledAnomalyCount: int = 0,
        Timestamp: float = None,
    ):
        self.RuleName = ruleName
        self.ServiceName = serviceName
        self.Timestamp = Timestamp

        self.TotalCount = TotalCount
        self.AnomalyCount = AnomalyCount
        self.SampledAnomalyCount = SampledAnomalyCount

    def to_dict(self) -> dict:
        return {
            "RuleName": self.RuleName,
            "ServiceName": self.ServiceName,
            "Timestamp": self.Timestamp,
            "TotalCount": self.TotalCount,
            "AnomalyCount": self.AnomalyCount,
            "SampledAnomalyCount": self.SampledAnomalyCount,
        }


class _SamplingStatistics:
    """Counters of one sampling rule.

    One instance is shared by every applier derived from the same rule, so a target update never
    loses counts. `get_then_reset` reads and zeroes the request, sampled and borrowed counters at
    once, `get_then_reset_boost` does the same for the trace and anomaly counters of a boostable rule.
    """

    def __init__(self):
        self.__lock = Lock()
        self.__request_count = 0
        self.__sampled_count = 0
        self.__borrow_count = 0

        self.__trace_count = 0
        self.__anomaly_count = 0
        self.__sampled_anomaly_count = 0

    # Requests are counted before the decision is made, so sampled and borrowed never exceed requests
    def increment_request(self) -> None:
        with self.__lock:
            self.__request_count += 1

    def increment_sampled(self, borrowed: bool = False) -> None:
        with self.__lock:
            self.__sampled_count += 1
            if borrowed:
                self.__borrow_count += 1

    def increment_trace(self) -> None:
        with self.__lock:
            self.__trace_count += 1

    def increment_anomaly(self, sampled: bool) -> None:
        with self.__lock:
            self.__anomaly_count += 1
            if sampled:
                self.__sampled_anomaly_count += 1

    def get_then_reset(self, client_id: str, rule_name: str, now: datetime.datetime) -> _SamplingStatisticsDocument:
        with self.__lock:
            document = _SamplingStatisticsDocument(
                client_id,
                rule_name,
                RequestCount=self.__request_count,
                BorrowCount=self.__borrow_count,
                SampledCount=self.__sampled_count,
                Timestamp=now.timestamp(),
            )
            self.__request_count = 0
            self.__sampled_count = 0
            self.__borrow_count = 0
        return document

    def get_then_reset_boost(
        self, rule_name: str, service_name: str, now: datetime.datetime
    ) -> _SamplingBoostStatisticsDocument:
        with self.__lock:
            document = _SamplingBoostStatisticsDocument(
                rule_name,
                service_name,
                TotalCount=self.__trace_count,
                AnomalyCount=self.__anomaly_count,
                SampledAnomalyCount=self.__sampled_anomaly_count,
                Timestamp=now.timestamp(),
            )
            self.__trace_count = 0
            self.__anomaly_count = 0
            self.__sampled_anomaly_count = 0
        return document
