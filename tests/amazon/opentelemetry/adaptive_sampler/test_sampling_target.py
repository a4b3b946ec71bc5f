# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import json
import os
from unittest import TestCase

from amazon.opentelemetry.adaptive_sampler._sampling_target import (
    _SamplingBoost,
    _SamplingTarget,
    _SamplingTargetResponse,
)

TEST_DIR = os.path.dirname(os.path.realpath(__file__))
DATA_DIR = os.path.join(TEST_DIR, "data")


class TestSamplingTarget(TestCase):
    def test_sampling_target_defaults(self):
        target = _SamplingTarget(RuleName="test")
        self.assertEqual(target.FixedRate, 0.0)
        self.assertIsNone(target.Interval)
        self.assertIsNone(target.ReservoirQuota)
        self.assertIsNone(target.ReservoirQuotaTTL)

    def test_sampling_target_response(self):
        with open(f"{DATA_DIR}/get-sampling-targets-response-sample.json", encoding="UTF-8") as file:
            response = _SamplingTargetResponse(**json.load(file))

        self.assertEqual(response.LastRuleModification, 1707551387.0)
        self.assertEqual(len(response.SamplingTargetDocuments), 3)

        targets = response.targets_by_rule_name()
        self.assertEqual(set(targets.keys()), {"test", "Default", "test-no-quota"})
        self.assertEqual(targets["test"].FixedRate, 0.1)
        self.assertEqual(targets["test"].Interval, 10)
        self.assertEqual(targets["test"].ReservoirQuota, 30)
        self.assertEqual(targets["test"].ReservoirQuotaTTL, 1707551400.0)
        self.assertIsNone(targets["test-no-quota"].ReservoirQuota)

        self.assertEqual(len(response.UnprocessedStatistics), 1)
        self.assertEqual(response.UnprocessedStatistics[0].ErrorCode, "400")
        self.assertEqual(response.UnprocessedStatistics[0].Message, "Unknown rule")
        self.assertEqual(response.UnprocessedStatistics[0].RuleName, "test-unknown")

    def test_sampling_target_response_drops_targets_without_rule_name(self):
        response = _SamplingTargetResponse(
            LastRuleModification=None,
            SamplingTargetDocuments=[
                {"FixedRate": 0.5},
                {"FixedRate": 0.5, "RuleName": "test", "SomethingNew": True},
            ],
            UnprocessedStatistics=None,
        )
        self.assertEqual(response.LastRuleModification, 0.0)
        self.assertEqual([target.RuleName for target in response.SamplingTargetDocuments], ["test"])
        self.assertEqual(response.UnprocessedStatistics, [])

    def test_sampling_target_response_ignores_unknown_fields(self):
        response = _SamplingTargetResponse(
            LastRuleModification=1.0,
            SamplingTargetDocuments=[],
            UnprocessedStatistics=[{"ErrorCode": "500", "Extra": "x"}],
            Extra="x",
        )
        self.assertEqual(response.SamplingTargetDocuments, [])
        self.assertEqual(response.UnprocessedStatistics[0].ErrorCode, "500")
        self.assertEqual(response.UnprocessedStatistics[0].RuleName, "")

    def test_sampling_target_response_decodes_sampling_boost(self):
        with open(f"{DATA_DIR}/get-sampling-targets-response-sample.json", encoding="UTF-8") as file:
            response = _SamplingTargetResponse(**json.load(file))

        targets = response.targets_by_rule_name()
        self.assertIsInstance(targets["test"].SamplingBoost, _SamplingBoost)
        self.assertEqual(targets["test"].SamplingBoost.BoostRate, 0.5)
        self.assertEqual(targets["test"].SamplingBoost.BoostRateTTL, 1707551400.0)
        self.assertIsNone(targets["Default"].SamplingBoost)

        self.assertEqual(len(response.UnprocessedBoostStatistics), 1)
        self.assertEqual(response.UnprocessedBoostStatistics[0].RuleName, "Default")
        self.assertEqual(response.UnprocessedBoostStatistics[0].Message, "Rule does not allow boosting")

    def test_sampling_target_response_drops_invalid_targets(self):
        invalid_documents = [
            {"FixedRate": 1.5, "Interval": 1, "RuleName": "rate-too-high"},
            {"FixedRate": -0.1, "RuleName": "rate-negative"},
            {"FixedRate": "0.5", "RuleName": "rate-string"},
            {"FixedRate": True, "RuleName": "rate-bool"},
            {"FixedRate": float("nan"), "RuleName": "rate-nan"},
            {"FixedRate": 0.5, "Interval": "10", "RuleName": "interval-string"},
            {"FixedRate": 0.5, "Interval": -1, "RuleName": "interval-negative"},
            {"FixedRate": 0.5, "ReservoirQuota": [1], "RuleName": "quota-list"},
            {"FixedRate": 0.5, "ReservoirQuota": -3, "ReservoirQuotaTTL": 1.0, "RuleName": "quota-negative"},
            {"FixedRate": 0.5, "ReservoirQuota": 1, "ReservoirQuotaTTL": "soon", "RuleName": "ttl-string"},
            {"FixedRate": 0.5, "SamplingBoost": "yes", "RuleName": "boost-string"},
            {"FixedRate": 0.5, "SamplingBoost": {"BoostRate": 2}, "RuleName": "boost-rate-too-high"},
            {"FixedRate": 0.5, "SamplingBoost": {"BoostRate": 1, "BoostRateTTL": "later"}, "RuleName": "boost-ttl"},
            {"FixedRate": 0.5, "RuleName": 7},
            "not a document",
        ]
        with self.assertLogs("amazon.opentelemetry.adaptive_sampler._sampling_target", level="DEBUG"):
            response = _SamplingTargetResponse(
                LastRuleModification=1.0,
                SamplingTargetDocuments=invalid_documents + [{"FixedRate": 1, "Interval": 0, "RuleName": "valid"}],
            )
        self.assertEqual([target.RuleName for target in response.SamplingTargetDocuments], ["valid"])

    def test_sampling_target_response_with_invalid_last_rule_modification(self):
        for last_rule_modification in ("yesterday", [1], True, float("inf")):
            response = _SamplingTargetResponse(
                LastRuleModification=last_rule_modification,
                SamplingTargetDocuments=[{"FixedRate": 0.5, "RuleName": "test"}],
            )
            self.assertEqual(response.LastRuleModification, 0.0)
            self.assertEqual(len(response.SamplingTargetDocuments), 1)

    def test_validate(self):
        _SamplingTarget(FixedRate=0.5, Interval=10, ReservoirQuota=0, ReservoirQuotaTTL=1.0, RuleName="a").validate()
        _SamplingTarget(FixedRate=0, RuleName="a", SamplingBoost={"BoostRate": 1, "BoostRateTTL": 2.5}).validate()
        with self.assertRaises(ValueError):
            _SamplingTarget(FixedRate=1.01, RuleName="a").validate()
        with self.assertRaises(ValueError):
            _SamplingTarget(FixedRate=0.5).validate()
