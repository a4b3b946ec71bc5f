# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from logging import getLogger
from numbers import Real
from typing import List, Optional

_logger = getLogger(__name__)

SUPPORTED_RULE_VERSION = 1
# Default to value with lower priority than default rule
DEFAULT_RULE_PRIORITY = 10001

_MATCH_FIELDS = ("HTTPMethod", "Host", "ResourceARN", "ServiceName", "ServiceType", "URLPath")


# Disable snake_case naming style so this class can match the sampling rules response from X-Ray
# pylint: disable=invalid-name
class _SamplingRule:
    def __init__(
        self,
        Attributes: dict = None,
        FixedRate: float = None,
        HTTPMethod: str = None,
        Host: str = None,
        Priority: int = None,
        ReservoirSize: int = None,
        ResourceARN: str = None,
        RuleARN: str = None,
        RuleName: str = None,
        SamplingRateBoost: dict = None,
        ServiceName: str = None,
        ServiceType: str = None,
        URLPath: str = None,
        Version: int = None,
        **kwargs,
    ):
        if kwargs:
            _logger.debug("Ignoring unknown fields in _SamplingRule: %s", list(kwargs.keys()))

        self.Attributes = Attributes if Attributes is not None else {}
        self.FixedRate = FixedRate if FixedRate is not None else 0.0
        self.HTTPMethod = HTTPMethod if HTTPMethod is not None else "*"
        self.Host = Host if Host is not None else "*"
        self.Priority = Priority if Priority is not None else DEFAULT_RULE_PRIORITY
        self.ReservoirSize = ReservoirSize if ReservoirSize is not None else 0
        self.ResourceARN = ResourceARN if ResourceARN is not None else "*"
        self.RuleARN = RuleARN if RuleARN is not None else ""
        self.RuleName = RuleName if RuleName is not None else ""
        # MaxRate and CooldownWindowMinutes of a rule that allows boosting, can be None
        self.SamplingRateBoost = SamplingRateBoost
        self.ServiceName = ServiceName if ServiceName is not None else "*"
        self.ServiceType = ServiceType if ServiceType is not None else "*"
        self.URLPath = URLPath if URLPath is not None else "*"
        self.Version = Version if Version is not None else 0

    def validate(self) -> None:
        """Raises ValueError if this rule cannot be turned into a sampling rule applier."""
        if not isinstance(self.RuleName, str) or self.RuleName == "":
            raise ValueError("sampling rule without rule name is not supported")
        if _is_not_int(self.Version) or self.Version != SUPPORTED_RULE_VERSION:
            raise ValueError(f"sampling rule without Version {SUPPORTED_RULE_VERSION} is not supported")
        if _is_not_int(self.Priority):
            raise ValueError(f"invalid Priority: {self.Priority!r}")
        if _is_not_int(self.ReservoirSize) or self.ReservoirSize < 0:
            raise ValueError(f"invalid ReservoirSize: {self.ReservoirSize!r}")
        if isinstance(self.FixedRate, bool) or not isinstance(self.FixedRate, Real) or not 0 <= self.FixedRate <= 1:
            raise ValueError(f"invalid FixedRate: {self.FixedRate!r}")
        for field in _MATCH_FIELDS:
            if not isinstance(getattr(self, field), str):
                raise ValueError(f"invalid {field}: {getattr(self, field)!r}")
        if not isinstance(self.Attributes, dict):
            raise ValueError(f"invalid Attributes: {self.Attributes!r}")
        for key, pattern in self.Attributes.items():
            if not isinstance(key, str) or not isinstance(pattern, str):
                raise ValueError(f"invalid Attributes entry: {key!r}: {pattern!r}")
        if self.SamplingRateBoost is not None and not isinstance(self.SamplingRateBoost, dict):
            raise ValueError(f"invalid SamplingRateBoost: {self.SamplingRateBoost!r}")

    def __lt__(self, other: "_SamplingRule") -> bool:
        if self.Priority == other.Priority:
            # String order priority example:
            # "A","Abc","a","ab","abc","abcdef"
            return self.RuleName < other.RuleName
        return self.Priority < other.Priority

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _SamplingRule):
            return False
        return (
            self.FixedRate == other.FixedRate
            and self.HTTPMethod == other.HTTPMethod
            and self.Host == other.Host
            and self.Priority == other.Priority
            and self.ReservoirSize == other.ReservoirSize
            and self.ResourceARN == other.ResourceARN
            and self.RuleARN == other.RuleARN
            and self.RuleName == other.RuleName
            and self.ServiceName == other.ServiceName
            and self.ServiceType == other.ServiceType
            and self.URLPath == other.URLPath
            and self.Version == other.Version
            and self.Attributes == other.Attributes
            and self.SamplingRateBoost == other.SamplingRateBoost
        )

    def __repr__(self) -> str:
        return f"_SamplingRule(RuleName={self.RuleName!r}, Priority={self.Priority!r})"


class _SamplingRulesResponse:
    """Decoded GetSamplingRules response.

    Rules may arrive either as a flat `SamplingRule` list or wrapped in X-Ray's
    `SamplingRuleRecords: [{"SamplingRule": {...}}]` envelope.
    """

    def __init__(
        self,
        NextToken: Optional[str] = None,
        SamplingRule: Optional[List[dict]] = None,
        SamplingRuleRecords: Optional[List[dict]] = None,
        **kwargs,
    ):
        if kwargs:
            _logger.debug("Ignoring unknown fields in _SamplingRulesResponse: %s", list(kwargs.keys()))

        self.NextToken = NextToken
        self.SamplingRules: List[_SamplingRule] = []

        documents = list(SamplingRule) if SamplingRule is not None else []
        if SamplingRuleRecords is not None:
            for record in SamplingRuleRecords:
                if not isinstance(record, dict) or "SamplingRule" not in record:
                    _logger.debug("SamplingRule is missing in SamplingRuleRecord")
                    continue
                documents.append(record["SamplingRule"])

        for document in documents:
            if not isinstance(document, dict):
                _logger.debug("Ignoring malformed sampling rule document: %s", document)
                continue
            self.SamplingRules.append(_SamplingRule(**document))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _SamplingRulesResponse):
            return False
        return self.NextToken == other.NextToken and self.SamplingRules == other.SamplingRules


def _is_not_int(value) -> bool:
    return isinstance(value, bool) or not isinstance(value, int)
