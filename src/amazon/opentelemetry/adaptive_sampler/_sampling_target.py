# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import math
from logging import getLogger
from numbers import Real
from typing import Dict, List, Optional

_logger = getLogger(__name__)


# Disable snake_case naming style so this class can match the sampling targets response from X-Ray
# pylint: disable=invalid-name
class _SamplingBoost:
    def __init__(self, BoostRate: float = None, BoostRateTTL: float = None, **kwargs):
        if kwargs:
            _logger.debug("Ignoring unknown fields in _SamplingBoost: %s", list(kwargs.keys()))

        self.BoostRate = BoostRate if BoostRate is not None else 0.0
        # Seconds since epoch with fractional milliseconds, can be None
        self.BoostRateTTL = BoostRateTTL


class _SamplingTarget:
    def __init__(
        self,
        FixedRate: float = None,
        Interval: int = None,
        ReservoirQuota: int = None,
        ReservoirQuotaTTL: float = None,
        RuleName: str = None,
        SamplingBoost: dict = None,
        **kwargs,
    ):
        if kwargs:
            _logger.debug("Ignoring unknown fields in _SamplingTarget: %s", list(kwargs.keys()))

        self.FixedRate = FixedRate if FixedRate is not None else 0.0
        self.Interval = Interval  # can be None
        self.ReservoirQuota = ReservoirQuota  # can be None
        # Seconds since epoch with fractional milliseconds, can be None
        self.ReservoirQuotaTTL = ReservoirQuotaTTL
        self.RuleName = RuleName if RuleName is not None else ""
        # Only sent for rules that allow boosting, can be None
        self.SamplingBoost = _SamplingBoost(**SamplingBoost) if isinstance(SamplingBoost, dict) else SamplingBoost

    def validate(self) -> None:
        """Raises ValueError if this target cannot be applied to a sampling rule."""
        if not isinstance(self.RuleName, str) or self.RuleName == "":
            raise ValueError("sampling target without rule name is not supported")
        if not _is_number(self.FixedRate) or not 0 <= self.FixedRate <= 1:
            raise ValueError(f"invalid FixedRate: {self.FixedRate!r}")
        for field in ("Interval", "ReservoirQuota", "ReservoirQuotaTTL"):
            value = getattr(self, field)
            if value is not None and not _is_number(value):
                raise ValueError(f"invalid {field}: {value!r}")
        if self.Interval is not None and self.Interval < 0:
            raise ValueError(f"invalid Interval: {self.Interval!r}")
        if self.ReservoirQuota is not None and self.ReservoirQuota < 0:
            raise ValueError(f"invalid ReservoirQuota: {self.ReservoirQuota!r}")
        if self.SamplingBoost is None:
            return
        if not isinstance(self.SamplingBoost, _SamplingBoost):
            raise ValueError(f"invalid SamplingBoost: {self.SamplingBoost!r}")
        if not _is_number(self.SamplingBoost.BoostRate) or not 0 <= self.SamplingBoost.BoostRate <= 1:
            raise ValueError(f"invalid BoostRate: {self.SamplingBoost.BoostRate!r}")
        if self.SamplingBoost.BoostRateTTL is not None and not _is_number(self.SamplingBoost.BoostRateTTL):
            raise ValueError(f"invalid BoostRateTTL: {self.SamplingBoost.BoostRateTTL!r}")


class _UnprocessedStatistics:
    def __init__(
        self,
        ErrorCode: str = None,
        Message: str = None,
        RuleName: str = None,
        **kwargs,
    ):
        if kwargs:
            _logger.debug("Ignoring unknown fields in _UnprocessedStatistics: %s", list(kwargs.keys()))

        self.ErrorCode = ErrorCode if ErrorCode is not None else ""
        self.Message = Message if Message is not None else ""
        self.RuleName = RuleName if RuleName is not None else ""


class _SamplingTargetResponse:
    def __init__(
        self,
        LastRuleModification: Optional[float],
        SamplingTargetDocuments: Optional[List[dict]] = None,
        UnprocessedStatistics: Optional[List[dict]] = None,
        UnprocessedBoostStatistics: Optional[List[dict]] = None,
        **kwargs,
    ):
        if kwargs:
            _logger.debug("Ignoring unknown fields in _SamplingTargetResponse: %s", list(kwargs.keys()))

        if LastRuleModification is None:
            LastRuleModification = 0.0
        elif not _is_number(LastRuleModification):
            _logger.debug("Ignoring invalid LastRuleModification: %s", LastRuleModification)
            LastRuleModification = 0.0
        self.LastRuleModification: float = LastRuleModification

        self.SamplingTargetDocuments: List[_SamplingTarget] = []
        for document in SamplingTargetDocuments or []:
            if not isinstance(document, dict):
                _logger.debug("Ignoring malformed sampling target document: %s", document)
                continue
            try:
                target = _SamplingTarget(**document)
                target.validate()
            except TypeError as e:
                _logger.debug("TypeError occurred: %s", e)
                continue
            except ValueError as e:
                _logger.debug("Ignoring sampling target %s: %s", document, e)
                continue
            self.SamplingTargetDocuments.append(target)

        self.UnprocessedStatistics = _decode_unprocessed_statistics(UnprocessedStatistics)
        self.UnprocessedBoostStatistics = _decode_unprocessed_statistics(UnprocessedBoostStatistics)

    def targets_by_rule_name(self) -> Dict[str, _SamplingTarget]:
        return {target.RuleName: target for target in self.SamplingTargetDocuments}


def _decode_unprocessed_statistics(documents: Optional[List[dict]]) -> List[_UnprocessedStatistics]:
    unprocessed_statistics = []
    for unprocessed in documents or []:
        try:
            unprocessed_statistics.append(_UnprocessedStatistics(**unprocessed))
        except TypeError as e:
            _logger.debug("TypeError occurred: %s", e)
    return unprocessed_statistics


def _is_number(value) -> bool:
    return not isinstance(value, bool) and isinstance(value, Real) and math.isfinite(value)
