# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import re
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from opentelemetry.semconv.resource import CloudPlatformValues
from opentelemetry.util.types import Attributes

cloud_platform_mapping = {
    CloudPlatformValues.AWS_LAMBDA.value: "AWS::Lambda::Function",
    CloudPlatformValues.AWS_ELASTIC_BEANSTALK.value: "AWS::ElasticBeanstalk::Environment",
    CloudPlatformValues.AWS_EC2.value: "AWS::EC2::Instance",
    CloudPlatformValues.AWS_ECS.value: "AWS::ECS::Container",
    CloudPlatformValues.AWS_EKS.value: "AWS::EKS::Container",
}


class _Matcher(ABC):
    """A compiled sampling rule glob.

    `*` matches any run of characters and `?` any single character. A pattern without wildcards
    is compared case-insensitively, a pattern with wildcards is matched case-sensitively.
    """

    @abstractmethod
    def matches(self, text: Optional[str]) -> bool:
        pass

    @staticmethod
    def compile(pattern: str) -> "_Matcher":
        if pattern == "*":
            return _TRUE_MATCHER
        for char in pattern:
            if char in ("*", "?"):
                return _PatternMatcher(pattern)
        return _StringMatcher(pattern)

    @staticmethod
    def to_regex_pattern(rule_pattern: str) -> str:
        token_start = -1
        regex_pattern = ""
        for index, char in enumerate(rule_pattern):
            if char in ("*", "?"):
                if token_start != -1:
                    regex_pattern += re.escape(rule_pattern[token_start:index])
                    token_start = -1
                if char == "*":
                    regex_pattern += ".*"
                else:
                    regex_pattern += "."
            else:
                if token_start == -1:
                    token_start = index
        if token_start != -1:
            regex_pattern += re.escape(rule_pattern[token_start:])
        return regex_pattern

    @staticmethod
    def wild_card_match(text: Optional[str] = None, pattern: Optional[str] = None) -> bool:
        if pattern is None:
            return False
        return _Matcher.compile(pattern).matches(text)

    @staticmethod
    def compile_attributes(rule_attributes: Optional[Mapping[str, str]]) -> Dict[str, "_Matcher"]:
        if not rule_attributes:
            return {}
        return {key: _Matcher.compile(pattern) for key, pattern in rule_attributes.items()}

    @staticmethod
    def attribute_match(attributes: Attributes, attribute_matchers: Mapping[str, "_Matcher"]) -> bool:
        if not attribute_matchers:
            return True
        if not attributes or len(attribute_matchers) > len(attributes):
            return False

        # Every rule attribute must be present on the span, an absent one is never a wildcard
        for key, matcher in attribute_matchers.items():
            value = attributes.get(key, None)
            if value is None:
                return False
            if not isinstance(value, str):
                value = str(value)
            if not matcher.matches(value):
                return False
        return True


class _TrueMatcher(_Matcher):
    def matches(self, text: Optional[str]) -> bool:
        return True

    def __repr__(self) -> str:
        return "TrueMatcher"


class _StringMatcher(_Matcher):
    def __init__(self, target: str):
        self.__target = target.casefold()

    def matches(self, text: Optional[str]) -> bool:
        if text is None:
            return False
        return self.__target == text.casefold()

    def __repr__(self) -> str:
        return self.__target


class _PatternMatcher(_Matcher):
    def __init__(self, pattern: str):
        self.__pattern = re.compile(_Matcher.to_regex_pattern(pattern), re.DOTALL)

    def matches(self, text: Optional[str]) -> bool:
        if text is None:
            return False
        return self.__pattern.fullmatch(text) is not None

    def __repr__(self) -> str:
        return self.__pattern.pattern


_TRUE_MATCHER = _TrueMatcher()
