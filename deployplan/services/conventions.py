"""
Naming conventions shared by the name resolver and the naming validator.

Everything here is immutable and built once per process via get_conventions().
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Pattern


class ComponentKind(str, Enum):
    FRONTEND = "frontend"
    BACKEND = "backend"
    PLATFORM = "platform"
    LOGGING = "logging"


class ResourceType(str, Enum):
    RESOURCE_GROUP = "resource_group"
    STORAGE_ACCOUNT = "storage_account"
    FUNCTION_APP = "function_app"
    APP_SERVICE_PLAN = "app_service_plan"
    APP_INSIGHTS = "app_insights"
    LOG_ANALYTICS = "log_analytics"
    AI_SERVICES = "ai_services"
    AI_PROJECT = "ai_project"


# Azure region -> short code used in resource names
REGION_CODES: Mapping[str, str] = MappingProxyType({
    "eastus": "eus",
    "eastus2": "eus2",
    "westus": "wus",
    "westus2": "wus2",
    "westus3": "wus3",
    "centralus": "cus",
    "northcentralus": "ncus",
    "southcentralus": "scus",
    "westcentralus": "wcus",
    "canadacentral": "cac",
    "canadaeast": "cae",
    "brazilsouth": "brs",
    "northeurope": "neu",
    "westeurope": "weu",
    "uksouth": "uks",
    "ukwest": "ukw",
    "francecentral": "frc",
    "germanywestcentral": "gwc",
    "switzerlandnorth": "szn",
    "swedencentral": "sdc",
    "norwayeast": "nwe",
    "eastasia": "ea",
    "southeastasia": "sea",
    "japaneast": "jpe",
    "japanwest": "jpw",
    "koreacentral": "krc",
    "australiaeast": "aue",
    "australiasoutheast": "ause",
    "centralindia": "inc",
    "southindia": "ins",
    "uaenorth": "uan",
    "southafricanorth": "san",
})

# (role token, short token used in storage names)
ROLE_TOKENS: Mapping[ComponentKind, tuple] = MappingProxyType({
    ComponentKind.FRONTEND: ("frontend", "web"),
    ComponentKind.BACKEND: ("backend", "back"),
    ComponentKind.PLATFORM: ("aifoundry", "aif"),
    ComponentKind.LOGGING: ("logging", "log"),
})

HYPHENATED_NAME = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
ALPHANUMERIC_NAME = re.compile(r"^[a-z0-9]+$")


@dataclass(frozen=True)
class NamingRule:
    """Prefix, separator policy and charset/length limits for one resource type."""

    prefix: str
    max_length: int
    min_length: int = 1
    hyphenated: bool = True
    charset: Pattern = HYPHENATED_NAME
    charset_hint: str = "lowercase letters, digits and single hyphens"


NAMING_RULES: Mapping[ResourceType, NamingRule] = MappingProxyType({
    ResourceType.RESOURCE_GROUP: NamingRule(prefix="rg", max_length=90),
    ResourceType.FUNCTION_APP: NamingRule(prefix="func", min_length=2, max_length=60),
    ResourceType.APP_SERVICE_PLAN: NamingRule(prefix="asp", max_length=60),
    ResourceType.APP_INSIGHTS: NamingRule(prefix="appi", max_length=260),
    ResourceType.LOG_ANALYTICS: NamingRule(prefix="log", min_length=4, max_length=63),
    ResourceType.AI_SERVICES: NamingRule(prefix="aif", min_length=2, max_length=64),
    ResourceType.AI_PROJECT: NamingRule(prefix="proj", min_length=2, max_length=64),
    ResourceType.STORAGE_ACCOUNT: NamingRule(
        prefix="st",
        min_length=3,
        max_length=24,
        hyphenated=False,
        charset=ALPHANUMERIC_NAME,
        charset_hint="lowercase letters and digits only",
    ),
})

# Tokens an existing resource group is expected to contain
EXPECTED_TOKENS: Mapping[ComponentKind, FrozenSet[str]] = MappingProxyType({
    ComponentKind.PLATFORM: frozenset({"ai", "aif", "foundry"}),
    ComponentKind.LOGGING: frozenset({"log", "logs", "logging", "monitor"}),
})


@dataclass(frozen=True)
class NamingConventions:
    region_codes: Mapping[str, str]
    role_tokens: Mapping[ComponentKind, tuple]
    rules: Mapping[ResourceType, NamingRule]
    expected_tokens: Mapping[ComponentKind, FrozenSet[str]]
    resource_group_prefix: str = "rg-"

    def region_code(self, region: str) -> Optional[str]:
        return self.region_codes.get(normalize_region(region))

    def rule(self, resource_type: ResourceType) -> NamingRule:
        return self.rules[resource_type]

    def role_token(self, kind: ComponentKind, short: bool = False) -> str:
        token, short_token = self.role_tokens[kind]
        return short_token if short else token

    def expected(self, kind: ComponentKind) -> FrozenSet[str]:
        return self.expected_tokens.get(kind, frozenset())

    def regions(self) -> Dict[str, str]:
        return dict(self.region_codes)


def normalize_region(region: str) -> str:
    """'East US 2' -> 'eastus2'"""
    return "".join(str(region or "").split()).lower()


@lru_cache(maxsize=1)
def get_conventions() -> NamingConventions:
    return NamingConventions(
        region_codes=REGION_CODES,
        role_tokens=ROLE_TOKENS,
        rules=NAMING_RULES,
        expected_tokens=EXPECTED_TOKENS,
    )
