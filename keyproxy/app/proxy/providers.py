"""
Upstream provider credentials.

Every provider is described by a fixed header template. A template entry is
``(header name, value format, secret name)``; the secret value is substituted
into ``{secret}``. Entries without a secret name are constant headers such as
API version pins.
"""

import enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

HeaderTemplate = Tuple[str, str, Optional[str]]


class Provider(enum.Enum):
    """Upstream API providers the proxy holds credentials for"""

    RUNWAY = "runway"
    MARBLE = "marble"
    DECART = "decart"
    KIRI = "kiri"


PROVIDER_HEADERS: Mapping[Provider, Tuple[HeaderTemplate, ...]] = MappingProxyType({
    Provider.RUNWAY: (
        ("Authorization", "Bearer {secret}", "RUNWAY_KEY"),
        ("X-Runway-Version", "2024-11-06", None),
    ),
    Provider.MARBLE: (
        ("WLT-Api-Key", "{secret}", "MARBLE_KEY"),
    ),
    Provider.DECART: (
        ("X-API-KEY", "{secret}", "DECART_KEY"),
    ),
    Provider.KIRI: (
        ("Authorization", "Bearer {secret}", "KIRI_API_KEY"),
    ),
})


def required_secrets(provider: Provider) -> Tuple[str, ...]:
    """Secret names the provider's headers are built from."""
    return tuple(
        secret_name
        for _, _, secret_name in PROVIDER_HEADERS[provider]
        if secret_name is not None
    )


def credential_headers(provider: Provider, secrets: Mapping[str, str]) -> Dict[str, str]:
    """
    Build the authentication headers for a provider.

    A secret missing from ``secrets`` is substituted as an empty string;
    the request still goes out and the provider rejects it.

    Args:
        provider: Provider the request is routed to
        secrets: Secret name -> value lookup

    Returns:
        Header name -> value, in template order
    """
    headers: Dict[str, str] = {}
    for name, value_format, secret_name in PROVIDER_HEADERS[provider]:
        secret = ""
        if secret_name is not None:
            secret = secrets.get(secret_name) or ""
        # HTTP/1.1 forbids trailing whitespace in values ("Bearer " with no key)
        headers[name] = value_format.format(secret=secret).strip()
    return headers
