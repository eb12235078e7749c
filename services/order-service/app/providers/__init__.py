"""Payment provider registry.

build_providers() wires the real adapters from the environment; the API
resolves the provider named in the URL through get_provider().
"""

from typing import Dict, Mapping

import httpx

from ..config import PaypalConfig, StripeConfig
from ..errors import NotFound
from .paypal_adapter import PaypalProvider
from .port import PaymentProvider
from .stripe_adapter import StripeProvider, configure_sdk


def build_providers(http_client: httpx.Client) -> Dict[str, PaymentProvider]:
    configure_sdk()
    providers: list[PaymentProvider] = [
        PaypalProvider(http_client, PaypalConfig.from_env()),
        StripeProvider(StripeConfig.from_env()),
    ]
    return {p.kind: p for p in providers}


def get_provider(providers: Mapping[str, PaymentProvider], kind: str) -> PaymentProvider:
    try:
        return providers[kind]
    except KeyError:
        raise NotFound("unknown payment provider", context={"provider": kind}) from None
