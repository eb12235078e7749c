import os
from dataclasses import dataclass

# Prices are stored in cents; currencies with another number of minor units
# would be sent to the providers at the wrong magnitude.
ZERO_DECIMAL = {
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
    "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}
THREE_DECIMAL = {"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"}


def checkout_currency(code: str) -> str:
    code = code.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise RuntimeError(f"CHECKOUT_CURRENCY={code!r} is not an ISO 4217 code")
    if code in ZERO_DECIMAL or code in THREE_DECIMAL:
        raise RuntimeError(f"CHECKOUT_CURRENCY={code} is not a two-decimal currency")
    return code


CURRENCY = checkout_currency(os.getenv("CHECKOUT_CURRENCY", "USD"))

# No retries against payment APIs, so keep every call bounded.
PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT", "10"))


@dataclass(frozen=True)
class PaypalConfig:
    client_id: str
    client_secret: str
    api_base: str
    return_url: str
    cancel_url: str

    @classmethod
    def from_env(cls) -> "PaypalConfig":
        return cls(
            client_id=os.getenv("PAYPAL_CLIENT_ID", ""),
            client_secret=os.getenv("PAYPAL_CLIENT_SECRET", ""),
            api_base=os.getenv("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com").rstrip("/"),
            return_url=os.getenv("PAYPAL_RETURN_URL", ""),
            cancel_url=os.getenv("PAYPAL_CANCEL_URL", ""),
        )


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: str
    success_url: str
    cancel_url: str

    @classmethod
    def from_env(cls) -> "StripeConfig":
        return cls(
            secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            success_url=os.getenv("STRIPE_SUCCESS_URL", ""),
            cancel_url=os.getenv("STRIPE_CANCEL_URL", ""),
        )
