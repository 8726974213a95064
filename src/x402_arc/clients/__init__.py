"""
x402 Client SDK
"""

from x402_arc.clients.policies import AllowedRecipientsPolicy, MaxAmountPolicy
from x402_arc.clients.x402_client import PaymentPolicy, X402Client
from x402_arc.clients.x402_http_client import X402HttpClient

__all__ = [
    "X402Client",
    "X402HttpClient",
    "PaymentPolicy",
    "MaxAmountPolicy",
    "AllowedRecipientsPolicy",
]
