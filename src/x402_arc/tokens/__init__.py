"""
Token registry
"""

from x402_arc.tokens.registry import TokenInfo, TokenRegistry

__all__ = ["TokenInfo", "TokenRegistry"]
