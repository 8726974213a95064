"""
FastAPI integration for x402
"""

from x402_arc.fastapi.middleware import X402Middleware, x402_protected

__all__ = ["X402Middleware", "x402_protected"]
