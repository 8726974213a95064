"""
Token registry - Centralized management of token configurations
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from x402_arc.exceptions import UnknownTokenError


@dataclass
class TokenInfo:
    """Token information"""

    address: str
    decimals: int
    name: str
    symbol: str
    version: str = "1"


class TokenRegistry:
    """Token registry"""

    _tokens: dict[str, dict[str, TokenInfo]] = {
        # Arc Testnet (eip155:5042002)
        "eip155:5042002": {
            "USDC": TokenInfo(
                address="0x3600000000000000000000000000000000000000",
                decimals=6,
                name="USD Coin",
                symbol="USDC",
            ),
        },
    }

    @classmethod
    def register_token(cls, network: str, token: TokenInfo) -> None:
        """Register a custom token for specified network

        Args:
            network: Network identifier (e.g. "eip155:5042002")
            token: TokenInfo to register
        """
        if network not in cls._tokens:
            cls._tokens[network] = {}
        cls._tokens[network][token.symbol.upper()] = token

    @classmethod
    def get_token(cls, network: str, symbol: str) -> TokenInfo | None:
        return cls._tokens.get(network, {}).get(symbol.upper())

    @classmethod
    def find_by_address(cls, network: str, address: str) -> TokenInfo | None:
        """Find token info by contract address (case-insensitive)"""
        for token in cls._tokens.get(network, {}).values():
            if token.address.lower() == address.lower():
                return token
        return None

    @classmethod
    def require_by_address(cls, network: str, address: str) -> TokenInfo:
        token = cls.find_by_address(network, address)
        if token is None:
            raise UnknownTokenError(f"Unknown token {address} on {network}")
        return token

    @staticmethod
    def to_units(amount: str | Decimal, decimals: int) -> int:
        """Convert a decimal amount ("1.00", "$0.50") to smallest units.

        Raises:
            ValueError: if the amount is not a number, is negative, or has
                more fractional digits than the token supports
        """
        text = str(amount).replace("$", "").replace(",", "").strip()
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {amount!r}")
        if not value.is_finite() or value < 0:
            raise ValueError(f"Invalid amount: {amount!r}")
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {amount!r} exceeds {decimals} decimal places")
        return int(scaled)

    @staticmethod
    def from_units(units: int | str, decimals: int, places: int = 2) -> str:
        """Format smallest units as a decimal string with at least *places* digits"""
        value = Decimal(int(units)).scaleb(-decimals)
        quantum = Decimal(1).scaleb(-max(places, 0))
        if value == value.quantize(quantum, rounding=ROUND_DOWN):
            return str(value.quantize(quantum))
        return str(value.normalize())

    @classmethod
    def parse_price(cls, price: str, network: str, asset: str) -> int:
        """Parse a decimal price for *asset* into smallest units"""
        token = cls.require_by_address(network, asset)
        return cls.to_units(price, token.decimals)

    @classmethod
    def format_amount(cls, units: int | str, network: str, asset: str) -> str:
        token = cls.require_by_address(network, asset)
        return cls.from_units(units, token.decimals)
