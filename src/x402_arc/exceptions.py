"""
x402 custom exception hierarchy
"""


class X402Error(Exception):
    """x402 base exception"""

    pass


class SignatureError(X402Error):
    """Signature-related error"""

    pass


class SignatureVerificationError(SignatureError):
    """Signature verification failed"""

    pass


class SignatureCreationError(SignatureError):
    """Signature creation failed (key material unavailable or signing error)"""

    pass


class SettlementError(X402Error):
    """Settlement-related error"""

    pass


class TransactionError(X402Error):
    """Transaction-related error"""

    def __init__(self, message: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class LedgerSubmissionError(TransactionError):
    """Transfer was rejected before reaching the ledger; nothing was broadcast"""

    pass


class TransactionTimeoutError(TransactionError):
    """Transaction submitted but not confirmed in time; outcome unknown"""

    pass


class TransactionFailedError(TransactionError):
    """Transaction execution failed (reverted on-ledger)"""

    pass


class ValidationError(X402Error):
    """Validation-related error"""

    pass


class InvalidClaimFormat(ValidationError):
    """Malformed payment claim (address, amount, nonce or network)"""

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"{field}: {reason}" if field else reason)


class PaymentHeaderError(ValidationError, ValueError):
    """Payment header is not base64 JSON, or does not match the expected model"""

    def __init__(self, header: str, reason: str):
        self.header = header
        super().__init__(f"{header}: {reason}")


class ResourceNotFound(X402Error):
    """Gated resource id is not registered"""

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Unknown resource: {resource_id}")


class ConfigurationError(X402Error):
    """Configuration-related error"""

    pass


class UnsupportedNetworkError(ConfigurationError):
    """Unsupported network"""

    pass


class UnknownTokenError(ConfigurationError):
    """Unknown token"""

    pass


class PaymentPolicyError(X402Error):
    """Payment refused by a client-side spending policy"""

    pass
