"""
Gateway errors - one typed exception for every failure that leaves a
gateway method.

Each error carries:
- code: stable identifier from ErrorCode (what callers branch on)
- message: user-presentable text from ERROR_MESSAGES
- cause: the original low-level exception, kept for diagnostics
- severity: how a UI should present it (notice / warning / error)
"""

from typing import Optional


class ErrorCode:
    """Stable error codes."""
    # Identity / vault
    IDENTITY_NOT_FOUND = "IDENTITY_NOT_FOUND"
    DID_CREATION_FAILED = "DID_CREATION_FAILED"
    NOT_CONNECTED = "NOT_CONNECTED"
    DWN_WRITE_FAILED = "DWN_WRITE_FAILED"
    DWN_READ_FAILED = "DWN_READ_FAILED"
    DWN_QUERY_FAILED = "DWN_QUERY_FAILED"
    DWN_DELETE_FAILED = "DWN_DELETE_FAILED"
    PERMISSION_GRANT_FAILED = "PERMISSION_GRANT_FAILED"
    PERMISSION_REVOKE_FAILED = "PERMISSION_REVOKE_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"

    # Wallet / chain
    NO_WALLET_DETECTED = "NO_WALLET_DETECTED"
    WALLET_CONNECTION_FAILED = "WALLET_CONNECTION_FAILED"
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    WRONG_NETWORK = "WRONG_NETWORK"
    NETWORK_SWITCH_FAILED = "NETWORK_SWITCH_FAILED"
    USER_REJECTED = "USER_REJECTED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    CONTRACT_ERROR = "CONTRACT_ERROR"
    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"

    # Generic
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


ERROR_MESSAGES = {
    ErrorCode.IDENTITY_NOT_FOUND: "No existing identity found. Please create one first.",
    ErrorCode.DID_CREATION_FAILED: "Failed to create your digital identity. Please try again.",
    ErrorCode.NOT_CONNECTED: "Please connect your identity first",
    ErrorCode.DWN_WRITE_FAILED: "Failed to save data to your personal storage",
    ErrorCode.DWN_READ_FAILED: "Failed to read data from storage",
    ErrorCode.DWN_QUERY_FAILED: "Failed to query data from storage",
    ErrorCode.DWN_DELETE_FAILED: "Failed to delete data from storage",
    ErrorCode.PERMISSION_GRANT_FAILED: "Failed to grant access permission",
    ErrorCode.PERMISSION_REVOKE_FAILED: "Failed to revoke access permission",
    ErrorCode.STORAGE_ERROR: "Local storage is unavailable",

    ErrorCode.NO_WALLET_DETECTED: "No wallet found. Please install or configure a wallet provider.",
    ErrorCode.WALLET_CONNECTION_FAILED: "Failed to connect wallet. Please try again.",
    ErrorCode.WALLET_NOT_CONNECTED: "Wallet not connected",
    ErrorCode.WRONG_NETWORK: "Please switch to the Creditcoin network",
    ErrorCode.NETWORK_SWITCH_FAILED: "Failed to switch network. Please switch manually in your wallet.",
    ErrorCode.USER_REJECTED: "Transaction was cancelled",
    ErrorCode.INSUFFICIENT_FUNDS: "Insufficient funds to complete this transaction",
    ErrorCode.TRANSACTION_FAILED: "Transaction failed. Please try again.",
    ErrorCode.CONTRACT_ERROR: "Smart contract operation failed",
    ErrorCode.CONTRACT_NOT_FOUND: "Smart contract not found on this network",

    ErrorCode.NETWORK_ERROR: "Network connection error. Please check your internet connection.",
    ErrorCode.TIMEOUT_ERROR: "Request timed out. Please try again.",
    ErrorCode.VALIDATION_ERROR: "Invalid input. Please check your data and try again.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


# Presentation severities
SEVERITY_NOTICE = "notice"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"

_NOTICE_CODES = {ErrorCode.USER_REJECTED}
_WARNING_CODES = {ErrorCode.NETWORK_ERROR, ErrorCode.TIMEOUT_ERROR}

# Failures that send identity setup down the local fallback path
NETWORK_CLASS_CODES = frozenset({ErrorCode.NETWORK_ERROR, ErrorCode.TIMEOUT_ERROR})


class GatewayError(Exception):
    """A classified gateway failure."""

    def __init__(self, code: str, message: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN_ERROR])
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def severity(self) -> str:
        if self.code in _NOTICE_CODES:
            return SEVERITY_NOTICE
        if self.code in _WARNING_CODES:
            return SEVERITY_WARNING
        return SEVERITY_ERROR

    @property
    def is_network_class(self) -> bool:
        return self.code in NETWORK_CLASS_CODES

    def to_dict(self) -> dict:
        """Serializable view for logs and CLI output."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __repr__(self) -> str:
        return f"GatewayError({self.code!r}, {self.message!r})"
