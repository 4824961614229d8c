"""Exception hierarchy for the shuffler.

Recoverable conditions (RPC hiccups, insufficient balance, rejected
submissions) return a session to a retryable state. Input and signing
errors propagate to whoever invoked the operation.
"""


class ShufflerError(Exception):
    """Base class for all shuffler errors."""

    pass


class InputError(ShufflerError, ValueError):
    """Raised for invalid user input (empty nonce, malformed address or hex)."""

    pass


InvalidInput = InputError


class RecoveryNotFound(InputError):
    """Raised when no stored entropy exists for a recovery nonce."""

    def __init__(self, nonce: str):
        self.nonce = nonce
        super().__init__(
            "Recovery information not found. "
            "This must be exported from the original device."
        )


class DerivationError(ShufflerError):
    """Raised when a derived scalar is not a valid secp256k1 private key."""

    pass


class SigningRejected(ShufflerError):
    """Raised when the wallet declines to sign or is unavailable."""

    pass


class RpcTransientError(ShufflerError):
    """Raised when a single RPC query fails (network, timeout, bad response)."""

    def __init__(self, network: str, method: str, reason: str):
        self.network = network
        self.method = method
        self.reason = reason
        super().__init__(f"{method} failed on {network}: {reason}")


class JsonRpcError(RpcTransientError):
    """Raised when the node answers with a JSON-RPC error object."""

    def __init__(self, network: str, method: str, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(network, method, f"[{code}] {message}")


class InsufficientBalance(ShufflerError):
    """Raised when the balance does not cover the gas reserve."""

    def __init__(self, message: str, balance: int = 0, reserve: int = 0):
        self.balance = balance
        self.reserve = reserve
        super().__init__(message)


class BalanceUnavailable(InsufficientBalance):
    """Raised when the funds are gone, e.g. spent by a concurrent forward."""

    pass


class TransactionTimeout(ShufflerError):
    """Raised when a receipt is not observed within the confirmation window."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Transaction {tx_hash} not confirmed after {timeout}s")


class SubmissionError(ShufflerError):
    """Raised when the provider rejects a transaction or it reverts."""

    pass


class InvalidTransition(ShufflerError):
    """Raised when an action is not allowed in the current session state."""

    def __init__(self, state: str, action: str):
        self.state = state
        self.action = action
        super().__init__(f"Cannot apply {action} in state {state}")
