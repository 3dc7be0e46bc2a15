"""
gumdrop/errors.py

Exception taxonomy for the claim distribution pipeline.
"""

from typing import Optional


class GumdropError(Exception):
    """Base class for all gumdrop errors."""
    pass


class ConfigurationError(GumdropError):
    """Invalid option combination or configuration value."""
    pass


class ValidationError(GumdropError):
    """Malformed claimant data or an unmet integration precondition."""
    pass


class EmptyClaimantList(ValidationError):
    """The claimant list contained no records."""

    def __init__(self, message: str = "No claimants provided"):
        super().__init__(message)


class MissingDeliveryLocator(ValidationError):
    """Resend requested but some claimants have no claim URL."""

    def __init__(self, indices):
        self.indices = sorted(indices)
        super().__init__(
            f"Resend requested but {len(self.indices)} claimant(s) have no "
            f"delivery locator: {self.indices}"
        )


class ChainQueryError(GumdropError):
    """Reading remote ledger state failed."""
    pass


class TransactionError(GumdropError):
    """Submitting or confirming a transaction failed."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class CheckpointExpired(TransactionError):
    """The recent blockhash a transaction was signed against is no longer valid."""

    def __init__(self, message: str = "Blockhash expired"):
        super().__init__(message, transient=True)


class DeliveryError(GumdropError):
    """Sending a claim to one claimant failed."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index
