"""Error taxonomy for the LuxHub marketplace core.

Every rejected operation raises a subclass of MarketplaceError. Each subclass
belongs to exactly one *kind*, which the HTTP layer maps to a status code:

- NotFound: escrow/offer/asset lookup miss
- InvalidState: operation not permitted from the current status
- Unauthorized: caller wallet lacks the required role or permission
- ValidationError: malformed or out-of-range input
- Conflict: duplicates and concurrent-write version mismatches
- AlreadyProcessed: idempotence guard tripped
- SettlementError: the settlement authority handoff failed

Messages are written for the person making the request, e.g.
"Cannot confirm delivery. Item must be shipped first."
"""


class MarketplaceError(Exception):
    """Base class for all marketplace errors."""

    kind = "error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


# =============================================================================
# Kinds
# =============================================================================


class NotFoundError(MarketplaceError):
    kind = "not_found"


class InvalidStateError(MarketplaceError):
    kind = "invalid_state"


class UnauthorizedError(MarketplaceError):
    kind = "unauthorized"


class ValidationError(MarketplaceError):
    kind = "validation_error"


class ConflictError(MarketplaceError):
    kind = "conflict"


class AlreadyProcessedError(MarketplaceError):
    kind = "already_processed"


class SettlementError(MarketplaceError):
    """Raised when a release instruction could not be handed to the authority."""

    kind = "settlement_error"


# =============================================================================
# Specific errors
# =============================================================================


class EscrowNotFoundError(NotFoundError):
    pass


class OfferNotFoundError(NotFoundError):
    pass


class EscrowNotAcceptingOffers(InvalidStateError):
    pass


class EscrowNotListable(InvalidStateError):
    pass


class PriceLockedAfterBuyerAssigned(InvalidStateError):
    pass


class InvalidTransitionError(InvalidStateError):
    pass


class OfferExpired(InvalidStateError):
    pass


class BelowMinimumOffer(ValidationError):
    pass


class SelfDealing(ValidationError):
    pass


class UnsupportedCarrier(ValidationError):
    pass


class DuplicateEscrow(ConflictError):
    pass


class DuplicateActiveOffer(ConflictError):
    pass


class ConcurrentModification(ConflictError):
    """Raised when a compare-and-swap write finds a newer version in the store."""


class AlreadyConfirmed(AlreadyProcessedError):
    pass


class DuplicateRecordError(Exception):
    """Raised by storage backends when a uniqueness constraint is violated.

    Services translate this into the matching ConflictError subclass.
    """
