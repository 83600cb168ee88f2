"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


# Validation errors: bad parameters, surfaced immediately and never retried


class ValidationError(DomainException):
    """Request parameters are invalid"""

    pass


class BelowMinimumAmountError(ValidationError):
    """Requested amount is below the minimum for the deal kind"""

    pass


class InvalidModeError(ValidationError):
    """Payment mode is not allowed for this deal"""

    pass


class IneligibleError(ValidationError):
    """Asset or account is not eligible for the requested operation"""

    pass


class InvalidTermsError(ValidationError):
    """Rate, principal or term is out of range"""

    pass


class NonAmortizingError(ValidationError):
    """Payment does not cover interest, so the loan never amortizes"""

    pass


# Domain-state errors: valid request, wrong state


class DomainStateError(DomainException):
    """Request is valid but the entity is in the wrong state"""

    pass


class NotFoundError(DomainStateError):
    """Referenced entity does not exist"""

    pass


class DealNotFoundError(NotFoundError):
    """No deal with the given id"""

    pass


class SearchNotFoundError(NotFoundError):
    """No search request with the given id"""

    pass


class ListingNotFoundError(NotFoundError):
    """No sale listing with the given id"""

    pass


class AlreadyPaidOffError(DomainStateError):
    """Deal is already paid off"""

    pass


class DealNotActiveError(DomainStateError):
    """Deal is not in a state that accepts this operation"""

    pass


class AlreadyListedError(DomainStateError):
    """Asset already has an open sale listing"""

    pass


class AssetExistsError(DomainStateError):
    """Asset ref is already in the registry"""

    pass


class NoOfferError(DomainStateError):
    """Listing has no pending offer"""

    pass


class OfferExpiredError(DomainStateError):
    """Pending offer expired before the response arrived"""

    pass


class RequestClosedError(DomainStateError):
    """Search or listing has already resolved or been cancelled"""

    pass


class InsufficientCreditError(DomainStateError):
    """Credit score is below the minimum for the deal kind"""

    pass


class InsufficientFundsError(DomainStateError):
    """Ledger balance cannot cover the debit"""

    pass


# Collaborator errors: transient, scoped to a single deal or request


class CollaboratorError(DomainException):
    """External collaborator failed"""

    pass


class LedgerUnavailableError(CollaboratorError):
    """Ledger service timed out or returned an error"""

    pass


class AssetRegistryError(CollaboratorError):
    """Asset registry lookup or mutation failed"""

    pass


class LedgerRejectedError(CollaboratorError):
    """Ledger refused the call outright (4xx); retrying cannot succeed"""

    pass
