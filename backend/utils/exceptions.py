"""
Custom exceptions for the sale returns engine.

Business-rule violations are never transient, so every error below carries
``retryable = False`` except where a collaborator failure is involved.
"""

from rest_framework.exceptions import APIException
from rest_framework import status


class SaleReturnError(APIException):
    """Base class for errors raised by return and void operations."""
    retryable = False


# ==================== NotFound ====================

class NotFoundError(SaleReturnError):
    """
    Exception raised when a sale, sale item or serial referenced by the
    caller does not exist.
    """
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'The requested resource was not found.'
    default_code = 'not_found'


class SaleNotFoundError(NotFoundError):
    default_detail = 'Sale not found.'
    default_code = 'sale_not_found'


class SaleItemNotFoundError(NotFoundError):
    default_detail = 'Sale item does not belong to this sale.'
    default_code = 'sale_item_not_found'


class SerialNotFoundError(NotFoundError):
    default_detail = 'Not all of the specified serials were found.'
    default_code = 'serial_not_found'


class WarehouseNotFoundError(NotFoundError):
    default_detail = 'The store has no active warehouse.'
    default_code = 'warehouse_not_found'


# ==================== InvalidState ====================

class InvalidStateError(SaleReturnError):
    """
    Exception raised when the current state of a sale does not allow the
    requested operation.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The sale is not in a state that allows this operation.'
    default_code = 'invalid_state'


class SaleVoidedError(InvalidStateError):
    """
    Exception raised when operating on a voided sale.
    Voided sales are terminal and cannot be modified.
    """
    default_detail = 'The sale has been voided and cannot be modified.'
    default_code = 'sale_voided'


class CreditNoteRequiredError(InvalidStateError):
    default_detail = (
        'The sale has an issued fiscal invoice. An issued credit note is '
        'required before it can be reversed.'
    )
    default_code = 'credit_note_required'


class DebtHasPaymentsError(InvalidStateError):
    default_detail = 'The sale has debt payments. Reverse the payments first.'
    default_code = 'debt_has_payments'


class InvalidQuantityError(InvalidStateError):
    default_detail = 'Invalid return quantity.'
    default_code = 'invalid_quantity'


class QuantityExceedsRemainingError(InvalidStateError):
    default_detail = 'Return quantity exceeds the quantity still available to return.'
    default_code = 'quantity_exceeds_remaining'


class SerialsRequiredError(InvalidStateError):
    default_detail = 'You must specify serials for serialized items.'
    default_code = 'serials_required'


class SerialMismatchError(InvalidStateError):
    default_detail = 'Serial does not belong to this sale item or is not sold.'
    default_code = 'serial_mismatch'


class NothingToReturnError(InvalidStateError):
    default_detail = 'There is nothing left to return on this sale.'
    default_code = 'nothing_to_return'


class ImmutableRecordError(InvalidStateError):
    """
    Exception raised when attempting to update or delete an append-only
    record (sale returns and their items).
    """
    default_detail = 'This record is append-only and cannot be modified.'
    default_code = 'immutable_record'


# ==================== ExternalFailure ====================

class ExternalFailureError(SaleReturnError):
    """
    Exception raised when the stock or accounting collaborator fails.
    Aborts the enclosing transaction.
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'An external collaborator failed. The operation was rolled back.'
    default_code = 'external_failure'
