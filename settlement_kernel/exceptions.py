"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure the engine can surface belongs to exactly one of four kinds
(plus a timeout and the ORM-level immutability guard).  Callers catch by
type, never by message, and the API boundary maps the kind to a status
code without inspecting strings.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a KIND attribute naming its category
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        builder.create_bundle(...)
    except OrderAlreadySettledError as e:
        api_response(409, code=e.code, orders=e.order_charge_ids)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- ValidationError                       400
    |   +-- EmptyBundleError
    |   +-- InvalidAmountError
    |   +-- InvalidAdjustmentTypeError
    |   +-- DuplicateOrderError
    |   +-- CounterpartyMismatchError
    |   +-- InvalidPeriodError
    |   +-- MissingInvoiceNumberError
    |   +-- MissingDepositDateError
    |   +-- NegativeTotalError
    |   +-- ReadOnlyFieldError
    |
    +-- NotFoundError                         404
    |   +-- BundleNotFoundError
    |   +-- BundleItemNotFoundError
    |   +-- AdjustmentNotFoundError
    |   +-- CompanyNotFoundError
    |   +-- ManagerNotFoundError
    |   +-- OrderNotFoundError
    |
    +-- ConflictError                         409
    |   +-- OrderAlreadySettledError
    |   +-- ConcurrentModificationError
    |
    +-- InvalidStateError                     422
    |   +-- InvalidTransitionError
    |   +-- BundleNotEditableError
    |
    +-- TransactionTimeoutError               503
    |
    +-- ImmutabilityViolationError            422

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Every error raised inside ``session_scope()`` rolls the transaction back
   before it reaches the caller.  No partial writes are ever visible.

2. Validation errors are raised before a transaction takes any lock where
   the check does not need database state.

3. ConflictError is the only kind a caller may retry, and only by
   re-submitting the entire operation.
"""


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses carry a ``code`` (specific) and ``kind`` (category)
    class attribute.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"
    kind: str = "internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Validation
# =============================================================================


class ValidationError(SettlementKernelError):
    """Malformed or missing input."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"


class EmptyBundleError(ValidationError):
    """A bundle must contain at least one order."""

    code: str = "EMPTY_BUNDLE"

    def __init__(self):
        super().__init__("A bundle requires at least one item")


class InvalidAmountError(ValidationError):
    """Amount is zero, negative or not a finite decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: str):
        self.field = field
        self.amount = amount
        super().__init__(f"{field} must be a positive amount, got {amount}")


class InvalidAdjustmentTypeError(ValidationError):
    """Adjustment type is not one of the known variants."""

    code: str = "INVALID_ADJUSTMENT_TYPE"

    def __init__(self, adjustment_type: str):
        self.adjustment_type = adjustment_type
        super().__init__(f"Unknown adjustment type: {adjustment_type}")


class DuplicateOrderError(ValidationError):
    """The same order charge was listed twice in one request."""

    code: str = "DUPLICATE_ORDER"

    def __init__(self, order_charge_ids: list[str]):
        self.order_charge_ids = order_charge_ids
        super().__init__(
            f"Order charges listed more than once: {', '.join(order_charge_ids)}"
        )


class CounterpartyMismatchError(ValidationError):
    """An order charge belongs to another counterparty or side."""

    code: str = "COUNTERPARTY_MISMATCH"

    def __init__(self, order_charge_ids: list[str], company_id: str, side: str):
        self.order_charge_ids = order_charge_ids
        self.company_id = company_id
        self.side = side
        super().__init__(
            f"Order charges {', '.join(order_charge_ids)} are not {side} "
            f"charges of company {company_id}"
        )


class InvalidPeriodError(ValidationError):
    """period_from is after period_to."""

    code: str = "INVALID_PERIOD"

    def __init__(self, period_from: str, period_to: str):
        self.period_from = period_from
        self.period_to = period_to
        super().__init__(
            f"period_from ({period_from}) cannot be after period_to ({period_to})"
        )


class MissingInvoiceNumberError(ValidationError):
    """Issuing requires an invoice number and none could be generated."""

    code: str = "MISSING_INVOICE_NUMBER"

    def __init__(self, bundle_id: str):
        self.bundle_id = bundle_id
        super().__init__(
            f"Bundle {bundle_id} cannot be issued without an invoice number"
        )


class MissingDepositDateError(ValidationError):
    """Marking paid requires the deposit receipt timestamp."""

    code: str = "MISSING_DEPOSIT_DATE"

    def __init__(self, bundle_id: str):
        self.bundle_id = bundle_id
        super().__init__(
            f"Bundle {bundle_id} cannot be marked paid without deposit_received_at"
        )


class NegativeTotalError(ValidationError):
    """Discounts would drive the bundle total or its summed tax below zero."""

    code: str = "NEGATIVE_TOTAL"

    def __init__(
        self, bundle_id: str, total_amount: str, total_tax_amount: str | None = None
    ):
        self.bundle_id = bundle_id
        self.total_amount = total_amount
        self.total_tax_amount = total_tax_amount
        super().__init__(
            f"Bundle {bundle_id} total would become negative "
            f"(amount {total_amount}, tax {total_tax_amount})"
        )


class ReadOnlyFieldError(ValidationError):
    """Attempt to edit a field outside the editable set."""

    code: str = "READ_ONLY_FIELD"

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Fields cannot be edited: {', '.join(fields)}")


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(SettlementKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"


class BundleNotFoundError(NotFoundError):
    code: str = "BUNDLE_NOT_FOUND"

    def __init__(self, bundle_id: str):
        self.bundle_id = bundle_id
        super().__init__(f"Bundle not found: {bundle_id}")


class BundleItemNotFoundError(NotFoundError):
    code: str = "BUNDLE_ITEM_NOT_FOUND"

    def __init__(self, bundle_item_id: str, bundle_id: str | None = None):
        self.bundle_item_id = bundle_item_id
        self.bundle_id = bundle_id
        where = f" in bundle {bundle_id}" if bundle_id else ""
        super().__init__(f"Bundle item not found: {bundle_item_id}{where}")


class AdjustmentNotFoundError(NotFoundError):
    code: str = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: str, scope: str):
        self.adjustment_id = adjustment_id
        self.scope = scope
        super().__init__(f"{scope.capitalize()} adjustment not found: {adjustment_id}")


class CompanyNotFoundError(NotFoundError):
    code: str = "COMPANY_NOT_FOUND"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company not found: {company_id}")


class ManagerNotFoundError(NotFoundError):
    code: str = "MANAGER_NOT_FOUND"

    def __init__(self, manager_id: str):
        self.manager_id = manager_id
        super().__init__(f"Manager not found: {manager_id}")


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_charge_ids: list[str]):
        self.order_charge_ids = order_charge_ids
        super().__init__(f"Order charges not found: {', '.join(order_charge_ids)}")


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(SettlementKernelError):
    """Concurrent claim or lost-update race."""

    code: str = "CONFLICT"
    kind: str = "conflict"


class OrderAlreadySettledError(ConflictError):
    """Order charge is already consumed by another bundle."""

    code: str = "ORDER_ALREADY_SETTLED"

    def __init__(self, order_charge_ids: list[str]):
        self.order_charge_ids = order_charge_ids
        super().__init__(
            f"Order charges already settled: {', '.join(order_charge_ids)}"
        )


class ConcurrentModificationError(ConflictError):
    """Bundle changed between read and write (optimistic lock failure)."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        bundle_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.bundle_id = bundle_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is not None:
            msg = (
                f"Bundle {bundle_id} was modified concurrently: "
                f"expected version {expected_version}, found {actual_version}"
            )
        else:
            msg = f"Bundle {bundle_id} was modified concurrently"
        super().__init__(msg)


# =============================================================================
# Invalid state
# =============================================================================


class InvalidStateError(SettlementKernelError):
    """Operation not permitted in the bundle's current lifecycle state."""

    code: str = "INVALID_STATE"
    kind: str = "invalid_state"


class InvalidTransitionError(InvalidStateError):
    code: str = "INVALID_TRANSITION"

    def __init__(self, bundle_id: str, from_status: str, to_status: str):
        self.bundle_id = bundle_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Bundle {bundle_id} cannot move from {from_status} to {to_status}"
        )


class BundleNotEditableError(InvalidStateError):
    code: str = "BUNDLE_NOT_EDITABLE"

    def __init__(self, bundle_id: str, status: str):
        self.bundle_id = bundle_id
        self.status = status
        super().__init__(f"Bundle {bundle_id} is {status} and can no longer be edited")


# =============================================================================
# Infrastructure
# =============================================================================


class TransactionTimeoutError(SettlementKernelError):
    """The transaction exceeded its configured timeout and was rolled back."""

    code: str = "TRANSACTION_TIMEOUT"
    kind: str = "timeout"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transaction exceeded {timeout_seconds}s and was rolled back"
        )


class ImmutabilityViolationError(SettlementKernelError):
    """ORM guard caught a write to a frozen field."""

    code: str = "IMMUTABILITY_VIOLATION"
    kind: str = "invalid_state"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
