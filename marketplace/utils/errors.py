"""
Error taxonomy for the order lifecycle.

Every error carries a machine code, a kind (used by the API layer to pick a
status code) and a plain-language next action for the buyer or seller.
"""


class MarketplaceError(Exception):
    code = "error"
    kind = "internal"
    next_action = "retry"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


# validation - rejected synchronously, no side effects
class ValidationError(MarketplaceError):
    code = "validation_error"
    kind = "validation"
    next_action = "fix_input"


class EmptyCartError(ValidationError):
    code = "empty_cart"
    default_message = "Your cart is empty."


class AddressNotFoundError(ValidationError):
    code = "address_not_found"
    default_message = "We could not find that delivery address."


class MissingPersonalizationError(ValidationError):
    code = "missing_personalization"
    default_message = "Some personalization details are missing."


class InvalidCouponError(ValidationError):
    code = "invalid_coupon"
    default_message = "This coupon cannot be applied."


class ItemUnavailableError(ValidationError):
    code = "item_unavailable"
    default_message = "One or more items are no longer available."


class SellerMismatchError(ValidationError):
    code = "seller_mismatch"
    next_action = "clear_cart"
    default_message = "Your cart already has items from another store."


# contention - caller may retry with a fresh draft
class ContentionError(MarketplaceError):
    code = "contention"
    kind = "contention"
    next_action = "retry"


class InsufficientStockError(ContentionError):
    code = "insufficient_stock"

    def __init__(self, item_id: int, variant_id: int | None, requested: int, available: int):
        short = requested - max(available, 0)
        super().__init__(
            f"Insufficient stock: {short} short (requested {requested}, available {max(available, 0)}).",
            item_id=item_id,
            variant_id=variant_id,
            requested=requested,
            available=max(available, 0),
        )
        self.item_id = item_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = max(available, 0)


class DraftConsumedError(ContentionError):
    code = "draft_consumed"
    next_action = "refresh_cart"
    default_message = "This checkout session has expired. Please try again."


class ConcurrencyConflictError(ContentionError):
    code = "concurrency_conflict"
    default_message = "This was changed by another action. Please retry."


class InsufficientWalletBalanceError(ContentionError):
    code = "insufficient_wallet_balance"
    default_message = "Your wallet balance changed. Please retry checkout."


# external dependencies
class ExternalServiceError(MarketplaceError):
    code = "external_error"
    kind = "external"
    next_action = "retry"


class GatewayUnavailableError(ExternalServiceError):
    code = "gateway_unavailable"
    default_message = "The payment service is unreachable. Please retry shortly."


class InvalidSignatureError(ExternalServiceError):
    code = "invalid_signature"
    next_action = "contact_support"
    default_message = "We could not verify this payment. Please contact support."


# integrity
class PriceMismatchError(MarketplaceError):
    code = "price_mismatch"
    kind = "integrity"
    next_action = "refresh_cart"
    default_message = "Prices in your cart have changed. Please refresh your cart."


# state machine
class InvalidTransitionError(MarketplaceError):
    code = "invalid_transition"
    kind = "state"
    next_action = "refresh"
    default_message = "This action is not allowed for the order right now."


class RevisionLimitReachedError(InvalidTransitionError):
    code = "revision_limit_reached"
    next_action = "approve_or_contact_support"


class PreviewNotFoundError(InvalidTransitionError):
    code = "preview_not_found"
    default_message = "There is no pending preview to act on."


class NotFoundError(MarketplaceError):
    code = "not_found"
    kind = "not_found"
    next_action = "refresh"
    default_message = "Not found."


class NotOrderOwnerError(MarketplaceError):
    code = "forbidden"
    kind = "forbidden"
    next_action = "contact_support"
    default_message = "You do not have access to this order."
