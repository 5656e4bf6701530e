# storefront/utils/messages.py
from decimal import Decimal
from ..models.order import PaymentMode
from ..utils.formatters import format_money

PAYMENT_LABELS = {
    PaymentMode.CASH: "Order confirmed",
    PaymentMode.CARD: "Card payment successful",
    PaymentMode.QR: "QR payment successful",
    PaymentMode.WALLET: "E-Wallet payment successful",
}

class Messages:
    # Voucher
    VOUCHER_REQUIRED = "Voucher code is required."
    VOUCHER_INVALID = "Invalid voucher code."
    VOUCHER_USED = "This voucher has already been used."
    VOUCHER_EXPIRED = "This voucher has expired."
    VOUCHER_MISCONFIGURED = "This voucher has no discount configured."

    # Cart / checkout
    INVALID_PRODUCT = "Invalid product."
    INVALID_QUANTITY = "Invalid quantity."
    PRODUCT_NOT_FOUND = "Product not found."
    SELECT_ITEMS = "Please select at least one item to checkout."
    SELECTION_NOT_IN_CART = "Selected items were not found in cart."
    CART_EMPTY = "Your cart is empty."
    ORDER_CREATE_FAILED = "Order created but failed to save items."

    # Orders
    INVALID_ORDER = "Invalid order ID."
    ORDER_NOT_FOUND = "Order not found."
    ORDER_FORBIDDEN = "You are not allowed to view this order."
    INVALID_TOTAL = "Invalid order total."
    ORDER_ALREADY_PAID = "Order is already paid."
    ORDER_PAY_FORBIDDEN = "You are not allowed to pay for this order."

    # Payments
    PAYMENT_FAILED = "Payment failed or timed out. Please try again."
    PROVIDER_UNAVAILABLE = "Payment service error. Please try again."
    PAYMENT_NOT_COMPLETED = "Payment not completed."
    INSUFFICIENT_BALANCE = "Insufficient balance. Please top up your wallet before paying."
    INVALID_SESSION = "Invalid or expired payment session."
    MISSING_REFERENCE = "Missing payment reference."
    PROVIDER_ORDER_MISMATCH = "This payment does not belong to the order being paid."

    # Wallet
    INVALID_TOPUP = "Please select a valid top up amount."
    TOPUP_SUCCESS = "Top up successful!"
    TOPUP_FAILED = "Top up failed or timed out. Please try again."
    TRANSACTION_NOT_FOUND = "Transaction not found."
    TRANSACTION_FORBIDDEN = "Not allowed."
    TRANSACTION_COMPLETED = "Transaction already completed."

    @staticmethod
    def insufficient_stock(name: str, available: int, requested: int) -> str:
        return f"Not enough stock for {name}. Available: {available}, in cart: {requested}."

    @staticmethod
    def minimum_spend(min_spend: Decimal) -> str:
        return f"Minimum spend of ${format_money(min_spend)} is required to use this voucher."

    @staticmethod
    def topup_range(minimum: Decimal, maximum: Decimal) -> str:
        return f"Top up amount must be between ${format_money(minimum)} and ${format_money(maximum)}."

    @staticmethod
    def settled(mode: PaymentMode, warnings: list) -> str:
        """Success text; softened when a follow-up step did not complete"""
        label = PAYMENT_LABELS.get(mode, "Payment successful")
        if not warnings:
            return f"{label}! Your cart has been updated."
        return f"{label}, but some cart items may still remain."
