from genbook.integrations.razorpay.client import (
    RazorpayClient,
    RazorpayError,
    RazorpaySubscription,
    from_epoch,
    verify_checkout_signature,
    verify_webhook_signature,
)

__all__ = [
    "RazorpayClient",
    "RazorpayError",
    "RazorpaySubscription",
    "from_epoch",
    "verify_checkout_signature",
    "verify_webhook_signature",
]
