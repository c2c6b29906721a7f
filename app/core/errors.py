from typing import Optional


class PaymentGatewayError(Exception):
    """Base error. ``public_message`` is the only text shown to callers."""

    status_code: int = 500
    public_message: str = "Unable to process request."

    def __init__(self, message: Optional[str] = None, public_message: Optional[str] = None):
        self.message = message or self.public_message
        if public_message:
            self.public_message = public_message
        super().__init__(self.message)


class MalformedPayloadError(PaymentGatewayError):
    status_code = 400
    public_message = "Invalid payload format."


class DecryptionFailedError(PaymentGatewayError):
    status_code = 400
    public_message = "Invalid encrypted payload."


class InvalidSelectionError(PaymentGatewayError):
    status_code = 400
    public_message = "Please select a payment channel."


class NoChannelsAvailableError(PaymentGatewayError):
    status_code = 400
    public_message = "No payment channels are available for this payable amount."


class InvalidAmountError(PaymentGatewayError):
    status_code = 400
    public_message = "This payable amount cannot be processed."


class CheckoutClosedError(PaymentGatewayError):
    status_code = 409
    public_message = "This payment session is no longer open."


class UpstreamRequestFailedError(PaymentGatewayError):
    status_code = 502
    public_message = "Unable to create payment request. Please try again."

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        self.upstream_status = upstream_status
        self.response_text = response_text
        super().__init__(message)


class MissingRedirectUrlError(PaymentGatewayError):
    status_code = 502
    public_message = "Payment provider response was not understood."


class InvalidWebhookPayloadError(PaymentGatewayError):
    status_code = 400
    public_message = "Invalid webhook payload."


class PersistenceFailureError(PaymentGatewayError):
    status_code = 500
    public_message = "Unable to store payment data."


class ProviderConfigurationError(PaymentGatewayError):
    status_code = 500
    public_message = "Payment provider is not configured."
