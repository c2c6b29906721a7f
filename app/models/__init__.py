# app/models/__init__.py
from .checkout_session_model import CheckoutSession, CheckoutStatus
from .payment_channel_model import PaymentChannel
from .user_model import AppUser
from .password_reset_token_model import PasswordResetToken

__all__ = ["CheckoutSession", "CheckoutStatus", "PaymentChannel", "AppUser", "PasswordResetToken"]
