from servicehub.models.booking import Booking, BookingPaymentStatus, BookingStatus
from servicehub.models.notification import Notification
from servicehub.models.payment import Payment, PaymentRail, PaymentStatus, PaymentType
from servicehub.models.transaction import TransactionStatus, TransactionType, WalletTransaction, WithdrawalMethod
from servicehub.models.user import User, UserRole
from servicehub.models.wallet import Wallet

__all__ = [
    "User",
    "UserRole",
    "Booking",
    "BookingStatus",
    "BookingPaymentStatus",
    "Notification",
    "Payment",
    "PaymentRail",
    "PaymentStatus",
    "PaymentType",
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "TransactionStatus",
    "WithdrawalMethod",
]
