"""Errors raised by the mess services.

Every error carries a message that is safe to show to the user; views flash
it and the JSON api returns it with a 400.
"""


class MessError(Exception):
    message = "Request could not be completed"

    def __init__(self, message=None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# accounts
class RegistrationError(MessError):
    message = "Registration failed"


class AuthenticationError(MessError):
    message = "Invalid email, registration number or password"


class AccountBlocked(MessError):
    message = "Your account is blocked until the outstanding bill is paid"


class HallAccessDenied(MessError):
    message = "That record belongs to another hall"


# otp
class OtpInvalid(MessError):
    message = "Invalid or expired OTP"


class OtpExpired(OtpInvalid):
    message = "OTP has expired. Please request a new one"


class OtpLocked(OtpInvalid):
    message = "Too many invalid attempts. Request a new OTP"


# menu
class InvalidMenuItem(MessError):
    message = "Invalid menu item"


# tokens
class EmptySelection(MessError):
    message = "Please select at least one item"


class InvalidQuantity(MessError):
    message = "Quantity must be a whole number of at least 1"


class MenuItemUnavailable(MessError):
    message = "A selected item is not on this menu"


class InvalidDate(MessError):
    message = "Please pick a valid date"


class InvalidTokenDate(InvalidDate):
    message = "Tokens cannot be requested for a past date"


class InvalidMealType(MessError):
    message = "Meal type must be breakfast, lunch or dinner"


class InvalidStatusChange(MessError):
    message = "That status change is not allowed"


class TokenCodeExhausted(MessError):
    message = "No free token code left for this meal, try again"


# billing
class InvalidMonth(MessError):
    message = "Month must look like 2025-01 or january_2025"


class NothingToBill(MessError):
    message = "No approved tokens found for this month"


class BillingLocked(MessError):
    message = "The bill for that month is already paid"


class BillAccessDenied(MessError):
    message = "That bill belongs to another student"


class BillAlreadyPaid(MessError):
    message = "This bill is already paid"


class InvalidPaymentMethod(MessError):
    message = "Please select a payment method"


class PaymentAmountMismatch(MessError):
    message = "Payment amount does not match the bill total"
