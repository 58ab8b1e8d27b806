"""
Domain error taxonomy.

Services raise these; ``loyalty.main`` renders them as
``{"error": {"code": ..., "message": ...}}`` with the kind's HTTP status.
Messages are safe to show to clients.
"""

from __future__ import annotations


class DomainError(Exception):
    status_code: int = 400
    code: str = "DOMAIN_ERROR"
    message: str = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


# -------------------------
# Kinds
# -------------------------
class AuthenticationError(DomainError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"
    message = "Authentication failed"


class AuthorizationError(DomainError):
    status_code = 403
    code = "ACCESS_DENIED"
    message = "Access denied"


class ValidationError(DomainError):
    status_code = 422
    code = "VALIDATION_FAILED"
    message = "Invalid input"


class ConflictError(DomainError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflicting state"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


# -------------------------
# Authentication
# -------------------------
class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class AccountLocked(AuthenticationError):
    status_code = 423
    code = "ACCOUNT_LOCKED"
    message = "Account temporarily locked after too many failed attempts"


class Blacklisted(AuthenticationError):
    status_code = 403
    code = "ACCOUNT_BLACKLISTED"

    def __init__(self, reason: str | None = None):
        self.reason = reason
        text = "Your account has been blocked"
        if reason:
            text = f"{text}. Reason: {reason}"
        super().__init__(text)


class AccountInactive(AuthenticationError):
    status_code = 403
    code = "ACCOUNT_INACTIVE"
    message = "Account is deactivated"


class InvalidToken(AuthenticationError):
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class InvalidRefreshToken(AuthenticationError):
    code = "INVALID_REFRESH_TOKEN"
    message = "Invalid or expired refresh token"


# -------------------------
# Authorization
# -------------------------
class AccessDenied(AuthorizationError):
    pass


class CustomerBlacklisted(AuthorizationError):
    code = "CUSTOMER_BLACKLISTED"
    message = "This customer is blocked"


class MerchantUnavailable(AuthorizationError):
    code = "MERCHANT_UNAVAILABLE"
    message = "This merchant is no longer available"


# -------------------------
# Validation
# -------------------------
class InvalidScore(ValidationError):
    code = "INVALID_SCORE"
    message = "Score must be an integer between 1 and 5"


class PromotionNotValid(ValidationError):
    status_code = 400
    code = "PROMOTION_NOT_VALID"
    message = "Promotion is expired or inactive"


class InvalidPromotionWindow(ValidationError):
    code = "INVALID_PROMOTION_WINDOW"
    message = "Promotion end must be after its start"


class ImageLimitReached(ValidationError):
    code = "IMAGE_LIMIT_REACHED"

    def __init__(self, limit: int):
        super().__init__(f"Maximum {limit} images allowed")


class ImageIndexOutOfRange(ValidationError):
    code = "IMAGE_INDEX_OUT_OF_RANGE"
    message = "Image index out of range"


class CategoryCycle(ValidationError):
    code = "CATEGORY_CYCLE"
    message = "A category cannot be its own ancestor"


class InvalidResetToken(ValidationError):
    status_code = 400
    code = "INVALID_RESET_TOKEN"
    message = "Reset token is invalid or expired"


class PasswordMismatch(ValidationError):
    status_code = 400
    code = "PASSWORD_MISMATCH"
    message = "Current password is incorrect"


class OAuthPasswordChange(ValidationError):
    status_code = 400
    code = "OAUTH_ACCOUNT"
    message = "Password cannot be changed for an OAuth login"


# -------------------------
# Conflicts
# -------------------------
class AlreadyRedeemed(ConflictError):
    code = "ALREADY_REDEEMED"
    message = "This promotion has already been used by this customer"


class AlreadyRated(ConflictError):
    code = "ALREADY_RATED"
    message = "This redemption has already been rated"


class DuplicateRatingForMerchant(ConflictError):
    code = "DUPLICATE_RATING_FOR_MERCHANT"
    message = "You have already rated this merchant"


class EmailAlreadyUsed(ConflictError):
    code = "EMAIL_ALREADY_USED"
    message = "This email is already in use"


class MerchantProfileExists(ConflictError):
    code = "MERCHANT_PROFILE_EXISTS"
    message = "You already have a merchant profile"


class SlugAlreadyUsed(ConflictError):
    code = "CATEGORY_ALREADY_EXISTS"
    message = "A category with this name or slug already exists"


class CategoryInUse(ConflictError):
    code = "CATEGORY_IN_USE"
    message = "Cannot delete a category that still has merchants"


# -------------------------
# Not found
# -------------------------
class UnknownQrCode(NotFoundError):
    code = "UNKNOWN_QR_CODE"
    message = "Invalid QR code"


class MerchantProfileMissing(NotFoundError):
    code = "MERCHANT_PROFILE_MISSING"
    message = "Merchant profile not found"


class MerchantNotFound(NotFoundError):
    code = "MERCHANT_NOT_FOUND"
    message = "Merchant not found"


class PromotionNotFound(NotFoundError):
    code = "PROMOTION_NOT_FOUND"
    message = "Promotion not found"


class RedemptionNotFound(NotFoundError):
    code = "REDEMPTION_NOT_FOUND"
    message = "Redemption not found"


class RatingNotFound(NotFoundError):
    code = "RATING_NOT_FOUND"
    message = "Rating not found"


class AccountNotFound(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"
    message = "Account not found"


class CustomerProfileMissing(NotFoundError):
    code = "CUSTOMER_PROFILE_MISSING"
    message = "Customer profile not found"


class CategoryNotFound(NotFoundError):
    code = "CATEGORY_NOT_FOUND"
    message = "Category not found"
