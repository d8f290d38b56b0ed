"""Ошибки сервиса.

Каждая ошибка знает свой HTTP-код; обработчик в main.py отдает
``{"error": message}`` плюс дополнительные поля из ``extra``.
"""


class ServiceError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, message=None, **extra):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.message, **self.extra}


class ValidationError(ServiceError):
    status_code = 400
    message = "Missing fields"


class AuthError(ServiceError):
    status_code = 401
    message = "Invalid token"


class ForbiddenError(ServiceError):
    status_code = 403
    message = "Admin only"


class NotFoundError(ServiceError):
    status_code = 404
    message = "Not found"


class ConflictError(ServiceError):
    status_code = 400
    message = "Conflict"


class StorageError(ServiceError):
    status_code = 500
    message = "Storage failure"


# Ошибки движков

class UserNotFound(NotFoundError):
    message = "User not found"


class ProductUnavailable(NotFoundError):
    message = "Product not available"


class AssignmentNotFound(NotFoundError):
    message = "Assignment not found"


class AlreadyCompleted(ConflictError):
    message = "Already completed"


class NoPendingTasks(ConflictError):
    message = "No pending tasks for today"


class InsufficientBalance(ConflictError):
    message = (
        "Insufficient balance. Your current balance cannot allow you to cover the cost of this product. "
        "Please contact customer care to deposit funds."
    )


class InvalidPrice(ValidationError):
    message = "Invalid product price for this user level"


class NoValidProducts(ValidationError):
    message = "No valid products selected"


class NoActiveProducts(ValidationError):
    message = "No active products available for assignment"
