"""Typed failures raised by the donation and signup services.

Views translate these into JSON responses; ``status_code`` and ``message``
carry the user-facing part.
"""


class CoreError(Exception):
    status_code = 400
    message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        self.message = message or self.message
        super().__init__(self.message)


class NotFound(CoreError):
    status_code = 404
    message = "The requested record does not exist."


class ValidationError(CoreError):
    """Carries every violated rule, not just the first one."""

    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class DuplicateEmail(CoreError):
    status_code = 409
    message = "This Email is already registered. Please try another email."


class InvalidOtp(CoreError):
    message = "Invalid or expired OTP. Please try again."


class SessionExpired(CoreError):
    message = "Session expired. Please sign up again."


class MissingEmail(CoreError):
    message = "Email missing. Please sign up again."


class OtpThrottled(CoreError):
    status_code = 429
    message = "Too many OTP requests. Please try again later."


class StorageError(CoreError):
    status_code = 503
    message = "Server error while talking to the database."


class NotificationError(CoreError):
    status_code = 502
    message = "Could not send the email."


class InvalidTransition(CoreError):
    status_code = 409
    message = "This action is not allowed in the donation's current status."
