from __future__ import annotations

_RETRYABLE_BAD_REQUEST_PHRASES = (
    "timeout",
    "temporary",
    "try again",
    "busy",
    "overloaded",
    "maintenance",
)

_FATAL_MESSAGES = (
    "insufficient funds",
    "insufficient lamports",
    "invalid signature",
    "invalid account",
    "unauthorized",
    "token account not found",
    "account not found",
    "instruction failed",
    "route unavailable",
)

_FATAL_CODES = ("6000", "4001", "4100", "4200")


class VenueError(RuntimeError):
    pass


class TransientVenueError(VenueError):
    pass


class FatalVenueError(VenueError):
    pass


class QuoteError(TransientVenueError):
    pass


class HttpStatusError(VenueError):
    def __init__(self, code: int, body: str, context: str = ""):
        self.code = int(code)
        self.body = str(body or "")
        prefix = f"{context}: " if context else ""
        super().__init__(f"{prefix}HTTP {self.code}: {self.body[:300]}")


def is_fatal_message(text: str) -> bool:
    lowered = str(text).lower()
    if any(phrase in lowered for phrase in _FATAL_MESSAGES):
        return True
    return any(f"custom program error: {code}" in lowered or f"code {code}" in lowered for code in _FATAL_CODES)


def is_retryable_bad_request(body: str) -> bool:
    lowered = str(body).lower()
    return any(phrase in lowered for phrase in _RETRYABLE_BAD_REQUEST_PHRASES)


def classify_exception(exc: BaseException) -> str:
    """Return "fatal" or "transient" for an exception raised by a venue call."""
    if isinstance(exc, FatalVenueError):
        return "fatal"
    if isinstance(exc, HttpStatusError):
        if exc.code == 429 or exc.code >= 500 or exc.code in {408, 425}:
            return "transient"
        if exc.code == 400:
            if is_fatal_message(exc.body):
                return "fatal"
            return "transient" if is_retryable_bad_request(exc.body) else "fatal"
        return "fatal"
    if is_fatal_message(str(exc)):
        return "fatal"
    return "transient"
