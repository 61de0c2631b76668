"""
Key server exceptions.

Every authorization failure is a KeyServerError carrying an ErrorCode.
All of them are terminal for the request; the transport converts them to
a rejection response and nothing is retried here.

Messages must never embed key or signature material.
"""

from app.keyserver.api_models import ErrorCode


class KeyServerError(Exception):
    """Base exception for the authorization pipeline.

    Carries an error code that maps to ErrorCode constants.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class RequestFormatError(KeyServerError):
    """Request envelope or one of its encodings is malformed."""

    def __init__(self, message: str = "Invalid request format"):
        super().__init__(ErrorCode.INVALID_REQUEST_FORMAT, message)


class SignatureInvalidError(KeyServerError):
    """Certificate or request signature failed cryptographic verification."""

    def __init__(self, message: str = "Signature verification failed"):
        super().__init__(ErrorCode.INVALID_SIGNATURE, message)


class CertificateExpiredError(KeyServerError):
    def __init__(self, message: str = "Session certificate has expired"):
        super().__init__(ErrorCode.CERTIFICATE_EXPIRED, message)


class BundleFormatError(KeyServerError):
    """Transaction bundle could not be decoded into transactions.

    Used for:
    - Invalid base64 or UTF-8
    - JSON that is not an array of objects
    - Missing or non-hex `to` / `data` fields
    - Bundles that target more than one contract (unless allowed)
    """

    def __init__(self, message: str = "Invalid transaction bundle"):
        super().__init__(ErrorCode.INVALID_BUNDLE_FORMAT, message)


class MissingRecipientError(KeyServerError):
    """Bundle is empty or its first transaction has no recipient."""

    def __init__(self, message: str = "Transaction has no recipient"):
        super().__init__(ErrorCode.MISSING_RECIPIENT, message)


class SimulationUnavailableError(KeyServerError):
    """Simulation service could not be reached or refused the call.

    Covers missing credentials, timeouts, transport errors and non-2xx
    responses (including auth rejections).
    """

    def __init__(self, message: str = "Simulation service unavailable"):
        super().__init__(ErrorCode.SIMULATION_UNAVAILABLE, message)


class SimulationMalformedError(KeyServerError):
    """Simulation response does not have the expected shape."""

    def __init__(self, message: str = "Malformed simulation response"):
        super().__init__(ErrorCode.SIMULATION_MALFORMED, message)


class PolicyDeniedError(KeyServerError):
    """At least one simulated transaction did not succeed."""

    def __init__(self, message: str = "Policy denied the transaction bundle"):
        super().__init__(ErrorCode.POLICY_DENIED, message)


class PolicyCallInvalidError(KeyServerError):
    """Approved call whose input does not carry a selector and a 32-byte id."""

    def __init__(self, message: str = "Policy call input is malformed"):
        super().__init__(ErrorCode.INVALID_POLICY_CALL, message)
