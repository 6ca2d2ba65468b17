"""Exception hierarchy for keyward.

Every error carries a stable ``reason`` code for logs and a ``public_message``
that is safe to return to clients. Verification failures share one public
message so an attacker cannot probe which check rejected a response.
"""


class KeywardError(Exception):
    """Base exception for all keyward errors."""

    reason = "error"
    public_message = "Request failed."
    status_code = 500


class ConfigError(KeywardError):
    """Raised when configuration is invalid."""

    reason = "config_error"


class InvalidAccountState(KeywardError):
    """Raised when the account for a ceremony cannot be resolved."""

    reason = "invalid_account_state"
    public_message = "This account cannot register security keys."
    status_code = 403


class ExpiredChallenge(KeywardError):
    """Raised when a registration token is missing, expired or already used."""

    reason = "expired_challenge"
    public_message = (
        "Could not register security key: no data present in session, "
        "please try your request again."
    )
    status_code = 400


class UnexpectedCachedPayload(KeywardError):
    """Raised when a stored challenge entry does not decode to a pending registration."""

    reason = "unexpected_cached_payload"


class VerificationError(KeywardError):
    """Base class for attestation verification failures."""

    reason = "verification_failed"
    public_message = "Registration failed."
    status_code = 400


class MalformedRegistration(VerificationError):
    reason = "malformed_registration"


class ChallengeMismatch(VerificationError):
    reason = "challenge_mismatch"


class OriginMismatch(VerificationError):
    reason = "origin_mismatch"


class RelyingPartyMismatch(VerificationError):
    reason = "relying_party_mismatch"


class AttestationFormatUnsupported(VerificationError):
    reason = "attestation_format_unsupported"


class AttestationSignatureInvalid(VerificationError):
    reason = "attestation_signature_invalid"


class CounterlessAuthenticatorRejected(VerificationError):
    reason = "counterless_authenticator_rejected"


class DuplicateCredential(KeywardError):
    """Raised when a credential id is already registered to any account."""

    reason = "duplicate_credential"
    public_message = "This security key has already been registered."
    status_code = 409


class PersistenceFailure(KeywardError):
    """Raised when the credential could not be written to storage."""

    reason = "persistence_failure"
    public_message = "Could not save the security key. Please try again."
    status_code = 503
