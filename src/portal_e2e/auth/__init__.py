from .login import Credential, FailureReason, LoginFailedError, LoginFlow, LoginResult, LoginState
from .totp import (
    CodeGenerationError,
    InvalidSecretFormat,
    NoSecretAvailable,
    TotpError,
    TotpGenerator,
    validate_secret,
)

__all__ = [
    "Credential",
    "FailureReason",
    "LoginFailedError",
    "LoginFlow",
    "LoginResult",
    "LoginState",
    "CodeGenerationError",
    "InvalidSecretFormat",
    "NoSecretAvailable",
    "TotpError",
    "TotpGenerator",
    "validate_secret",
]
