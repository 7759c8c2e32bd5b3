"""Custom exceptions for LocalVault."""


class VaultError(Exception):
    """Base class for all LocalVault errors."""
    pass


class CryptoUnavailable(VaultError):
    """Raised when no usable cryptographic capability is present.

    The vault cannot generate, derive or use keys without one, so this is
    always fatal to the operation that needed it.
    """
    pass


class DecryptionFailed(VaultError):
    """Raised when authenticated decryption fails.

    Either the key is wrong (wrong password, wrong service key) or the
    ciphertext was tampered with. There is never a fallback to plaintext.
    """
    pass


class InvalidKeyMaterial(VaultError, ValueError):
    """Raised when raw key material or key parameters are unacceptable."""
    pass


class NoCategoriesSelected(VaultError, ValueError):
    """Raised when an authorization is started without any data category."""

    def __init__(self):
        super().__init__("At least one data category must be selected")


class StateMismatch(VaultError):
    """Raised when the callback state does not match the pending authorization.

    Treated as a possible CSRF attempt: the authorization is aborted and no
    tokens are written.
    """

    def __init__(self, message: str = "Authorization state mismatch - possible CSRF attempt"):
        super().__init__(message)


class NotAuthenticated(VaultError):
    """Raised when no usable access token is available.

    Recoverable by running the authorization flow again.
    """

    def __init__(self, message: str = "Not authenticated with Google - please connect your account"):
        super().__init__(message)


class ProviderApiError(VaultError):
    """Raised when a data provider request fails.

    Carries the HTTP status code (0 when no response was received) and the
    provider's own error message.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        retryable: bool = False,
        retry_after: float | None = None,
    ):
        """Initialize the exception with provider response data.

        Args:
            status_code: HTTP status code returned by the provider
            message: Error message reported by the provider
            retryable: Whether another attempt may succeed (timeouts, 429, 5xx)
            retry_after: Seconds the provider asked us to wait, if any
        """
        self.status_code = status_code
        self.message = message
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(f"Provider API error {status_code}: {message}")


class PollingTimeout(ProviderApiError):
    """Raised when a provider request keeps timing out after all retries."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(0, message, retryable=True)


class VaultLocked(VaultError):
    """Raised when an operation needs the master key while the vault is locked."""

    def __init__(self):
        super().__init__("Vault is locked")


class VaultNotInitialized(VaultError):
    """Raised when no password-protected master key has been stored yet."""

    def __init__(self):
        super().__init__("Vault has not been set up")


class VaultAlreadyInitialized(VaultError):
    """Raised when setting up a vault that already holds a master key."""

    def __init__(self):
        super().__init__("Vault is already set up")


class ImportAlreadyRunning(VaultError):
    """Raised when starting an import for a category that is already importing."""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"An import for '{category}' is already running")
