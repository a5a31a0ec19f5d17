from .config import QuotaSettings, load_settings
from .credentials import (
    CredentialResolver,
    CredentialsFileSecretStore,
    KeychainSecretStore,
)
from .error_handler import ConfigError, QuotaFetchError, RefreshError
from .orchestrator import QuotaOrchestrator
from .refresher import CliCredentialRefresher
from .types import (
    CredentialSource,
    FatalReason,
    LimitStatus,
    QuotaLimit,
    QuotaReport,
    QuotaSnapshot,
)

__all__ = [
    "QuotaOrchestrator",
    "QuotaSettings",
    "load_settings",
    "QuotaFetchError",
    "RefreshError",
    "ConfigError",
    "CredentialSource",
    "FatalReason",
    "LimitStatus",
    "QuotaLimit",
    "QuotaReport",
    "QuotaSnapshot",
    # Platform collaborators
    "CredentialResolver",
    "KeychainSecretStore",
    "CredentialsFileSecretStore",
    "CliCredentialRefresher",
]
