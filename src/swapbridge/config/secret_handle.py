"""
Process-wide holder for bridge credentials.

Secrets are read once at start-up from ``SWAPBRIDGE_SECRET_<NAME>`` or from
the file named by ``SWAPBRIDGE_SECRET_<NAME>_FILE``. Every loaded value is
registered with the log manager for redaction. Callers borrow a value only
for the duration of one operation via ``acquire``.
"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional

from ..errors import ConfigurationError
from ..logging import get_log_manager, get_logger

logger = get_logger(__name__)

BASE_RPC_PASSWORD = "base_rpc_password"
WRAPPED_SIGNER_KEY = "wrapped_signer_key"
RECEIPT_PASSPHRASE = "receipt_passphrase"
OPERATOR_TOKEN = "operator_token"

KNOWN_SECRETS = (BASE_RPC_PASSWORD, WRAPPED_SIGNER_KEY, RECEIPT_PASSPHRASE, OPERATOR_TOKEN)


class SecretHandle:
    """Holds named secrets and hands them out in scoped borrows."""

    def __init__(self, secrets: Optional[Mapping[str, str]] = None):
        self._secrets: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._borrows: Dict[str, int] = {}
        for name, value in (secrets or {}).items():
            self.set(name, value)

    def set(self, name: str, value: str) -> None:
        """Store a secret and register it for log redaction."""
        with self._lock:
            self._secrets[name] = value
        get_log_manager().redact(value)

    def has(self, name: str) -> bool:
        """Whether a secret with this name is loaded."""
        with self._lock:
            return bool(self._secrets.get(name))

    def names(self) -> Iterable[str]:
        """Names of the loaded secrets."""
        with self._lock:
            return sorted(self._secrets)

    @contextmanager
    def acquire(self, name: str) -> Iterator[str]:
        """Borrow a secret for one operation."""
        with self._lock:
            value = self._secrets.get(name)
            if not value:
                raise ConfigurationError(f"Secret '{name}' is not configured", config_key=name)
            self._borrows[name] = self._borrows.get(name, 0) + 1
        try:
            yield value
        finally:
            with self._lock:
                self._borrows[name] -= 1

    def active_borrows(self, name: str) -> int:
        """Number of callers currently holding the secret."""
        with self._lock:
            return self._borrows.get(name, 0)

    def __repr__(self) -> str:
        return f"SecretHandle(names={list(self.names())})"

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str],
        names: Iterable[str] = KNOWN_SECRETS,
    ) -> "SecretHandle":
        """Load secrets from environment variables or secret files."""
        handle = cls()
        for name in names:
            env_var = f"SWAPBRIDGE_SECRET_{name.upper()}"
            value = environ.get(env_var)
            file_path = environ.get(f"{env_var}_FILE")
            if value is None and file_path:
                path = Path(file_path)
                if not path.exists():
                    raise ConfigurationError(
                        f"Secret file for '{name}' not found: {file_path}", config_key=env_var
                    )
                value = path.read_text(encoding="utf-8").strip()
            if value:
                handle.set(name, value)
                logger.debug(f"Loaded secret '{name}'")
        return handle
