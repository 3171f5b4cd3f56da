"""
Account Store

Encrypted persistence for upload accounts (accounts.encrypted).

The file holds a JSON array of Account records encrypted with Fernet.
The key is derived from ACCOUNTS_ENCRYPTION_KEY when it is set, otherwise
a random key is generated once into accounts.key next to the store.
"""

import base64
import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config.settings import ACCOUNTS_FILE_NAME, ACCOUNTS_KEY_FILE_NAME
from upload.interfaces.provider_interface import AccountStoreError
from upload.models.account import Account

# Fixed salt: the passphrase alone must reproduce the key on another machine
_KDF_SALT = b"StarCaptureAccounts2024"
_KDF_ITERATIONS = 100000


class AccountStore:
    """
    Load and save accounts as an encrypted blob.

    A store that failed to decrypt refuses to save, so an unreadable file
    (wrong passphrase, lost key) is never replaced by an empty account list.

    Usage:
        store = AccountStore(Path("~/.starcapture").expanduser())
        accounts = store.load()
        store.save(accounts)
    """

    def __init__(self, data_dir: Path, passphrase: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / ACCOUNTS_FILE_NAME
        self.key_path = self.data_dir / ACCOUNTS_KEY_FILE_NAME
        self._passphrase = passphrase
        self._cipher: Optional[Fernet] = None
        self._load_failed = False
        self._lock = threading.Lock()

    # =========================================================================
    # KEY MANAGEMENT
    # =========================================================================

    def _get_cipher(self) -> Fernet:
        if self._cipher is None:
            if self._passphrase:
                self._cipher = Fernet(self._derive_key(self._passphrase))
            else:
                self._cipher = Fernet(self._load_or_create_key())
        return self._cipher

    @staticmethod
    def _derive_key(passphrase: str) -> bytes:
        """PBKDF2-SHA256 derivation of a Fernet key from a passphrase"""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))

    def _load_or_create_key(self) -> bytes:
        if self.key_path.exists():
            return self.key_path.read_bytes().strip()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()

        # Owner read/write only
        fd = os.open(str(self.key_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)

        self.logger.info(f"Generated new account encryption key: {self.key_path}")
        return key

    # =========================================================================
    # LOAD / SAVE
    # =========================================================================

    def load(self) -> List[Account]:
        """
        Load all accounts.

        Returns:
            Accounts in stored order (empty list if no file yet)

        Raises:
            AccountStoreError: If the file cannot be read or decrypted
        """
        with self._lock:
            if not self.path.exists():
                self.logger.info("No existing accounts file found")
                self._load_failed = False
                return []

            try:
                encrypted = self.path.read_bytes()
                decrypted = self._get_cipher().decrypt(encrypted)
                records = json.loads(decrypted.decode("utf-8"))
                accounts = [Account.from_dict(record) for record in records]
            except InvalidToken as e:
                self._load_failed = True
                raise AccountStoreError(
                    "Failed to decrypt accounts (wrong key or corrupted file)",
                ) from e
            except (OSError, ValueError, KeyError) as e:
                self._load_failed = True
                raise AccountStoreError(f"Failed to load accounts: {e}") from e

            self._load_failed = False
            self.logger.info(f"Loaded {len(accounts)} accounts")
            return accounts

    def save(self, accounts: Iterable[Account]) -> None:
        """
        Encrypt and write all accounts, replacing the file atomically.

        Raises:
            AccountStoreError: If the store could not be loaded earlier or
                the write fails
        """
        with self._lock:
            if self._load_failed:
                raise AccountStoreError(
                    f"Refusing to overwrite unreadable account store: {self.path}",
                )

            records = [account.to_dict(include_credentials=True) for account in accounts]
            payload = json.dumps(records, indent=2).encode("utf-8")

            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                encrypted = self._get_cipher().encrypt(payload)
                tmp_path = self.path.with_suffix(".tmp")
                fd = os.open(
                    str(tmp_path),
                    os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                    0o600,
                )
                with os.fdopen(fd, "wb") as f:
                    f.write(encrypted)
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise AccountStoreError(f"Failed to save accounts: {e}") from e

            self.logger.debug(f"Saved {len(records)} accounts to {self.path}")
