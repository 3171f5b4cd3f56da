"""
Account Store Tests

Tests for encrypted account persistence showing:
- Round trip through the encrypted file
- Key generation and passphrase derivation
- Refusal to overwrite an unreadable store

To run these tests:
    pytest tests/upload/managers/test_account_store.py -v
"""

import os
import stat

import pytest

from upload.constants import AccountType
from upload.interfaces.provider_interface import AccountStoreError
from upload.managers.account_store import AccountStore
from upload.models.account import Account


def make_account(account_id: str = "acc_1") -> Account:
    return Account(
        id=account_id,
        type=AccountType.S3,
        name="Backups",
        config={"bucket": "videos"},
        credentials={"access_key_id": "AKIA", "secret_access_key": "secret"},
    )


# =============================================================================
# ROUND TRIP TESTS
# =============================================================================


@pytest.mark.unit
def test_load_without_file_returns_empty(tmp_path):
    store = AccountStore(tmp_path)

    assert store.load() == []


@pytest.mark.unit
def test_save_and_load_round_trip(tmp_path):
    """
    Test persistence.

    Should:
    - Write an encrypted file (no plaintext secrets)
    - Restore every field including credentials
    """
    store = AccountStore(tmp_path)
    account = make_account()
    account.record_upload()

    store.save([account])

    raw = (tmp_path / "accounts.encrypted").read_bytes()
    assert b"secret" not in raw

    loaded = AccountStore(tmp_path).load()
    assert len(loaded) == 1
    assert loaded[0].id == "acc_1"
    assert loaded[0].type == AccountType.S3
    assert loaded[0].credentials["secret_access_key"] == "secret"
    assert loaded[0].upload_count == 1
    assert loaded[0].last_used == account.last_used


@pytest.mark.unit
def test_generated_key_is_owner_only(tmp_path):
    AccountStore(tmp_path).save([make_account()])

    key_path = tmp_path / "accounts.key"
    assert key_path.exists()
    if os.name == "posix":
        assert stat.S_IMODE(key_path.stat().st_mode) == 0o600


@pytest.mark.unit
def test_passphrase_store_needs_no_key_file(tmp_path):
    AccountStore(tmp_path, passphrase="hunter2").save([make_account()])

    assert not (tmp_path / "accounts.key").exists()
    assert AccountStore(tmp_path, passphrase="hunter2").load()[0].id == "acc_1"


# =============================================================================
# FAILURE TESTS
# =============================================================================


@pytest.mark.unit
def test_wrong_passphrase_fails_and_blocks_save(tmp_path):
    """
    Test an undecryptable store.

    Should:
    - Raise AccountStoreError on load
    - Refuse to overwrite the file afterwards
    """
    AccountStore(tmp_path, passphrase="right").save([make_account()])
    original = (tmp_path / "accounts.encrypted").read_bytes()

    store = AccountStore(tmp_path, passphrase="wrong")
    with pytest.raises(AccountStoreError) as exc_info:
        store.load()
    assert "Failed to decrypt accounts" in str(exc_info.value)

    with pytest.raises(AccountStoreError):
        store.save([])

    assert (tmp_path / "accounts.encrypted").read_bytes() == original
