"""
Unit tests for the keystore module.
"""

import base64
from unittest.mock import MagicMock, call, patch

import pytest
from keyring.errors import KeyringError, PasswordDeleteError
from vaultshare.security import keystore


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def mock_keyring_lib():
    """Patches the keyring module within vaultshare.security.keystore."""
    with patch("vaultshare.security.keystore.keyring", autospec=True) as mock_lib:
        yield mock_lib


def _backend(name, priority=1):
    backend = MagicMock()
    backend.__class__.__name__ = name
    backend.priority = priority
    return backend


# ==============================================================================
# Tests: Save / Load
# ==============================================================================

def test_save_passphrase_encodes_and_stores(mock_keyring_lib):
    keystore.save_passphrase("vaultshare_test", "key-1", "pässphrase")

    service, account, secret = mock_keyring_lib.set_password.call_args[0]
    assert service == "vaultshare_test"
    assert account == "key-1"
    assert secret == base64.b64encode("pässphrase".encode("utf-8")).decode("ascii")


def test_save_passphrase_accepts_bytes(mock_keyring_lib):
    keystore.save_passphrase("svc", "key-1", b"raw")
    assert mock_keyring_lib.set_password.call_args[0][2] == base64.b64encode(b"raw").decode("ascii")


def test_load_passphrase_decodes(mock_keyring_lib):
    mock_keyring_lib.get_password.return_value = base64.b64encode(b"secret").decode("ascii")

    assert keystore.load_passphrase("svc", "key-1") == "secret"
    mock_keyring_lib.get_password.assert_called_once_with("svc", "key-1")


def test_load_passphrase_missing(mock_keyring_lib):
    mock_keyring_lib.get_password.return_value = None
    assert keystore.load_passphrase("svc", "key-1") is None


def test_load_passphrase_corrupt_data(mock_keyring_lib):
    mock_keyring_lib.get_password.return_value = "NotValidBase64!!!"
    assert keystore.load_passphrase("svc", "key-1") is None


def test_load_passphrases_omits_missing(mock_keyring_lib):
    stored = {"k1": base64.b64encode(b"one").decode("ascii")}
    mock_keyring_lib.get_password.side_effect = lambda service, key_id: stored.get(key_id)

    assert keystore.load_passphrases("svc", ["k1", "k2"]) == {"k1": "one"}
    assert mock_keyring_lib.get_password.call_args_list == [call("svc", "k1"), call("svc", "k2")]


# ==============================================================================
# Tests: Delete
# ==============================================================================

def test_delete_passphrase_calls_backend(mock_keyring_lib):
    keystore.delete_passphrase("svc", "key-1")
    mock_keyring_lib.delete_password.assert_called_once_with("svc", "key-1")


def test_delete_passphrase_missing_entry_is_ignored(mock_keyring_lib):
    mock_keyring_lib.delete_password.side_effect = PasswordDeleteError("not found")

    # Should not raise
    keystore.delete_passphrase("svc", "key-1")


def test_delete_passphrase_propagates_backend_failures(mock_keyring_lib):
    mock_keyring_lib.delete_password.side_effect = KeyringError("locked")

    with pytest.raises(KeyringError):
        keystore.delete_passphrase("svc", "key-1")


# ==============================================================================
# Tests: Backend Assessment
# ==============================================================================

def test_assess_backend_handles_keyring_error(mock_keyring_lib):
    mock_keyring_lib.get_keyring.side_effect = KeyringError("DBus error")

    assessment = keystore.assess_keyring_backend()
    assert assessment.secure is False
    assert assessment.backend == "unavailable"
    assert "DBus error" in assessment.reason


def test_assess_backend_insecure_names(mock_keyring_lib):
    for name in ["PlaintextKeyring", "EncryptedFileKeyring", "NullKeyring", "FailKeyring"]:
        mock_keyring_lib.get_keyring.return_value = _backend(name, priority=5)

        assessment = keystore.assess_keyring_backend()
        assert assessment == (False, name, "backend does not encrypt stored passphrases")


def test_assess_backend_low_priority(mock_keyring_lib):
    mock_keyring_lib.get_keyring.return_value = _backend("SomeGenericBackend", priority=0)

    assessment = keystore.assess_keyring_backend()
    assert assessment.secure is False
    assert assessment.backend == "SomeGenericBackend"
    assert "priority 0" in assessment.reason


def test_assess_backend_secure_names(mock_keyring_lib):
    for name in ["KeychainKeyring", "WinVaultKeyring", "SecretServiceKeyring", "KWalletKeyring"]:
        mock_keyring_lib.get_keyring.return_value = _backend(name)

        assessment = keystore.assess_keyring_backend()
        assert assessment == (True, name, "platform credential store")


def test_assess_backend_unknown_but_high_priority(mock_keyring_lib):
    mock_keyring_lib.get_keyring.return_value = _backend("HardwareTokenKeyring", priority=5)

    assessment = keystore.assess_keyring_backend()
    assert assessment.secure is True
    assert assessment.backend == "HardwareTokenKeyring"
    assert "verify it encrypts at rest" in assessment.reason
