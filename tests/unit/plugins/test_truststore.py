"""Tests for idp_installer.plugins.truststore module."""

from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from idp_installer.core.keys import generate_self_signed
from idp_installer.plugins.truststore import TrustStore, TrustStoreError, parse_public_keys

DATA = b"plugin archive bytes"


def _pem(key) -> str:
    return key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode("ascii")


class TestParsePublicKeys:
    """Tests for parse_public_keys."""

    def test_keys_and_certificates(self, signing_key_pem: str):
        """Both public keys and certificates are read."""
        _, cert = generate_self_signed("host", "https://host/idp", 2048)
        cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

        keys = parse_public_keys("junk\n" + signing_key_pem + "\n" + cert_pem)

        assert len(keys) == 2

    def test_non_rsa_skipped(self):
        """EC keys are ignored."""
        assert parse_public_keys(_pem(ec.generate_private_key(ec.SECP256R1()))) == []


class TestTrustStore:
    """Tests for TrustStore."""

    def test_missing_default_is_empty(self, idp_home: Path):
        """A missing default store holds no keys."""
        store = TrustStore("p", idp_home)
        store.load()

        assert store.keys == []
        assert store.path == idp_home / "credentials" / "p" / "truststore.pem"

    def test_missing_explicit_store(self, temp_dir: Path):
        """A missing explicit store is an error."""
        with pytest.raises(TrustStoreError, match="does not exist"):
            TrustStore("p", temp_dir, temp_dir / "missing.pem").load()

    def test_import_then_check(self, idp_home: Path, signer, signing_key_pem: str):
        """An accepted key is saved and verifies later loads."""
        signature = signer(DATA)
        store = TrustStore("p", idp_home)
        store.load()
        assert not store.contains(DATA, signature)

        prompts = []
        assert store.import_keys(signing_key_pem, DATA, signature, lambda d: prompts.append(d) or True)

        reloaded = TrustStore("p", idp_home)
        reloaded.load()
        assert reloaded.check_signature(DATA, signature)
        assert "SHA-256 fingerprint" in prompts[0]

    def test_import_rejected(self, idp_home: Path, signer, signing_key_pem: str):
        """A refused key is not saved."""
        store = TrustStore("p", idp_home)
        store.load()

        assert not store.import_keys(signing_key_pem, DATA, signer(DATA), lambda d: False)
        assert not store.path.exists()

    def test_no_acceptor_rejects(self, idp_home: Path, signer, signing_key_pem: str):
        """Without an acceptor every key is refused."""
        store = TrustStore("p", idp_home)

        assert not store.import_keys(signing_key_pem, DATA, signer(DATA), None)

    def test_only_signing_key_offered(self, idp_home: Path, signer):
        """Candidate keys that did not sign are never offered."""
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        offered = []
        store = TrustStore("p", idp_home)

        assert not store.import_keys(_pem(other), DATA, signer(DATA), lambda d: offered.append(d) or True)
        assert offered == []

    def test_tampered_data(self, idp_home: Path, signer, signing_key_pem: str):
        """Signatures over other data do not verify."""
        store = TrustStore("p", idp_home)
        store.import_keys(signing_key_pem, DATA, signer(DATA), lambda d: True)

        assert not store.check_signature(DATA + b"x", signer(DATA))
