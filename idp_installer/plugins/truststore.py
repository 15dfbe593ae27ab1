"""Keys trusted to sign plugin distributions.

Each plugin has its own trust store, a PEM bundle of RSA public keys. A
distribution ``<archive>`` is accompanied by ``<archive>.sig``, a detached
RSA PKCS#1 v1.5 SHA-256 signature over the archive bytes.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(
    r"-----BEGIN (?P<kind>PUBLIC KEY|CERTIFICATE)-----.*?-----END (?P=kind)-----", re.DOTALL
)

KeyAcceptor = Callable[[str], bool]


class TrustStoreError(Exception):
    """Trust store cannot be read or written."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def parse_public_keys(text: str) -> list[rsa.RSAPublicKey]:
    """Extract RSA public keys from PEM public keys and certificates.

    Blocks that cannot be parsed, and non-RSA keys, are skipped.
    """
    keys = []
    for match in _PEM_BLOCK.finditer(text):
        block = match.group(0).encode("ascii")
        try:
            if match.group("kind") == "CERTIFICATE":
                key = x509.load_pem_x509_certificate(block).public_key()
            else:
                key = serialization.load_pem_public_key(block)
        except (ValueError, UnsupportedAlgorithm) as e:
            logger.warning("Skipping unreadable key: %s", e)
            continue
        if isinstance(key, rsa.RSAPublicKey):
            keys.append(key)
        else:
            logger.warning("Skipping non-RSA key")
    return keys


def fingerprint(key: rsa.RSAPublicKey) -> str:
    """SHA-256 fingerprint of a key's SubjectPublicKeyInfo."""
    der = key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    digest = hashes.Hash(hashes.SHA256())
    digest.update(der)
    return ":".join(f"{b:02X}" for b in digest.finalize())


def describe_key(key: rsa.RSAPublicKey) -> str:
    return f"RSA {key.key_size} bit key, SHA-256 fingerprint {fingerprint(key)}"


def verifies(key: rsa.RSAPublicKey, data: bytes, signature: bytes) -> bool:
    try:
        key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


class TrustStore:
    """The trusted keys of one plugin."""

    def __init__(self, plugin_id: str, idp_home: Path, path: Path | None = None):
        """Initialize the trust store.

        Args:
            plugin_id: Plugin whose keys these are
            idp_home: IdP home, used for the default location
            path: Explicit trust store, which must exist
        """
        self._plugin_id = plugin_id
        self._explicit = path is not None
        self._path = path or idp_home / "credentials" / plugin_id / "truststore.pem"
        self._keys: list[rsa.RSAPublicKey] = []

    @property
    def path(self) -> Path:
        return self._path

    @property
    def keys(self) -> list[rsa.RSAPublicKey]:
        return list(self._keys)

    def load(self) -> None:
        """Read the trust store; a missing default store is empty.

        Raises:
            TrustStoreError: If an explicit store is missing, or the store
                cannot be read
        """
        if not self._path.exists():
            if self._explicit:
                logger.error("Trust store %s does not exist", self._path)
                raise TrustStoreError("Supplied trust store does not exist.", self._path)
            logger.debug("Plugin %s: No trust store at %s", self._plugin_id, self._path)
            self._keys = []
            return
        logger.debug("Plugin %s: Loading truststore %s", self._plugin_id, self._path)
        try:
            text = self._path.read_text(encoding="ascii")
        except (OSError, UnicodeDecodeError) as e:
            raise TrustStoreError(f"Could not read trust store {self._path}: {e}", self._path) from e
        self._keys = parse_public_keys(text)

    def save(self) -> None:
        """Write the trust store as a PEM bundle."""
        blocks = [
            key.public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
            for key in self._keys
        ]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(b"".join(blocks))
        except OSError as e:
            raise TrustStoreError(f"Could not write trust store {self._path}: {e}", self._path) from e

    def check_signature(self, data: bytes, signature: bytes) -> bool:
        """Check whether a trusted key produced the signature."""
        for key in self._keys:
            if verifies(key, data, signature):
                logger.debug("Signature Check Succeeded")
                return True
        logger.debug("Signature Check Failed")
        return False

    def contains(self, data: bytes, signature: bytes) -> bool:
        """Check whether the key behind a signature is already trusted."""
        return self.check_signature(data, signature)

    def import_keys(self, candidates: str, data: bytes, signature: bytes, accept: KeyAcceptor | None) -> bool:
        """Offer the candidate keys that produced the signature for import.

        Args:
            candidates: PEM text holding the candidate keys
            data: Signed data
            signature: Detached signature
            accept: Asked whether to trust a key; None rejects every key

        Returns:
            True if a key was imported
        """
        for key in parse_public_keys(candidates):
            if not verifies(key, data, signature):
                continue
            description = describe_key(key)
            logger.debug("Asking to import key\n%s", description)
            if accept is None or not accept(description):
                logger.info("Key import barred by user")
                return False
            self._keys.append(key)
            self.save()
            logger.info("Plugin %s: Imported %s", self._plugin_id, description)
            return True
        logger.info("Provided keys did not contain the signing key for %s", self._plugin_id)
        return False
