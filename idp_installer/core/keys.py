"""Key material for a new installation.

Signing, encryption and back-channel key pairs plus the data sealer key are
generated once, on a new install. Each pair is either fully present or fully
absent; anything in between is reported and never repaired.
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.keywrap import InvalidUnwrap, aes_key_unwrap, aes_key_wrap
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from idp_installer.config.installer import InstallerProperties
from idp_installer.config.properties import load_properties, store_properties
from idp_installer.core.errors import BuildError
from idp_installer.core.layout import InstallLayout
from idp_installer.core.state import InstallState

logger = logging.getLogger(__name__)

CERTIFICATE_LIFETIME = timedelta(days=20 * 365)
SEALER_ITERATIONS = 200_000
SEALER_FORMAT = "PBKDF2-SHA256/AESWrap"
SEALER_VERSION_PROPERTY = "CurrentVersion"


class KeyState(Enum):
    """State of one key pair on disk."""

    ABSENT = "absent"
    PRESENT = "present"
    INCONSISTENT = "inconsistent"


class KeyKind(Enum):
    """The key material an installation needs."""

    SIGNING = "signing"
    ENCRYPTION = "encryption"
    BACKCHANNEL = "backchannel"
    SEALER = "sealer"


@dataclass(frozen=True)
class KeyFiles:
    """The two files making up one piece of key material."""

    kind: KeyKind
    first: Path
    second: Path

    @property
    def description(self) -> str:
        return f"{self.first.name} and {self.second.name}"


def key_files(layout: InstallLayout, kind: KeyKind) -> KeyFiles:
    """Files used for a given kind of key material."""
    credentials = layout.credentials
    if kind is KeyKind.SIGNING:
        return KeyFiles(kind, credentials / "idp-signing.key", credentials / "idp-signing.crt")
    if kind is KeyKind.ENCRYPTION:
        return KeyFiles(kind, credentials / "idp-encryption.key", credentials / "idp-encryption.crt")
    if kind is KeyKind.BACKCHANNEL:
        return KeyFiles(kind, credentials / "idp-backchannel.p12", credentials / "idp-backchannel.crt")
    return KeyFiles(kind, credentials / "sealer.jks", credentials / "sealer.kver")


# =============================================================================
# Generation
# =============================================================================


def generate_self_signed(
    host_name: str, subject_alt_name: str, key_size: int
) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    """Generate an RSA key and a self-signed certificate for it.

    Args:
        host_name: Common name and DNS subject alternative name
        subject_alt_name: URI subject alternative name
        key_size: RSA key size in bits

    Returns:
        (private key, certificate)
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host_name)])
    now = datetime.now(timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + CERTIFICATE_LIFETIME)
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName(host_name), x509.UniformResourceIdentifier(subject_alt_name)]
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )
    return private_key, cert


def _write_certificate(path: Path, cert: x509.Certificate) -> None:
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def write_key_pair(key_path: Path, crt_path: Path, host_name: str, subject_alt_name: str, key_size: int) -> None:
    """Generate and write a PEM private key and certificate."""
    private_key, cert = generate_self_signed(host_name, subject_alt_name, key_size)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    _write_certificate(crt_path, cert)


def write_keystore(
    p12_path: Path, crt_path: Path, host_name: str, subject_alt_name: str, key_size: int, password: str
) -> None:
    """Generate and write a PKCS#12 key store and its certificate."""
    private_key, cert = generate_self_signed(host_name, subject_alt_name, key_size)
    p12_path.parent.mkdir(parents=True, exist_ok=True)
    p12_path.write_bytes(
        pkcs12.serialize_key_and_certificates(
            name=b"idp-backchannel",
            key=private_key,
            cert=cert,
            cas=None,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
        )
    )
    _write_certificate(crt_path, cert)


def _derive_wrapping_key(password: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return kdf.derive(password.encode("utf-8"))


def write_sealer(store_path: Path, version_path: Path, password: str, alias: str, key_size: int) -> None:
    """Generate the data sealer key and write it, wrapped, with its version file.

    The key store is a properties document holding the PBKDF2 salt and
    iteration count and the AES-wrapped key under ``<alias><version>``.
    """
    if key_size not in (128, 192, 256):
        raise ValueError(f"Unsupported sealer key size {key_size}")
    salt = os.urandom(16)
    secret = os.urandom(key_size // 8)
    wrapped = aes_key_wrap(_derive_wrapping_key(password, salt, SEALER_ITERATIONS), secret)

    store_properties(
        store_path,
        {
            "format": SEALER_FORMAT,
            "salt": base64.b64encode(salt).decode("ascii"),
            "iterations": str(SEALER_ITERATIONS),
            f"{alias}1": base64.b64encode(wrapped).decode("ascii"),
        },
        comment="Data sealer key store",
    )
    store_properties(version_path, {SEALER_VERSION_PROPERTY: "1"})


def read_sealer_key(store_path: Path, version_path: Path, password: str, alias: str) -> bytes:
    """Unwrap the current data sealer key.

    Raises:
        ValueError: If the store is malformed or the password is wrong
    """
    store = load_properties(store_path)
    version = load_properties(version_path).get(SEALER_VERSION_PROPERTY)
    entry = store.get(f"{alias}{version}")
    if store.get("format") != SEALER_FORMAT or entry is None:
        raise ValueError(f"No key {alias}{version} in {store_path}")
    wrapping_key = _derive_wrapping_key(
        password, base64.b64decode(store["salt"]), int(store["iterations"])
    )
    try:
        return aes_key_unwrap(wrapping_key, base64.b64decode(entry))
    except InvalidUnwrap as e:
        raise ValueError(f"Cannot unwrap {alias}{version} in {store_path}") from e


# =============================================================================
# Manager
# =============================================================================


class KeyMaterialManager:
    """Ensures the key material of a new installation exists."""

    def __init__(self, properties: InstallerProperties, state: InstallState, layout: InstallLayout | None = None):
        self._properties = properties
        self._state = state
        self._layout = layout or state.layout
        self._created: set[KeyKind] = set()

    @property
    def created_sealer(self) -> bool:
        return KeyKind.SEALER in self._created

    @property
    def created(self) -> frozenset[KeyKind]:
        return frozenset(self._created)

    def assess(self, kind: KeyKind) -> KeyState:
        """Work out the state of one kind of key material.

        Raises:
            BuildError: If the files are inconsistent with each other or with
                the presence of idp.properties
        """
        files = key_files(self._layout, kind)
        first, second = files.first.exists(), files.second.exists()
        idp_properties = self._state.idp_properties_present

        if first and second:
            if not idp_properties:
                logger.error("Key files %s exist but idp.properties does not", files.description)
                raise BuildError("Invalid key file configuration", files.first)
            logger.debug("Key files %s exist. Not generating", files.description)
            return KeyState.PRESENT
        if idp_properties:
            logger.error("idp.properties exists but key files %s do not", files.description)
            raise BuildError("Invalid key file configuration", files.first)
        if first or second:
            logger.error("One of two expected key files %s exists", files.description)
            raise BuildError("Invalid key file configuration", files.first)
        return KeyState.ABSENT

    def ensure(self, kind: KeyKind) -> bool:
        """Generate one kind of key material if it is absent.

        Returns:
            True if it was generated

        Raises:
            BuildError: If the files are inconsistent or generation fails
        """
        if self.assess(kind) is KeyState.PRESENT:
            return False

        files = key_files(self._layout, kind)
        props = self._properties
        try:
            if kind is KeyKind.SEALER:
                logger.info("Creating Sealer KeyStore")
                write_sealer(
                    files.first, files.second, props.sealer_password, props.sealer_alias, props.sealer_key_size
                )
                read_sealer_key(files.first, files.second, props.sealer_password, props.sealer_alias)
            elif kind is KeyKind.BACKCHANNEL:
                logger.info(
                    "Creating backchannel keystore, CN = %s URI = %s, keySize=%d",
                    props.host_name,
                    props.subject_alt_name,
                    props.key_size,
                )
                write_keystore(
                    files.first,
                    files.second,
                    props.host_name,
                    props.subject_alt_name,
                    props.key_size,
                    props.keystore_password,
                )
            else:
                logger.info(
                    "Creating idp-%s, CN = %s URI = %s, keySize=%d",
                    kind.value,
                    props.host_name,
                    props.subject_alt_name,
                    props.key_size,
                )
                write_key_pair(files.first, files.second, props.host_name, props.subject_alt_name, props.key_size)
        except (OSError, ValueError) as e:
            logger.error("Error building %s files: %s", kind.value, e)
            raise BuildError(f"Error building {kind.value} key material", files.first) from e

        self._created.add(kind)
        return True

    def execute(self) -> None:
        """Generate all missing key material on a new install.

        Upgrades only check the existing material and never generate any.

        Raises:
            BuildError: If any key material is inconsistent
        """
        kinds = (KeyKind.SIGNING, KeyKind.ENCRYPTION, KeyKind.BACKCHANNEL, KeyKind.SEALER)
        if not self._state.is_new_install:
            logger.debug("Checking existing key material")
            for kind in kinds:
                self.assess(kind)
            return
        for kind in kinds:
            self.ensure(kind)
