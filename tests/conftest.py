"""Shared fixtures for installer tests."""

import io
import shutil
import tarfile
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import yaml
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

IDP_PROPERTIES = """\
# Set the entityID of the IdP
idp.entityID= https://localhost/idp/shibboleth

# Set the scope used in the attribute resolver for scoped attributes
idp.scope= localdomain

#idp.sealer.storePassword = password
idp.sealer.storeResource= %{idp.home}/credentials/sealer.jks
"""

LDAP_PROPERTIES = """\
## Connection properties ##
idp.authn.LDAP.ldapURL                          = ldap://localhost:10389
#idp.authn.LDAP.useStartTLS                     = true
idp.authn.LDAP.baseDN                           = ou=people,dc=example,dc=org
"""


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="idp_test_"))
    yield path
    if path.exists():
        for child in path.rglob("*"):
            if child.is_file():
                child.chmod(0o644)
        shutil.rmtree(path)


@pytest.fixture
def sample_distribution(temp_dir: Path) -> Path:
    """A distribution tree laid out the way a release unpacks."""
    dist = temp_dir / "distribution"
    _write(dist / "dist" / "conf" / "idp.properties", IDP_PROPERTIES)
    _write(dist / "dist" / "conf" / "ldap.properties", LDAP_PROPERTIES)
    _write(dist / "dist" / "conf" / "relying-party.xml", "<RelyingParty/>\n")
    _write(dist / "dist" / "conf" / "services.xml", "<Services/>\n")
    _write(dist / "dist" / "views" / "login.vm", "<html>login</html>\n")
    _write(dist / "dist" / "views" / "admin" / "hello.vm", "<html>hello</html>\n")
    _write(dist / "dist" / "webapp" / "WEB-INF" / "web.xml", "<web-app/>\n")
    _write(dist / "dist" / "webapp" / "index.jsp", "<p>IdP</p>\n")
    _write(dist / "dist" / "webapp" / "css" / "main.css", "body {}\n")
    _write(dist / "dist" / "messages" / "messages.properties", "idp.title = Web Login Service\n")
    _write(dist / "system" / "conf" / "global-system.xml", "<beans/>\n")
    _write(dist / "bin" / "status.sh", "#!/bin/sh\necho ok\n")
    return dist


@pytest.fixture
def no_prompt_properties(temp_dir: Path) -> dict[str, str]:
    """Installer properties for an unattended install into temp_dir/idp."""
    return {
        "idp.target.dir": str(temp_dir / "idp"),
        "idp.noprompt": "true",
        "idp.host.name": "idp.example.org",
        "idp.scope": "example.org",
        "idp.keystore.password": "backchannel-secret",
        "idp.sealer.password": "sealer-secret",
        "idp.keysize": "2048",
    }


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    """RSA key used to sign test plugin distributions."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def signing_key_pem(signing_key: rsa.RSAPrivateKey) -> str:
    """PEM public key matching signing_key."""
    return signing_key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode("ascii")


def sign(key: rsa.RSAPrivateKey, data: bytes) -> bytes:
    """Detached PKCS#1 v1.5 SHA-256 signature."""
    return key.sign(data, padding.PKCS1v15(), hashes.SHA256())


PluginBuilder = Callable[..., Path]


@pytest.fixture
def make_plugin(temp_dir: Path, signing_key: rsa.RSAPrivateKey, signing_key_pem: str) -> PluginBuilder:
    """Build a signed plugin archive; returns the archive path.

    Keyword arguments:
        plugin_id, version: descriptor identity
        descriptor: extra descriptor fields
        files: {relative path: text} placed in the plugin directory
        embed_keys: ship bootstrap/keys.txt
        signed: write a .sig beside the archive
    """

    def build(
        plugin_id: str = "net.example.plugin",
        version: str = "1.0.0",
        descriptor: dict | None = None,
        files: dict[str, str] | None = None,
        embed_keys: bool = True,
        signed: bool = True,
        out_dir: Path | None = None,
    ) -> Path:
        out_dir = out_dir or temp_dir / "archives"
        out_dir.mkdir(parents=True, exist_ok=True)
        top = f"{plugin_id}-{version}"
        contents = {
            "plugin.yaml": yaml.safe_dump({"plugin_id": plugin_id, "version": version, **(descriptor or {})}),
            **(files or {}),
        }
        if embed_keys:
            contents["bootstrap/keys.txt"] = signing_key_pem

        archive = out_dir / f"{top}.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            for relative, text in contents.items():
                data = text.encode("utf-8")
                info = tarfile.TarInfo(f"{top}/{relative}")
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        if signed:
            archive.with_name(archive.name + ".sig").write_bytes(sign(signing_key, archive.read_bytes()))
        return archive

    return build


@pytest.fixture
def idp_home(temp_dir: Path) -> Path:
    """An IdP home with a distribution webapp, ready for plugins."""
    home = temp_dir / "idp"
    _write(home / "dist" / "webapp" / "WEB-INF" / "web.xml", "<web-app/>\n")
    _write(home / "dist" / "webapp" / "index.jsp", "<p>IdP</p>\n")
    (home / "conf").mkdir(parents=True)
    return home


def plugin_info_text(plugin_id: str, base_url: str, versions: dict[str, tuple[str, str, str]]) -> str:
    """Render a plugin information document.

    Args:
        versions: version -> (min IdP, max IdP, support level)
    """
    lines = [f"{plugin_id}.versions = {' '.join(versions)}"]
    for version, (minimum, maximum, level) in versions.items():
        lines.append(f"{plugin_id}.idpVersionMin.{version} = {minimum}")
        lines.append(f"{plugin_id}.idpVersionMax.{version} = {maximum}")
        lines.append(f"{plugin_id}.supportLevel.{version} = {level}")
    lines.append(f"{plugin_id}.downloadURL.%{{version}} = {base_url}")
    lines.append(f"{plugin_id}.baseName.%{{version}} = {plugin_id}-%{{version}}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def info_document() -> Callable[..., str]:
    """Renderer for plugin information documents."""
    return plugin_info_text


@pytest.fixture
def signer(signing_key: rsa.RSAPrivateKey) -> Callable[[bytes], bytes]:
    """Signs data with signing_key."""
    return lambda data: sign(signing_key, data)
