"""Tests for idp_installer.core.keys module."""

from pathlib import Path
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import load_pem_private_key, pkcs12

from idp_installer.config.installer import InstallerProperties
from idp_installer.core.errors import BuildError
from idp_installer.core.keys import (
    KeyKind,
    KeyMaterialManager,
    KeyState,
    generate_self_signed,
    key_files,
    read_sealer_key,
    write_sealer,
)
from idp_installer.core.layout import InstallLayout
from idp_installer.core.state import InstallState


@pytest.fixture
def layout(temp_dir: Path) -> InstallLayout:
    return InstallLayout(temp_dir / "idp")


def _manager(layout: InstallLayout, properties: dict[str, str]) -> KeyMaterialManager:
    props = InstallerProperties(properties, environ={}, no_prompt=True)
    return KeyMaterialManager(props, InstallState(layout), layout)


def _existing_install(layout: InstallLayout) -> None:
    layout.conf.mkdir(parents=True)
    layout.idp_properties.write_text("")
    layout.dist.mkdir(parents=True)
    layout.version_file.write_text("idp.installed.version=5.0.0\n")
    for kind in KeyKind:
        files = key_files(layout, kind)
        files.first.parent.mkdir(parents=True, exist_ok=True)
        files.first.write_text(f"{kind.value} first")
        files.second.write_text(f"{kind.value} second")


class TestGenerateSelfSigned:
    """Tests for generate_self_signed."""

    def test_certificate_names(self):
        """The certificate carries the host as CN and both SANs."""
        key, cert = generate_self_signed("idp.example.org", "https://idp.example.org/idp/shibboleth", 2048)

        assert key.key_size == 2048
        cn = cert.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)[0].value
        assert cn == "idp.example.org"
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["idp.example.org"]
        assert san.get_values_for_type(x509.UniformResourceIdentifier) == [
            "https://idp.example.org/idp/shibboleth"
        ]


class TestSealer:
    """Tests for the data sealer key store."""

    def test_round_trip(self, temp_dir: Path):
        """The key unwraps with the right password."""
        store, version = temp_dir / "sealer.jks", temp_dir / "sealer.kver"
        write_sealer(store, version, "pw", "secret", 128)

        assert len(read_sealer_key(store, version, "pw", "secret")) == 16
        assert "CurrentVersion=1" in version.read_text()

    def test_wrong_password(self, temp_dir: Path):
        """A wrong password cannot unwrap the key."""
        store, version = temp_dir / "sealer.jks", temp_dir / "sealer.kver"
        write_sealer(store, version, "pw", "secret", 256)

        with pytest.raises(ValueError, match="Cannot unwrap secret1"):
            read_sealer_key(store, version, "other", "secret")

    def test_bad_key_size(self, temp_dir: Path):
        """Only AES key sizes are accepted."""
        with pytest.raises(ValueError, match="Unsupported sealer key size"):
            write_sealer(temp_dir / "s", temp_dir / "v", "pw", "secret", 100)


class TestAssess:
    """Key files are all present, all absent, or an error."""

    def test_absent(self, layout: InstallLayout, no_prompt_properties):
        """Nothing on disk is ABSENT."""
        assert _manager(layout, no_prompt_properties).assess(KeyKind.SIGNING) is KeyState.ABSENT

    @pytest.mark.parametrize("kind", list(KeyKind))
    def test_partial_pair(self, layout: InstallLayout, no_prompt_properties, kind: KeyKind):
        """One file of a pair is an error and is never repaired."""
        files = key_files(layout, kind)
        files.first.parent.mkdir(parents=True)
        files.first.write_text("key")
        manager = _manager(layout, no_prompt_properties)

        with pytest.raises(BuildError, match="Invalid key file configuration"):
            manager.ensure(kind)
        assert not files.second.exists()

    def test_keys_without_idp_properties(self, layout: InstallLayout, no_prompt_properties):
        """Both files but no idp.properties is an error."""
        files = key_files(layout, KeyKind.ENCRYPTION)
        files.first.parent.mkdir(parents=True)
        files.first.write_text("key")
        files.second.write_text("crt")

        with pytest.raises(BuildError):
            _manager(layout, no_prompt_properties).assess(KeyKind.ENCRYPTION)


class TestExecute:
    """Tests for KeyMaterialManager.execute."""

    def test_generates_everything(self, layout: InstallLayout, no_prompt_properties):
        """A new install gets every piece of key material."""
        manager = _manager(layout, no_prompt_properties)
        manager.execute()

        assert manager.created == frozenset(KeyKind)
        assert manager.created_sealer
        signing = key_files(layout, KeyKind.SIGNING)
        load_pem_private_key(signing.first.read_bytes(), password=None)
        backchannel = key_files(layout, KeyKind.BACKCHANNEL)
        key, cert, _ = pkcs12.load_key_and_certificates(
            backchannel.first.read_bytes(), b"backchannel-secret"
        )
        assert key is not None and cert is not None
        sealer = key_files(layout, KeyKind.SEALER)
        assert len(read_sealer_key(sealer.first, sealer.second, "sealer-secret", "secret")) == 16

    def test_unreadable_sealer_is_build_error(self, layout: InstallLayout, no_prompt_properties):
        """A sealer that cannot be read back fails the install."""
        manager = _manager(layout, no_prompt_properties)

        with patch("idp_installer.core.keys.read_sealer_key", side_effect=ValueError("bad sealer")):
            with pytest.raises(BuildError, match="sealer"):
                manager.ensure(KeyKind.SEALER)
        assert KeyKind.SEALER not in manager.created

    def test_skipped_on_upgrade(self, layout: InstallLayout, no_prompt_properties):
        """Upgrades never generate keys."""
        _existing_install(layout)
        before = {kind: key_files(layout, kind).first.read_text() for kind in KeyKind}
        manager = _manager(layout, no_prompt_properties)
        manager.execute()

        assert manager.created == frozenset()
        assert {kind: key_files(layout, kind).first.read_text() for kind in KeyKind} == before

    @pytest.mark.parametrize("kind", list(KeyKind))
    def test_partial_pair_on_upgrade(self, layout: InstallLayout, no_prompt_properties, kind: KeyKind):
        """Upgrades still refuse a broken key pair."""
        _existing_install(layout)
        key_files(layout, kind).second.unlink()

        with pytest.raises(BuildError, match="Invalid key file configuration"):
            _manager(layout, no_prompt_properties).execute()
        assert not key_files(layout, kind).second.exists()

    def test_missing_pair_on_upgrade(self, layout: InstallLayout, no_prompt_properties):
        """Upgrades do not generate a pair that has gone missing."""
        _existing_install(layout)
        files = key_files(layout, KeyKind.ENCRYPTION)
        files.first.unlink()
        files.second.unlink()

        with pytest.raises(BuildError):
            _manager(layout, no_prompt_properties).execute()
        assert not files.first.exists()
