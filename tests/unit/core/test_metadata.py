"""Tests for idp_installer.core.metadata module."""

from pathlib import Path

from idp_installer.core.keys import write_key_pair
from idp_installer.core.layout import InstallLayout
from idp_installer.core.metadata import MetadataParameters, generate_metadata, render_metadata

ENTITY_ID = "https://idp.example.org/idp/shibboleth"


class TestRenderMetadata:
    """Tests for render_metadata."""

    def test_identity(self):
        """Entity ID, scope and host name are substituted."""
        text = render_metadata(MetadataParameters(ENTITY_ID, "idp.example.org", "example.org"))

        assert f'entityID="{ENTITY_ID}"' in text
        assert '<shibmd:Scope regexp="false">example.org</shibmd:Scope>' in text
        assert "https://idp.example.org/idp/profile/SAML2/POST/SSO" in text
        assert "KeyDescriptor" not in text

    def test_backchannel_first(self, temp_dir: Path):
        """The back-channel certificate is the first signing key."""
        layout = InstallLayout(temp_dir)
        creds = layout.credentials
        write_key_pair(creds / "idp-signing.key", creds / "idp-signing.crt", "idp.example.org", ENTITY_ID, 2048)
        write_key_pair(
            creds / "idp-backchannel.key", creds / "idp-backchannel.crt", "idp.example.org", ENTITY_ID, 2048
        )
        params = MetadataParameters.from_layout(layout, ENTITY_ID, "idp.example.org", "example.org")

        text = render_metadata(params)

        assert text.count('<KeyDescriptor use="signing">') == 2
        assert "First signing certificate is BackChannel" in text
        back_body = params.backchannel_cert.splitlines()[1]
        front_body = params.signing_cert.splitlines()[1]
        assert text.index(back_body) < text.index(front_body)
        assert "-----BEGIN" not in text


class TestGenerateMetadata:
    """Tests for generate_metadata."""

    def test_writes_once(self, temp_dir: Path):
        """Writes the file, then leaves an existing one alone."""
        layout = InstallLayout(temp_dir)
        params = MetadataParameters(ENTITY_ID, "idp.example.org", "example.org")

        assert generate_metadata(layout, params) is True
        layout.metadata_file.write_text("edited")
        assert generate_metadata(layout, params) is False
        assert layout.metadata_file.read_text() == "edited"
