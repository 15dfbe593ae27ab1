"""Sample SAML metadata for a new installation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from idp_installer.core.errors import BuildError
from idp_installer.core.layout import InstallLayout
from idp_installer.template.engine import TemplateEngine, TemplateRenderError

logger = logging.getLogger(__name__)

METADATA_TEMPLATE = "idp-metadata.xml.j2"


@dataclass
class MetadataParameters:
    """Values substituted into the metadata template."""

    entity_id: str
    host_name: str
    scope: str
    signing_cert: str | None = None
    encryption_cert: str | None = None
    backchannel_cert: str | None = None

    @classmethod
    def from_layout(cls, layout: InstallLayout, entity_id: str, host_name: str, scope: str) -> MetadataParameters:
        """Collect the certificates that exist in the credentials directory."""
        return cls(
            entity_id=entity_id,
            host_name=host_name,
            scope=scope,
            signing_cert=_read_optional(layout.credentials / "idp-signing.crt"),
            encryption_cert=_read_optional(layout.credentials / "idp-encryption.crt"),
            backchannel_cert=_read_optional(layout.credentials / "idp-backchannel.crt"),
        )


def _read_optional(path: Path) -> str | None:
    if not path.is_file():
        logger.debug("No certificate at %s", path)
        return None
    return path.read_text(encoding="ascii")


def render_metadata(params: MetadataParameters, engine: TemplateEngine | None = None) -> str:
    """Render the metadata document.

    Signing key descriptors list the back-channel certificate first and the
    front-channel one second.
    """
    signing = [cert for cert in (params.backchannel_cert, params.signing_cert) if cert]
    context = {
        "entity_id": params.entity_id,
        "host_name": params.host_name,
        "scope": params.scope,
        "valid_until": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        "backchannel_cert": params.backchannel_cert,
        "signing_certs": signing,
        "encryption_cert": params.encryption_cert,
    }
    return (engine or TemplateEngine()).render_template(METADATA_TEMPLATE, context)


def generate_metadata(layout: InstallLayout, params: MetadataParameters) -> bool:
    """Write metadata/idp-metadata.xml unless it already exists.

    Returns:
        True if the file was written

    Raises:
        BuildError: If the metadata cannot be rendered or written
    """
    target = layout.metadata_file
    if target.exists():
        logger.debug("Metadata file %s exists, not regenerating", target)
        return False

    logger.info("Creating Metadata to %s", target)
    logger.debug("Entity ID %s, host %s, scope %s", params.entity_id, params.host_name, params.scope)
    try:
        text = render_metadata(params)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    except (OSError, TemplateRenderError) as e:
        logger.error("Error creating metadata: %s", e)
        raise BuildError(f"Error creating metadata: {e}", target) from e
    return True
