"""Jinja2 template engine wrapper for the installer."""

from pathlib import Path
from typing import Any

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)


class TemplateRenderError(Exception):
    """Error rendering a template."""

    def __init__(self, message: str, source: str | None = None, line: int | None = None):
        self.source = source
        self.line = line
        super().__init__(message)


def _cert_body(pem: str) -> str:
    """Strip the PEM armour from a certificate, keeping the base64 lines."""
    lines = [line.strip() for line in pem.splitlines()]
    return "\n".join(line for line in lines if line and not line.startswith("-----"))


CUSTOM_FILTERS = {
    "cert_body": _cert_body,
}


class TemplateEngine:
    """Jinja2-based template engine.

    Packaged templates (``idp_installer/template/templates``) are always
    available; a base path, when given, is searched first so that an
    installation can override them.
    """

    def __init__(self, base_path: Path | None = None) -> None:
        self._base_path = base_path
        self._env = self._create_environment(base_path)

    def _create_environment(self, base_path: Path | None) -> Environment:
        loaders: list[BaseLoader] = []
        if base_path and base_path.exists():
            loaders.append(FileSystemLoader(str(base_path)))
        loaders.append(PackageLoader("idp_installer.template", "templates"))

        env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        env.filters.update(CUSTOM_FILTERS)
        return env

    def render_string(self, template_str: str, context: dict[str, Any]) -> str:
        """Render a template string.

        Raises:
            TemplateRenderError: If rendering fails
        """
        try:
            return self._env.from_string(template_str).render(context)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(
                f"Template syntax error: {e.message}",
                source=template_str[:100],
                line=e.lineno,
            ) from e
        except UndefinedError as e:
            raise TemplateRenderError(f"Undefined variable in template: {e}", source=template_str[:100]) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Template error: {e}") from e

    def render_template(self, name: str, context: dict[str, Any]) -> str:
        """Render a named template.

        Args:
            name: Template name, e.g. "idp-metadata.xml.j2"
            context: Context dictionary for variable substitution

        Returns:
            Rendered template content

        Raises:
            TemplateRenderError: If the template is missing or rendering fails
        """
        try:
            return self._env.get_template(name).render(context)
        except TemplateNotFound as e:
            raise TemplateRenderError(f"Template not found: {name}", source=name) from e
        except TemplateSyntaxError as e:
            raise TemplateRenderError(
                f"Template syntax error in {name}: {e.message}", source=name, line=e.lineno
            ) from e
        except UndefinedError as e:
            raise TemplateRenderError(f"Undefined variable in template {name}: {e}", source=name) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Error rendering {name}: {e}", source=name) from e
