"""Installation properties resolved from the environment, a file and prompts."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path

import typer

from idp_installer.config.parser import ConfigError
from idp_installer.config.properties import load_properties
from idp_installer.utils.platform import best_host_name

logger = logging.getLogger(__name__)

# Property names
PROPERTY_SOURCE_FILE = "idp.property.file"
IDP_PROPERTIES_MERGE = "idp.merge.properties"
LDAP_PROPERTIES_MERGE = "ldap.merge.properties"
LDAP_PASSWORD = "idp.LDAP.credential"
TARGET_DIR = "idp.target.dir"
SOURCE_DIR = "idp.src.dir"
ENTITY_ID = "idp.entityID"
NO_PROMPT = "idp.noprompt"
HOST_NAME = "idp.host.name"
SCOPE = "idp.scope"
KEY_STORE_PASSWORD = "idp.keystore.password"
SEALER_PASSWORD = "idp.sealer.password"
SEALER_ALIAS = "idp.sealer.alias"
SEALER_KEY_SIZE = "idp.sealer.keysize"
KEY_SIZE = "idp.keysize"
MODE_CREDENTIAL_KEYS = "idp.conf.credentials.filemode"
GROUP_CONF_CREDENTIALS = "idp.conf.credentials.group"
PERFORM_SET_MODE = "idp.conf.setmode"
NO_TIDY = "idp.no.tidy"
INITIAL_INSTALL_MODULES = "idp.initial.modules"

KNOWN_PROPERTIES = (
    PROPERTY_SOURCE_FILE,
    IDP_PROPERTIES_MERGE,
    LDAP_PROPERTIES_MERGE,
    LDAP_PASSWORD,
    TARGET_DIR,
    SOURCE_DIR,
    ENTITY_ID,
    NO_PROMPT,
    HOST_NAME,
    SCOPE,
    KEY_STORE_PASSWORD,
    SEALER_PASSWORD,
    SEALER_ALIAS,
    SEALER_KEY_SIZE,
    KEY_SIZE,
    MODE_CREDENTIAL_KEYS,
    GROUP_CONF_CREDENTIALS,
    PERFORM_SET_MODE,
    NO_TIDY,
    INITIAL_INSTALL_MODULES,
)

DEFAULT_KEY_SIZE = 3072
DEFAULT_SEALER_KEY_SIZE = 128
DEFAULT_SEALER_ALIAS = "secret"
DEFAULT_CREDENTIALS_MODE = "600"
DEFAULT_TARGET_DIR = "/opt/shibboleth-idp"

CORE_MODULES = frozenset({"idp.Core"})
DEFAULT_MODULES = frozenset(
    {"idp.EditWebApp", "idp.CommandLine", "idp.authn.Password", "idp.admin.Hello"}
)

# (message, default, hide_input) -> answer
Prompter = Callable[[str, str | None, bool], str]


def environment_name(property_name: str) -> str:
    """Environment variable consulted for a property (idp.target.dir -> IDP_TARGET_DIR)."""
    return property_name.upper().replace(".", "_")


def properties_from_environment(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect the known installer properties that are set in the environment."""
    environ = os.environ if environ is None else environ
    result = {}
    for name in KNOWN_PROPERTIES:
        value = environ.get(environment_name(name))
        if value is not None:
            result[name] = value
    return result


def _typer_prompt(message: str, default: str | None, hide_input: bool) -> str:
    if hide_input:
        return str(typer.prompt(message, hide_input=True, confirmation_prompt=True))
    return str(typer.prompt(message, default=default))


class InstallerProperties:
    """Properties that drive an install.

    Values come from (lowest to highest precedence) the process environment,
    an optional property file named by ``idp.property.file`` and explicit
    values from the command line. A value missing from all of them is
    prompted for, unless prompting is disabled, in which case a
    ``ConfigError`` is raised. Every value is resolved at most once.
    """

    def __init__(
        self,
        properties: Mapping[str, str] | None = None,
        base_dir: Path | None = None,
        need_source_dir: bool = True,
        no_prompt: bool = False,
        environ: Mapping[str, str] | None = None,
        prompter: Prompter | None = None,
    ):
        """Initialize installer properties.

        Args:
            properties: Explicit values (highest precedence)
            base_dir: Directory relative paths are resolved against (default: cwd)
            need_source_dir: Whether a separate distribution source is needed
            no_prompt: Never prompt; defaults are taken and missing passwords are errors
            environ: Environment to read (default: os.environ)
            prompter: Callable used to ask for missing values

        Raises:
            ConfigError: If the property file does not exist or cannot be read
        """
        self._base_dir = (base_dir or Path.cwd()).resolve()
        self._need_source_dir = need_source_dir
        self._prompter = prompter or _typer_prompt
        self._values: dict[str, str] = properties_from_environment(environ)
        self._cache: dict[str, object] = {}
        self._property_file: Path | None = None

        explicit = dict(properties or {})
        property_file = explicit.get(PROPERTY_SOURCE_FILE, self._values.get(PROPERTY_SOURCE_FILE))
        if property_file is not None:
            path = self._base_dir / property_file
            if not path.is_file():
                logger.error("Property file %s did not exist", path)
                raise ConfigError(f"{path} must exist", path)
            logger.debug("Loading properties from %s", path)
            self._values.update(load_properties(path))
            self._property_file = path
        self._values.update(explicit)

        self._no_prompt = no_prompt or NO_PROMPT in self._values
        logger.debug("Base dir %s", self._base_dir)

    # -------------------------------------------------------------------------
    # Resolution helpers
    # -------------------------------------------------------------------------

    def _get_value(self, name: str, prompt: str, default: Callable[[], str]) -> str:
        if name in self._cache:
            return str(self._cache[name])
        value = self._values.get(name)
        if value is None:
            default_value = default()
            if self._no_prompt:
                value = default_value
            else:
                value = self._prompter(prompt, default_value, False) or default_value
        self._cache[name] = value
        return value

    def _get_password(self, name: str, prompt: str) -> str:
        if name in self._cache:
            return str(self._cache[name])
        value = self._values.get(name)
        if value is None:
            if self._no_prompt:
                raise ConfigError(f"No value for {name} specified")
            value = self._prompter(prompt, None, True)
            if not value:
                raise ConfigError(f"No value supplied for {name}")
        self._cache[name] = value
        return value

    def _get_merge_file(self, name: str) -> Path | None:
        value = self._values.get(name)
        if value is None:
            return None
        path = self._base_dir / value
        logger.debug("Property '%s' had value '%s' returning path '%s'", name, value, path)
        if not path.exists():
            logger.error("Could not find file specified by property %s (%s)", name, path)
            raise ConfigError("Property file not found", path)
        if path.is_dir():
            logger.error("Path '%s' supplied by property '%s' was not a file", path, name)
            raise ConfigError("Not a file", path)
        return path

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def no_prompt(self) -> bool:
        return self._no_prompt

    @property
    def no_tidy(self) -> bool:
        return NO_TIDY in self._values

    @property
    def target_dir(self) -> Path:
        """The installation directory."""
        if self._need_source_dir:
            default = DEFAULT_TARGET_DIR
        else:
            default = str(self._base_dir)
        return Path(self._get_value(TARGET_DIR, "Installation Directory", lambda: default))

    @property
    def source_dir(self) -> Path | None:
        """The distribution directory to copy from (None when not needed)."""
        if not self._need_source_dir:
            return None
        return Path(
            self._get_value(
                SOURCE_DIR,
                "Source (Distribution) Directory (press <enter> to accept default)",
                lambda: str(self._base_dir),
            )
        )

    @property
    def host_name(self) -> str:
        return self._get_value(HOST_NAME, "Host Name", best_host_name)

    @property
    def entity_id(self) -> str:
        return self._get_value(
            ENTITY_ID, "SAML EntityID", lambda: f"https://{self.host_name}/idp/shibboleth"
        )

    def _default_scope(self) -> str:
        host = self.host_name
        index = host.find(".")
        if index > 1:
            return host[index + 1 :]
        return "localdomain"

    @property
    def scope(self) -> str:
        return self._get_value(SCOPE, "Attribute Scope", self._default_scope)

    @property
    def subject_alt_name(self) -> str:
        return f"https://{self.host_name}/idp/shibboleth"

    @property
    def keystore_password(self) -> str:
        return self._get_password(KEY_STORE_PASSWORD, "Backchannel PKCS12 Password")

    @property
    def sealer_password(self) -> str:
        return self._get_password(SEALER_PASSWORD, "Cookie Encryption Key Password")

    @property
    def sealer_alias(self) -> str:
        return self._values.get(SEALER_ALIAS) or DEFAULT_SEALER_ALIAS

    @property
    def ldap_password(self) -> str | None:
        return self._values.get(LDAP_PASSWORD)

    def _get_int(self, name: str, default: int) -> int:
        value = self._values.get(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as e:
            raise ConfigError(f"Property {name} must be an integer, got {value!r}") from e

    @property
    def key_size(self) -> int:
        return self._get_int(KEY_SIZE, DEFAULT_KEY_SIZE)

    @property
    def sealer_key_size(self) -> int:
        return self._get_int(SEALER_KEY_SIZE, DEFAULT_SEALER_KEY_SIZE)

    @property
    def credentials_key_file_mode(self) -> str:
        return self._values.get(MODE_CREDENTIAL_KEYS) or DEFAULT_CREDENTIALS_MODE

    @property
    def credentials_group(self) -> str | None:
        return self._values.get(GROUP_CONF_CREDENTIALS)

    @property
    def set_group_and_mode(self) -> bool:
        value = self._values.get(PERFORM_SET_MODE)
        if value is None:
            return True
        return value.strip().lower() == "true"

    @property
    def modules_to_enable(self) -> frozenset[str]:
        """Modules to enable on a new install.

        ``idp.initial.modules`` replaces the default set, or adds to it when
        its value starts with ``+``.
        """
        prop = (self._values.get(INITIAL_INSTALL_MODULES) or "").strip()
        if not prop:
            return DEFAULT_MODULES
        additive = prop.startswith("+")
        if additive:
            prop = prop[1:]
        modules = {m.strip() for m in prop.split(",") if m.strip()}
        if additive:
            return DEFAULT_MODULES | modules
        return frozenset(modules)

    @property
    def idp_merge_properties(self) -> Path | None:
        return self._get_merge_file(IDP_PROPERTIES_MERGE)

    @property
    def ldap_merge_properties(self) -> Path | None:
        return self._get_merge_file(LDAP_PROPERTIES_MERGE)

    def tidy(self) -> None:
        """Delete the merge and property files that were consumed, unless no-tidy is set."""
        if self.no_tidy:
            return
        candidates = [self._property_file]
        for name in (IDP_PROPERTIES_MERGE, LDAP_PROPERTIES_MERGE):
            value = self._values.get(name)
            if value is not None:
                candidates.append(self._base_dir / value)
        for path in candidates:
            if path is not None and path.is_file():
                logger.debug("Tidying %s", path)
                path.unlink()
