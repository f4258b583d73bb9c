"""Runtime environments: flag defaults and configuration visitors per deployment."""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, Mapping

_LOG = logging.getLogger(__name__)

TESTING_ENV = "testing"
DEVELOPMENT_ENV = "development"
PRODUCTION_ENV = "production"

ENVIRONMENT_STRING_KEY = "OCM_ENV"
ENVIRONMENT_DEFAULT = DEVELOPMENT_ENV

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class FlagError(ValueError):
    """Raised for unknown flags, redefined flags and unparsable values."""


class UnknownEnvironmentError(ValueError):
    """Raised when no environment has the requested name."""


@dataclass
class _Flag:
    name: str
    default: object
    help: str
    value: object
    changed: bool = False


def _parse_value(flag: _Flag, raw) -> object:
    kind = type(flag.default)
    text = str(raw) if not isinstance(raw, str) else raw
    if kind is bool:
        if isinstance(raw, bool):
            return raw
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise FlagError(f'invalid argument "{text}" for "--{flag.name}" flag: invalid syntax')
    try:
        if kind is int:
            return int(text)
        if kind is float:
            return float(text)
    except ValueError as exc:
        raise FlagError(f'invalid argument "{text}" for "--{flag.name}" flag: {exc}') from exc
    return text


class FlagSet:
    """Named, typed command-line flags; the type of a flag is that of its default."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._flags: dict[str, _Flag] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._flags

    def __iter__(self):
        return iter(self._flags)

    def define(self, name, default, help=""):  # noqa: A002 - mirrors the flag's help text
        if name in self._flags:
            raise FlagError(f"{self.name or 'flag'} flag redefined: {name}")
        self._flags[name] = _Flag(name, default, help, default)

    def set(self, name, value) -> None:
        flag = self._lookup(name)
        flag.value = _parse_value(flag, value)
        flag.changed = True

    def get(self, name):
        return self._lookup(name).value

    def changed(self, name) -> bool:
        return self._lookup(name).changed

    def parse(self, args: Iterable[str]) -> list[str]:
        """Apply ``--name=value``, ``--name value`` and bare boolean flags; return the rest."""
        remaining: list[str] = []
        items = list(args)
        position = 0
        while position < len(items):
            arg = items[position]
            position += 1
            if arg == "--":
                remaining.extend(items[position:])
                break
            if not arg.startswith("-") or arg == "-":
                remaining.append(arg)
                continue
            name, sep, value = arg.lstrip("-").partition("=")
            flag = self._lookup(name)
            if not sep:
                if isinstance(flag.default, bool):
                    value = "true"
                elif position < len(items):
                    value = items[position]
                    position += 1
                else:
                    raise FlagError(f"flag needs an argument: --{name}")
            self.set(name, value)
        return remaining

    def _lookup(self, name: str) -> _Flag:
        try:
            return self._flags[name]
        except KeyError:
            raise FlagError(f"no such flag -{name}") from None


@dataclass
class LoggingConfig:
    verbosity: int = 0
    log_to_stderr: bool = False


@dataclass
class ServerConfig:
    hostname: str = ""
    bind_address: str = "localhost:8000"
    enable_https: bool = False
    enable_jwt: bool = True
    enable_authz: bool = True
    https_cert_file: str = ""
    https_key_file: str = ""


@dataclass
class MetricsConfig:
    bind_address: str = "localhost:8080"
    enable_https: bool = False


@dataclass
class HealthCheckConfig:
    bind_address: str = "localhost:8083"
    enable_https: bool = False


@dataclass
class DatabaseConfig:
    debug: bool = False


@dataclass
class OCMConfig:
    base_url: str = ""
    token_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    self_token: str = ""
    debug: bool = False
    enable_mock: bool = False


@dataclass
class SentryConfig:
    enabled: bool = False
    key: str = ""
    url: str = ""
    project: str = ""
    timeout: float = 5.0
    debug: bool = False

    @property
    def dsn(self) -> str:
        """The reporting address; empty when reporting is disabled."""
        if not self.enabled:
            return ""
        return f"https://{self.key}@{self.url}/{self.project}"


# flag name, config section, attribute, help
_FLAG_BINDINGS = (
    ("v", "logging", "verbosity", "Log level verbosity"),
    ("logtostderr", "logging", "log_to_stderr", "Log to standard error"),
    ("api-server-hostname", "server", "hostname", "Server's public hostname"),
    ("api-server-bindaddress", "server", "bind_address", "API server bind address"),
    ("enable-https", "server", "enable_https", "Enable HTTPS rather than HTTP"),
    ("enable-jwt", "server", "enable_jwt", "Enable JWT authentication validation"),
    ("enable-authz", "server", "enable_authz", "Enable authorization on endpoints"),
    ("https-cert-file", "server", "https_cert_file", "The path to the tls.crt file"),
    ("https-key-file", "server", "https_key_file", "The path to the tls.key file"),
    ("metrics-server-bindaddress", "metrics", "bind_address", "Metrics server bind address"),
    ("enable-metrics-https", "metrics", "enable_https", "Enable HTTPS for metrics server"),
    ("health-check-server-bindaddress", "health_check", "bind_address", "Health check server bind address"),
    ("enable-health-check-https", "health_check", "enable_https", "Enable HTTPS for health check server"),
    ("enable-db-debug", "database", "debug", "Log every database statement"),
    ("ocm-base-url", "ocm", "base_url", "The base URL of the OCM API"),
    ("ocm-token-url", "ocm", "token_url", "The token URL used for OCM authentication"),
    ("ocm-client-id", "ocm", "client_id", "The client ID used for OCM authentication"),
    ("ocm-client-secret", "ocm", "client_secret", "The client secret used for OCM authentication"),
    ("self-token", "ocm", "self_token", "The offline token used for OCM authentication"),
    ("ocm-debug", "ocm", "debug", "Debug flag for the OCM API"),
    ("enable-ocm-mock", "ocm", "enable_mock", "Use a mock OCM client"),
    ("enable-sentry", "sentry", "enabled", "Enable sentry error monitoring"),
    ("sentry-key", "sentry", "key", "Sentry project key"),
    ("sentry-url", "sentry", "url", "Base URL of the sentry service"),
    ("sentry-project", "sentry", "project", "Sentry project to report to"),
    ("sentry-timeout", "sentry", "timeout", "Seconds to wait for a sentry response"),
    ("enable-sentry-debug", "sentry", "debug", "Enable sentry debug mode"),
)


@dataclass
class ApplicationConfig:
    """All settings of the service, grouped by component."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    ocm: OCMConfig = field(default_factory=OCMConfig)
    sentry: SentryConfig = field(default_factory=SentryConfig)

    def add_flags(self, flags: FlagSet) -> None:
        """Define one flag per setting, defaulting to its current value."""
        for name, section, attr, help_text in _FLAG_BINDINGS:
            flags.define(name, getattr(getattr(self, section), attr), help_text)

    def load_flags(self, flags: FlagSet) -> None:
        """Copy the values of the defined flags into the settings."""
        for name, section, attr, _ in _FLAG_BINDINGS:
            if name in flags:
                setattr(getattr(self, section), attr, flags.get(name))


class EnvironmentImpl:
    """Flag defaults and configuration adjustments of one environment."""

    name = ""

    def flags(self) -> dict[str, str]:
        return {}

    def visit_config(self, config: ApplicationConfig) -> None:
        """Adjust the configuration after flags are applied."""


class DevelopmentEnvironment(EnvironmentImpl):
    """Local use while developing features."""

    name = DEVELOPMENT_ENV

    def flags(self) -> dict[str, str]:
        return {
            "v": "10",
            "enable-authz": "false",
            "ocm-debug": "false",
            "enable-ocm-mock": "true",
            "enable-https": "false",
            "enable-metrics-https": "false",
            "api-server-hostname": "localhost",
            "api-server-bindaddress": "localhost:8000",
            "enable-sentry": "false",
        }

    def visit_config(self, config: ApplicationConfig) -> None:
        config.server.enable_jwt = False
        config.server.enable_https = False


class TestingEnvironment(EnvironmentImpl):
    """Local integration tests."""

    __test__ = False
    name = TESTING_ENV

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def flags(self) -> dict[str, str]:
        return {
            "v": "0",
            "logtostderr": "true",
            "ocm-base-url": "https://api.integration.openshift.com",
            "enable-https": "false",
            "enable-metrics-https": "false",
            "enable-authz": "true",
            "ocm-debug": "false",
            "enable-ocm-mock": "true",
            "enable-sentry": "false",
        }

    def visit_config(self, config: ApplicationConfig) -> None:
        # A one-off switch for database debugging during tests.
        if self._environ.get("DB_DEBUG") == "true":
            config.database.debug = True


class ProductionEnvironment(EnvironmentImpl):
    """Any deployed instance of the service."""

    name = PRODUCTION_ENV

    def flags(self) -> dict[str, str]:
        return {
            "v": "1",
            "ocm-debug": "false",
            "enable-ocm-mock": "false",
            "enable-sentry": "true",
        }


def environment_name_from_env(environ=None) -> str:
    """The environment named by ``OCM_ENV``, or the default when unset or empty."""
    environ = environ if environ is not None else os.environ
    return environ.get(ENVIRONMENT_STRING_KEY) or ENVIRONMENT_DEFAULT


def set_config_defaults(flags, defaults) -> None:
    """Set each flag in ``defaults``; the first failure is logged and raised."""
    for name, value in defaults.items():
        try:
            flags.set(name, value)
        except FlagError as exc:
            _LOG.error("Error setting flag %s: %s", name, exc)
            raise


class Env:
    """A named environment holding the application configuration."""

    def __init__(self, name=None, config=None, environ=None) -> None:
        environ = environ if environ is not None else os.environ
        self.name = name if name is not None else environment_name_from_env(environ)
        self.config = config if config is not None else ApplicationConfig()
        self.environments: dict[str, EnvironmentImpl] = {
            DEVELOPMENT_ENV: DevelopmentEnvironment(),
            TESTING_ENV: TestingEnvironment(environ),
            PRODUCTION_ENV: ProductionEnvironment(),
        }
        self._flags: FlagSet | None = None

    @property
    def impl(self) -> EnvironmentImpl:
        try:
            return self.environments[self.name]
        except KeyError:
            raise UnknownEnvironmentError(f"Unknown runtime environment: {self.name}") from None

    def add_flags(self, flags) -> None:
        """Define the configuration flags and apply this environment's defaults."""
        impl = self.impl
        self.config.add_flags(flags)
        self._flags = flags
        set_config_defaults(flags, impl.flags())

    def initialize(self) -> None:
        """Apply parsed flags to the configuration, then the environment's visitor."""
        _LOG.info("Initializing %s environment", self.name)
        impl = self.impl
        if self._flags is not None:
            self.config.load_flags(self._flags)
        impl.visit_config(self.config)
        if self.config.sentry.enabled:
            _LOG.info(
                "Sentry error reporting enabled to %s on project %s",
                self.config.sentry.url,
                self.config.sentry.project,
            )
        else:
            _LOG.info("Disabling Sentry error reporting")


@functools.lru_cache(maxsize=None)
def environment() -> Env:
    """The process-wide environment, created on first use."""
    return Env()