import os

import pytest

from trexsvc.environments import (
    ApplicationConfig,
    DevelopmentEnvironment,
    Env,
    EnvironmentImpl,
    FlagError,
    FlagSet,
    ProductionEnvironment,
    TestingEnvironment,
    UnknownEnvironmentError,
    environment,
    environment_name_from_env,
    set_config_defaults,
)


def _initialized(name, environ=None):
    env = Env(name=name, environ=environ or {})
    flags = FlagSet("test")
    env.add_flags(flags)
    env.initialize()
    return env, flags


def test_testing_environment_initializes_with_its_defaults():
    env, flags = _initialized("testing")
    assert env.config.ocm.base_url == "https://api.integration.openshift.com"
    assert env.config.server.enable_authz is True
    assert env.config.ocm.enable_mock is True
    assert env.config.logging.log_to_stderr is True
    assert env.config.sentry.enabled is False
    assert flags.get("v") == 0


def test_testing_environment_db_debug_switch():
    env, _ = _initialized("testing", {"DB_DEBUG": "true"})
    assert env.config.database.debug is True
    env, _ = _initialized("testing", {"DB_DEBUG": "yes"})
    assert env.config.database.debug is False


def test_development_environment_disables_jwt_and_https():
    env, flags = _initialized("development")
    assert env.config.server.enable_jwt is False
    assert env.config.server.enable_https is False
    assert env.config.server.enable_authz is False
    assert env.config.server.hostname == "localhost"
    assert env.config.server.bind_address == "localhost:8000"
    assert flags.get("v") == 10


def test_production_environment_flags():
    env, _ = _initialized("production")
    assert env.config.logging.verbosity == 1
    assert env.config.sentry.enabled is True
    assert env.config.ocm.enable_mock is False


def test_command_line_overrides_environment_defaults():
    env = Env(name="development", environ={})
    flags = FlagSet()
    env.add_flags(flags)
    rest = flags.parse(["--api-server-bindaddress", "0.0.0.0:9000", "--v=3", "extra"])
    env.initialize()
    assert rest == ["extra"]
    assert env.config.server.bind_address == "0.0.0.0:9000"
    assert env.config.logging.verbosity == 3


def test_unknown_environment_raises():
    env = Env(name="staging", environ={})
    with pytest.raises(UnknownEnvironmentError):
        env.add_flags(FlagSet())
    with pytest.raises(UnknownEnvironmentError):
        env.initialize()


@pytest.mark.parametrize(
    "environ, expected",
    [
        ({}, "development"),
        ({"OCM_ENV": ""}, "development"),
        ({"OCM_ENV": "production"}, "production"),
        ({"OCM_ENV": "testing"}, "testing"),
    ],
)
def test_environment_name_from_env(environ, expected):
    assert environment_name_from_env(environ) == expected


def test_env_takes_name_from_environ():
    assert Env(environ={"OCM_ENV": "production"}).name == "production"


def test_set_config_defaults_unknown_flag_raises():
    flags = FlagSet()
    flags.define("known", "a", "")
    with pytest.raises(FlagError):
        set_config_defaults(flags, {"unknown": "x"})


def test_set_config_defaults_sets_values():
    flags = FlagSet()
    flags.define("count", 1, "")
    flags.define("on", False, "")
    set_config_defaults(flags, {"count": "7", "on": "true"})
    assert flags.get("count") == 7
    assert flags.get("on") is True
    assert flags.changed("count") is True


@pytest.mark.parametrize("text, expected", [("1", True), ("T", True), ("False", False), ("0", False)])
def test_flagset_bool_values(text, expected):
    flags = FlagSet()
    flags.define("b", False, "")
    flags.set("b", text)
    assert flags.get("b") is expected


def test_flagset_rejects_bad_values_and_redefinition():
    flags = FlagSet()
    flags.define("n", 0, "")
    flags.define("b", True, "")
    with pytest.raises(FlagError):
        flags.set("n", "ten")
    with pytest.raises(FlagError):
        flags.set("b", "yes")
    with pytest.raises(FlagError):
        flags.define("n", 1, "")
    with pytest.raises(FlagError):
        flags.get("missing")


def test_flagset_parse_bare_bool_and_missing_argument():
    flags = FlagSet()
    flags.define("debug", False, "")
    flags.define("name", "", "")
    assert flags.parse(["--debug", "--", "--name"]) == ["--name"]
    assert flags.get("debug") is True
    with pytest.raises(FlagError):
        flags.parse(["--name"])


def test_environment_flag_names_all_defined_by_config():
    flags = FlagSet()
    ApplicationConfig().add_flags(flags)
    for impl in (DevelopmentEnvironment(), TestingEnvironment({}), ProductionEnvironment()):
        assert set(impl.flags()) <= set(flags)


def test_base_environment_has_no_defaults_and_keeps_config():
    config = ApplicationConfig()
    EnvironmentImpl().visit_config(config)
    assert EnvironmentImpl().flags() == {}
    assert config == ApplicationConfig()


def test_sentry_dsn():
    config = ApplicationConfig()
    config.sentry.key = "placeholder"
    config.sentry.url = "sentry.example.com"
    config.sentry.project = "42"
    assert config.sentry.dsn == ""
    config.sentry.enabled = True
    assert config.sentry.dsn == "https://placeholder@sentry.example.com/42"


def test_environment_is_a_singleton():
    first = environment()
    second = environment()
    assert second is first
    assert second.config is first.config
    assert first.name == environment_name_from_env(os.environ)