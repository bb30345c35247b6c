from __future__ import annotations

import pytest

from deploypipe.exception import ConfigurationError
from deploypipe.core.services.environment import ABSENT, DEFAULTS, KNOWN_KEYS, resolve


def test_secrets_override_derived_and_defaults() -> None:
    config = resolve(
        {"graph_variant": "staging", "deploy_branches": "main", "branch": "default-branch"},
        {"branch": "secret-branch", "graph_id": "my-graph"},
        {"branch": "feature/x"},
    )

    assert config["branch"] == "secret-branch"
    assert config["graph_id"] == "my-graph"
    assert config["graph_variant"] == "staging"


def test_derived_overrides_defaults() -> None:
    config = resolve(
        {"deploy_branches": "main", "commit": "0000000"},
        {},
        {"commit": "abc1234", "branch": "develop"},
    )

    assert config["commit"] == "abc1234"
    assert config["branch"] == "develop"


def test_missing_secret_resolves_to_absent_marker() -> None:
    config = resolve(DEFAULTS, {"render_api_key": None, "apollo_key": "   "}, {})

    assert config["render_api_key"] is ABSENT
    assert config["apollo_key"] is ABSENT
    assert config.has("render_api_key") is False
    assert config.get("render_api_key", "fallback") == "fallback"


def test_every_known_key_is_present() -> None:
    config = resolve(DEFAULTS, {}, {})

    for key in KNOWN_KEYS:
        assert key in config


def test_resolve_is_idempotent() -> None:
    secrets = {"render_api_key": "rnd_key", "graph_id": "graph-1"}
    derived = {"branch": "main", "commit": "abc", "run_id": "20260101-000000-deadbeef"}

    first = resolve(DEFAULTS, secrets, derived)
    second = resolve(DEFAULTS, dict(secrets), dict(derived))

    assert first == second
    assert dict(first) == dict(second)


def test_deploy_branches_normalised_to_exact_names() -> None:
    config = resolve({**DEFAULTS, "deploy_branches": " main, release ,,"}, {}, {})

    assert config.deploy_branches == frozenset({"main", "release"})


def test_default_allow_list() -> None:
    config = resolve(None, {}, {})

    assert config.deploy_branches == frozenset({"main", "master", "production"})


def test_malformed_graph_id_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        resolve(DEFAULTS, {"graph_id": "my graph!"}, {})

    assert exc_info.value.key == "graph_id"


def test_non_positive_timeout_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        resolve({**DEFAULTS, "build_timeout": "0"}, {}, {})


def test_timeouts_and_flags_are_coerced() -> None:
    config = resolve(
        {**DEFAULTS, "build_timeout": "90", "render_clear_cache": "true"},
        {},
        {},
    )

    assert config["build_timeout"] == 90.0
    assert config["render_clear_cache"] is True


def test_configuration_is_read_only() -> None:
    config = resolve(DEFAULTS, {}, {})

    with pytest.raises(TypeError):
        config.values["branch"] = "main"  # type: ignore[index]


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("build_timeout", 0),
        ("health_check_timeout", "-5"),
        ("build_timeout", "soon"),
        ("schema_check_fatal", "maybe"),
        ("graph_variant", "with space"),
    ],
)
def test_invalid_value_reports_its_key(key, value) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        resolve({**DEFAULTS, key: value}, {}, {})

    assert exc_info.value.key == key


def test_empty_allow_list_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        resolve({**DEFAULTS, "deploy_branches": " , ,"}, {}, {})

    assert exc_info.value.key == "deploy_branches"


def test_flag_spellings_follow_pydantic_bool() -> None:
    config = resolve({**DEFAULTS, "schema_check_fatal": "yes", "render_clear_cache": "off"}, {}, {})

    assert config["schema_check_fatal"] is True
    assert config["render_clear_cache"] is False


def test_unchecked_keys_pass_through() -> None:
    config = resolve(DEFAULTS, {}, {"build_number": "17", "branch": "main"})

    assert config["build_number"] == "17"
    assert config["graph_id"] is ABSENT
