import pytest

from jmapbridge.domain.errors import ConfigurationError
from jmapbridge.infrastructure.config import settings
from jmapbridge.infrastructure.config.settings import (
    DEFAULT_BASE_URL,
    EngineSettings,
    get_api_token,
    get_base_url,
    get_config,
    get_engine_settings,
    load_configuration,
    set_config_for_testing,
)


@pytest.fixture
def yaml_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "api_token: from-yaml\n"
        "retry:\n"
        "  max_attempts: 7\n"
        "  base_delay_s: 0.25\n"
        "dispatch:\n"
        "  max_concurrency: 3\n"
        "logging:\n"
        "  level: DEBUG\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def empty_env(tmp_path):
    path = tmp_path / ".env"
    path.write_text("", encoding="utf-8")
    return path


def test_defaults_when_nothing_is_configured(tmp_path, empty_env):
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=empty_env)
    assert get_engine_settings() == EngineSettings()
    assert get_base_url() == DEFAULT_BASE_URL
    assert get_config("logging.level", "WARNING") == "WARNING"


def test_yaml_values_are_read_by_dotted_key(yaml_file, empty_env):
    load_configuration(config_file=yaml_file, env_file=empty_env)
    engine = get_engine_settings()
    assert engine.max_attempts == 7
    assert engine.base_delay_s == 0.25
    assert engine.max_concurrency == 3
    assert get_config("logging.level") == "DEBUG"
    assert get_api_token() == "from-yaml"


def test_environment_overrides_yaml(yaml_file, empty_env, monkeypatch):
    monkeypatch.setenv("JMAPBRIDGE_RETRY_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("JMAPBRIDGE_RETRY_MAX_DELAY_S", "4.5")
    load_configuration(config_file=yaml_file, env_file=empty_env)
    engine = get_engine_settings()
    assert engine.max_attempts == 2
    assert engine.max_delay_s == 4.5


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("JMAPBRIDGE_BASE_URL=https://mail.example.org/jmap/\n", encoding="utf-8")
    # load_dotenv writes into os.environ; register the key so monkeypatch restores it
    monkeypatch.setenv("JMAPBRIDGE_BASE_URL", "placeholder")
    monkeypatch.delenv("JMAPBRIDGE_BASE_URL")
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=env_file)
    assert get_base_url() == "https://mail.example.org/jmap"


def test_test_config_wins_over_everything(yaml_file, empty_env, monkeypatch):
    monkeypatch.setenv("JMAPBRIDGE_API_TOKEN", "from-env")
    load_configuration(config_file=yaml_file, env_file=empty_env)
    set_config_for_testing({"api_token": "from-test"})
    assert get_api_token() == "from-test"


def test_fastmail_token_variable_is_a_fallback(tmp_path, empty_env, monkeypatch):
    monkeypatch.setenv("FASTMAIL_API_TOKEN", "fm-token")
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=empty_env)
    assert get_api_token() == "fm-token"


def test_missing_token_raises_configuration_error(tmp_path, empty_env):
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=empty_env)
    with pytest.raises(ConfigurationError, match="API token"):
        get_api_token()


@pytest.mark.parametrize("overrides", [
    {"dispatch.max_concurrency": 0},
    {"retry.max_attempts": 0},
    {"retry.base_delay_s": -1},
    {"retry.base_delay_s": 10, "retry.max_delay_s": 1},
    {"retry.jitter_ratio": 1.0},
    {"retry.jitter_ratio": -0.1},
])
def test_invalid_engine_settings_are_rejected(overrides):
    set_config_for_testing(overrides)
    with pytest.raises(ConfigurationError):
        get_engine_settings()


def test_invalid_yaml_is_logged_not_raised(tmp_path, empty_env, caplog):
    broken = tmp_path / "config.yaml"
    broken.write_text("retry: [unclosed\n", encoding="utf-8")
    load_configuration(config_file=broken, env_file=empty_env)
    assert "Failed to load or parse YAML" in caplog.text
    assert get_engine_settings() == EngineSettings()


def test_load_is_idempotent_until_reset(yaml_file, tmp_path, empty_env):
    load_configuration(config_file=yaml_file, env_file=empty_env)
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=empty_env)
    assert get_config("retry.max_attempts") == 7

    settings.reset_configuration()
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=empty_env)
    assert get_config("retry.max_attempts") is None
