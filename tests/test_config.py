"""
Tests for TOML + environment configuration loading.
"""

import pytest

from stakeflow_core.config import StakeFlowConfig, load_config

SAMPLE_TOML = """
[engine]
owner = "sfAdmin"
mode = "per_deposit"
merge-policy = "compound"
force_unstake_allowed = true

[engine.schedule_overrides]
max_days = 180

[bonus]
baseline = 1000000
thresholds = [
    { min_tokens = 1000, multiplier = 1050000 },
]

[token]
symbol = "CSM"
reward_reserve = 5000

[token.genesis]
sfAlice = 1000

[api]
port = 9090
cors_origins = ["http://localhost:3000"]

[storage]
enabled = true
path = "state/test.db"

[logging]
level = "DEBUG"
format = "json"
"""

ENV_VARS = (
    "STAKEFLOW_OWNER", "STAKEFLOW_MODE", "STAKEFLOW_SCHEDULE",
    "STAKEFLOW_MERGE_POLICY", "STAKEFLOW_FORCE_UNSTAKE", "STAKEFLOW_HOST",
    "STAKEFLOW_API_PORT", "STAKEFLOW_API_KEY", "STAKEFLOW_CORS_ORIGINS",
    "STAKEFLOW_DB_PATH", "STAKEFLOW_LOG_LEVEL", "STAKEFLOW_LOG_FMT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def toml_path(tmp_path):
    path = tmp_path / "stakeflow.toml"
    path.write_text(SAMPLE_TOML)
    return str(path)


class TestDefaults:
    def test_no_file(self):
        cfg = load_config()
        assert isinstance(cfg, StakeFlowConfig)
        assert cfg.engine.mode == "aggregate"
        assert cfg.engine.merge_policy == "settle"
        assert cfg.engine.force_unstake_allowed is False
        assert cfg.api.port == 8080
        assert cfg.storage.enabled is False

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "absent.toml"))
        assert cfg.engine.owner == ""


class TestTomlFile:
    def test_sections_loaded(self, toml_path):
        cfg = load_config(toml_path)
        assert cfg.engine.owner == "sfAdmin"
        assert cfg.engine.mode == "per_deposit"
        assert cfg.engine.merge_policy == "compound"
        assert cfg.engine.force_unstake_allowed is True
        assert cfg.engine.schedule_overrides == {"max_days": 180}
        assert cfg.bonus.thresholds == [{"min_tokens": 1000, "multiplier": 1050000}]
        assert cfg.token.symbol == "CSM"
        assert cfg.token.genesis == {"sfAlice": 1000}
        assert cfg.token.reward_reserve == 5000
        assert cfg.api.port == 9090
        assert cfg.api.cors_origins == ["http://localhost:3000"]
        assert cfg.storage.path == "state/test.db"
        assert cfg.logging.format == "json"

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "extra.toml"
        path.write_text('[api]\nport = 1234\nflavour = "mint"\n')
        cfg = load_config(str(path))
        assert cfg.api.port == 1234
        assert not hasattr(cfg.api, "flavour")


class TestEnvOverrides:
    def test_env_beats_file(self, toml_path, monkeypatch):
        monkeypatch.setenv("STAKEFLOW_OWNER", "sfOther")
        monkeypatch.setenv("STAKEFLOW_API_PORT", "7000")
        monkeypatch.setenv("STAKEFLOW_LOG_LEVEL", "warning")
        cfg = load_config(toml_path)
        assert cfg.engine.owner == "sfOther"
        assert cfg.api.port == 7000
        assert cfg.logging.level == "WARNING"

    @pytest.mark.parametrize("raw,expected", [
        ("1", True), ("true", True), ("YES", True), ("0", False), ("off", False),
    ])
    def test_force_unstake_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("STAKEFLOW_FORCE_UNSTAKE", raw)
        assert load_config().engine.force_unstake_allowed is expected

    def test_cors_list(self, monkeypatch):
        monkeypatch.setenv("STAKEFLOW_CORS_ORIGINS", "http://a.test, http://b.test,")
        assert load_config().api.cors_origins == ["http://a.test", "http://b.test"]

    def test_db_path_enables_storage(self, monkeypatch):
        monkeypatch.setenv("STAKEFLOW_DB_PATH", "/tmp/x.db")
        cfg = load_config()
        assert cfg.storage.enabled is True
        assert cfg.storage.path == "/tmp/x.db"

    def test_mode_and_schedule(self, monkeypatch):
        monkeypatch.setenv("STAKEFLOW_MODE", "per_deposit")
        monkeypatch.setenv("STAKEFLOW_SCHEDULE", "tiered")
        monkeypatch.setenv("STAKEFLOW_MERGE_POLICY", "discard")
        cfg = load_config()
        assert (cfg.engine.mode, cfg.engine.schedule, cfg.engine.merge_policy) == \
            ("per_deposit", "tiered", "discard")
