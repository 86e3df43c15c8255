"""Tests for spend_import.config -- loading, rule files, and initialization."""

from pathlib import Path

import pytest

from spend_import.config import (
    CONFIG_FILE,
    DATABASE_URL_ENV,
    initialize,
    load_config,
    load_rules_file,
    save_rules_file,
)
from spend_import.errors import ConfigError, RuleError
from spend_import.models import AppConfig, Category, TransactionRule


@pytest.fixture(autouse=True)
def _no_database_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for loading spend.toml into an AppConfig."""

    def test_loads_default_config(self, tmp_path: Path):
        """Default spend.toml produced by initialize() is loadable."""
        initialize(tmp_path)
        config = load_config(tmp_path)

        assert isinstance(config, AppConfig)
        assert config.user == "local"
        assert config.database_url == "sqlite:///spend.db"
        assert config.parser == "generic"
        assert config.max_file_size_mb == 10

    def test_custom_config(self, tmp_path: Path):
        """A hand-crafted spend.toml loads with the correct values."""
        (tmp_path / CONFIG_FILE).write_text(
            """\
[general]
user = "alice"

[database]
url = "postgresql://localhost/spend"

[import]
parser = "fixed_columns"
max_file_size_mb = 2
"""
        )
        config = load_config(tmp_path)

        assert config.user == "alice"
        assert config.database_url == "postgresql://localhost/spend"
        assert config.parser == "fixed_columns"
        assert config.max_file_size == 2 * 1024 * 1024

    def test_missing_sections_use_defaults(self, tmp_path: Path):
        (tmp_path / CONFIG_FILE).write_text("")
        assert load_config(tmp_path) == AppConfig()

    def test_env_overrides_database_url(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        initialize(tmp_path)
        monkeypatch.setenv(DATABASE_URL_ENV, "sqlite:///other.db")
        assert load_config(tmp_path).database_url == "sqlite:///other.db"

    def test_missing_config_raises(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path: Path):
        (tmp_path / CONFIG_FILE).write_text("[general\nuser = ")
        with pytest.raises(ConfigError, match=CONFIG_FILE):
            load_config(tmp_path)

    def test_unknown_parser(self, tmp_path: Path):
        (tmp_path / CONFIG_FILE).write_text('[import]\nparser = "chase"\n')
        with pytest.raises(ConfigError, match="Unknown parser"):
            load_config(tmp_path)

    def test_blank_user(self, tmp_path: Path):
        (tmp_path / CONFIG_FILE).write_text('[general]\nuser = "  "\n')
        with pytest.raises(ConfigError, match="user"):
            load_config(tmp_path)

    @pytest.mark.parametrize("value", ["0", "-1", '"ten"'])
    def test_bad_file_size(self, tmp_path: Path, value: str):
        (tmp_path / CONFIG_FILE).write_text(f"[import]\nmax_file_size_mb = {value}\n")
        with pytest.raises(ConfigError, match="max_file_size_mb"):
            load_config(tmp_path)


# ---------------------------------------------------------------------------
# Rule files
# ---------------------------------------------------------------------------


class TestRulesFile:
    def test_load(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text('[rules]\nkroger = "grocery"\n"AMAZON PHARMACY" = "misc-health"\n')

        rules = load_rules_file(path)

        assert [(r.keyword, r.category) for r in rules] == [
            ("KROGER", Category.GROCERY),
            ("AMAZON PHARMACY", Category.MISC_HEALTH),
        ]

    def test_unknown_category(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text('[rules]\nKROGER = "food"\n')
        with pytest.raises(RuleError, match="KROGER"):
            load_rules_file(path)

    def test_blank_keyword(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text('[rules]\n" " = "grocery"\n')
        with pytest.raises(RuleError, match="empty"):
            load_rules_file(path)

    def test_no_rules_table(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text("")
        assert load_rules_file(path) == []

    def test_save_then_load(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        rules = [
            TransactionRule("SHELL", Category.AUTO),
            TransactionRule("AMAZON PHARMACY", Category.MISC_HEALTH),
        ]
        save_rules_file(path, rules)

        text = path.read_text()
        assert text.startswith("# Keyword rules")
        assert text.index("AMAZON PHARMACY") < text.index("SHELL")
        loaded = load_rules_file(path)
        assert [(r.keyword, r.category) for r in loaded] == [
            ("AMAZON PHARMACY", Category.MISC_HEALTH),
            ("SHELL", Category.AUTO),
        ]


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


class TestInitialize:
    def test_creates_config_file(self, tmp_path: Path):
        path = initialize(tmp_path)
        assert path == tmp_path / CONFIG_FILE
        assert path.exists()

    def test_idempotent_does_not_overwrite(self, tmp_path: Path):
        (tmp_path / CONFIG_FILE).write_text('[general]\nuser = "kept"\n')
        initialize(tmp_path)
        assert load_config(tmp_path).user == "kept"

    def test_creates_missing_parent_directories(self, tmp_path: Path):
        target = tmp_path / "a" / "b"
        initialize(target)
        assert (target / CONFIG_FILE).exists()
