"""Configuration loading, rule files, and project initialization.

Reads TOML files using stdlib ``tomllib`` and writes them using
``tomli_w``.  Depends only on ``models.py``, ``errors.py`` and the parser
registry (to validate the configured parser name).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from spend_import.errors import ConfigError, RuleError
from spend_import.models import AppConfig, Category, TransactionRule
from spend_import.parsers import PARSERS

CONFIG_FILE = "spend.toml"

# Overrides ``[database] url`` when set.
DATABASE_URL_ENV = "SPEND_DATABASE_URL"

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# Spend Import configuration

[general]
user = "local"                  # Owner of rules, items and logs in the store

[database]
url = "sqlite:///spend.db"      # Any SQLAlchemy URL; SPEND_DATABASE_URL overrides

[import]
parser = "generic"              # "generic" (header-aware) or "fixed_columns"
max_file_size_mb = 10
"""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``spend.toml`` from *root* and return an :class:`AppConfig`.

    Args:
        root: Project root directory containing ``spend.toml``.

    Returns:
        A fully-populated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``spend.toml`` does not exist.
        ConfigError: If a value is invalid.
    """
    try:
        data = _read_toml(Path(root) / CONFIG_FILE)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{CONFIG_FILE}: {exc}") from exc

    general = data.get("general", {})
    database = data.get("database", {})
    import_section = data.get("import", {})

    config = AppConfig(
        user=str(general.get("user", "local")),
        database_url=os.environ.get(DATABASE_URL_ENV) or database.get("url", "sqlite:///spend.db"),
        parser=import_section.get("parser", "generic"),
        max_file_size_mb=import_section.get("max_file_size_mb", 10),
    )

    if not config.user.strip():
        raise ConfigError("general.user must not be empty")
    if config.parser not in PARSERS:
        raise ConfigError(
            f"Unknown parser {config.parser!r}. Expected one of: {', '.join(sorted(PARSERS))}"
        )
    if not isinstance(config.max_file_size_mb, int) or config.max_file_size_mb <= 0:
        raise ConfigError("import.max_file_size_mb must be a positive integer")
    return config


def load_rules_file(path: Path) -> list[TransactionRule]:
    """Read rules from a TOML file with a ``[rules]`` table.

    Each entry maps a keyword to a category id, e.g. ``KROGER = "grocery"``.
    Keywords are upper-cased.

    Raises:
        FileNotFoundError: If *path* does not exist.
        RuleError: If an entry names an unknown category or is blank.
    """
    data = _read_toml(Path(path))
    rules: list[TransactionRule] = []
    for keyword, value in data.get("rules", {}).items():
        keyword = keyword.strip().upper()
        if not keyword:
            raise RuleError(f"{path}: empty rule keyword")
        try:
            category = Category.parse(str(value))
        except ValueError as exc:
            raise RuleError(f"{path}: {keyword}: {exc}") from None
        rules.append(TransactionRule(keyword=keyword, category=category))
    return rules


def save_rules_file(path: Path, rules: list[TransactionRule]) -> None:
    """Write *rules* to *path* as a ``[rules]`` table, sorted by keyword."""
    header = "# Keyword rules: a merchant containing KEYWORD is filed under the category.\n\n"
    table = {rule.keyword: rule.category.value for rule in sorted(rules, key=lambda r: r.keyword)}
    Path(path).write_text(header + tomli_w.dumps({"rules": table}), encoding="utf-8")


def initialize(target_dir: Path) -> Path:
    """Write a default ``spend.toml`` into *target_dir*.

    Idempotent: an existing config file is **not** overwritten.

    Returns:
        Path of the config file.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    config_path = target_dir / CONFIG_FILE
    _write_if_missing(config_path, _DEFAULT_CONFIG_TOML)
    return config_path


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")
