import tomllib
from pathlib import Path

import storefront.domain

CONFIG = Path(storefront.domain.__file__).with_name("domain.toml")


def _config():
    with CONFIG.open("rb") as handle:
        return tomllib.load(handle)


def test_defaults_run_in_memory():
    config = _config()
    assert config["databases"]["default"]["provider"] == "memory"
    assert config["command_processing"] == "sync"


def test_production_database_comes_from_the_environment():
    database = _config()["production"]["databases"]["default"]
    assert database["provider"] == "postgresql"
    assert database["database_uri"] == "${DATABASE_URL}"
