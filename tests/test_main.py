import yaml

from coverage_map.main import DEFAULT_CONFIG, CoverageDaemon, load_config


def test_load_config_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config["http"] == DEFAULT_CONFIG["http"]
    assert config["logging"]["level"] == "INFO"


def test_load_config_merges_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "http": {"port": 9090},
        "storage": {"db_path": str(tmp_path / "coverage.db")},
        "local_hash": "0x19",
    }))

    config = load_config(str(path))
    assert config["http"] == {"host": "0.0.0.0", "port": 9090}
    assert config["storage"]["db_path"] == str(tmp_path / "coverage.db")
    assert config["local_hash"] == "0x19"
    assert "format" in config["logging"]


def test_daemon_initialize_creates_schema(tmp_path):
    db_path = tmp_path / "data" / "coverage.db"
    daemon = CoverageDaemon({
        "storage": {"db_path": str(db_path)},
        "logging": {"level": "DEBUG"},
        "local_hash": "0x19",
    })
    daemon.initialize()

    assert db_path.exists()
    assert daemon.db.table_exists("samples")
    assert daemon.api.local_hash == "0x19"
