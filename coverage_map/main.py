import logging
import os
import sys

import cherrypy
import yaml

from coverage_map.analytics.config import Config
from coverage_map.analytics.db import CoverageDB
from coverage_map.analytics.store import init_schema
from coverage_map.web.coverage_api import CoverageAPI

logger = logging.getLogger("CoverageDaemon")

DEFAULT_CONFIG_PATH = "/etc/coverage_map/config.yaml"

DEFAULT_CONFIG = {
    "http": {"host": "0.0.0.0", "port": 8000},
    "storage": {},
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


def load_config(config_path=None) -> dict:
    """
    Load the daemon YAML config, filling missing sections with defaults.

    A missing file is not an error; the defaults are used.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    loaded = {}

    if os.path.exists(path):
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {path} must contain a mapping at top level")

    config = {}
    for section, defaults in DEFAULT_CONFIG.items():
        config[section] = {**defaults, **(loaded.get(section) or {})}
    for key, value in loaded.items():
        config.setdefault(key, value)
    return config


class CoverageDaemon:

    def __init__(self, config: dict):

        self.config = config
        self.db = None
        self.api = None

        log_level = config.get("logging", {}).get("level", "INFO")
        logging.basicConfig(
            level=getattr(logging, log_level),
            format=config.get("logging", {}).get("format"),
        )

    def initialize(self):
        db_path = self.config.get("storage", {}).get("db_path") or Config.STORAGE.DB_PATH
        logger.info(f"Opening coverage database: {db_path}")

        self.db = CoverageDB(db_path)
        init_schema(self.db)

        self.api = CoverageAPI(
            self.db,
            local_hash=self.config.get("local_hash"),
        )

    def run(self):
        self.initialize()

        http_config = self.config.get("http", {})
        host = http_config.get("host", "0.0.0.0")
        port = int(http_config.get("port", 8000))

        cherrypy.config.update({
            "server.socket_host": host,
            "server.socket_port": port,
            "engine.autoreload.on": False,
            "log.screen": False,
        })
        cherrypy.tree.mount(self.api, "/", {"/": {}})

        logger.info(f"Coverage API listening on http://{host}:{port}")
        cherrypy.engine.start()
        try:
            cherrypy.engine.block()
        except KeyboardInterrupt:
            logger.info("Shutting down...")
            cherrypy.engine.exit()


def main():

    import argparse

    parser = argparse.ArgumentParser(description="Coverage Map Daemon")
    parser.add_argument(
        "--config",
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    config = load_config(args.config)

    if args.log_level:
        config["logging"]["level"] = args.log_level

    daemon = CoverageDaemon(config)

    try:
        daemon.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
