"""CLI entry point for hitball."""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from . import __version__
from .config import HitballConfig, load_config
from .main import HitballApp

CONFIG_ENV = "HITBALL_CONFIG"
CONFIG_SEARCH_PATHS = (
    "/etc/hitball/config.yaml",
    "./config.yaml",
)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # aiohttp logs every long poll at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="hitball", description="Hitball: group chat hit counter bot")
    parser.add_argument("--config", type=str, help=f"Path to config.yaml (default: ${CONFIG_ENV} or search path)")
    parser.add_argument("--data", type=str, help="Override storage.path from the config")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit without starting")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def find_config(explicit: str | None) -> str | None:
    """Config path from the command line, then the environment, then the search path."""
    if explicit:
        return explicit
    from_env = os.environ.get(CONFIG_ENV)
    if from_env:
        return from_env
    for candidate in CONFIG_SEARCH_PATHS:
        if Path(candidate).exists():
            return candidate
    return None


def config_problems(config: HitballConfig) -> list[str]:
    """Settings that parse fine but would stop the bot from doing anything useful."""
    problems = []
    if not config.telegram.token.strip():
        problems.append("telegram.token is empty (is HITBALL_TOKEN set?)")
    if not config.storage.path.strip():
        problems.append("storage.path is empty")
    elif not Path(config.storage.path).expanduser().resolve().parent.is_dir():
        problems.append(f"storage.path directory does not exist: {config.storage.path}")
    return problems


def validate(config_path: str, data_path: str | None, logger: logging.Logger) -> bool:
    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        return False
    if data_path:
        config.storage.path = data_path

    problems = config_problems(config)
    for problem in problems:
        logger.error("Config problem: %s", problem)
    if problems:
        return False

    logger.info(
        "Config is valid: data=%s, group commands=%s, metrics=%s",
        config.storage.path,
        ",".join(config.commands.group_allowed),
        f"{config.metrics.host}:{config.metrics.port}" if config.metrics.enabled else "off",
    )
    return True


async def main_async(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("hitball")

    config_path = find_config(args.config)
    if not config_path:
        logger.error("No config file found. Use --config, set %s, or place config.yaml in CWD.", CONFIG_ENV)
        sys.exit(1)

    if args.validate_config:
        if not validate(config_path, args.data, logger):
            sys.exit(1)
        return

    app = HitballApp(config_path, data_path=args.data)

    # Signal handling (Unix only; Windows uses KeyboardInterrupt)
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
