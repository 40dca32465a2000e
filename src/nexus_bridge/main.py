from __future__ import annotations

import argparse
from pathlib import Path

import dotenv
import uvicorn
import uvloop

from nexus_bridge.const import NEXUS_VERSION
from nexus_bridge.correlation import correlation_context
from nexus_bridge.logging_abstraction import configure_library_loggers, configure_loggers, get_logger
from nexus_bridge.server import create_app
from nexus_bridge.structs import NexusEnv
from nexus_bridge.utils import check_python_version

logger = get_logger(__name__)

STARTUP_FAILURE = 3


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Nexus dashboard device bridge")
    parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("--host", help="HTTP bind host (overrides NEXUS_SRV_HOST)", default=None)
    _ = parser.add_argument("--port", help="HTTP bind port (overrides NEXUS_SRV_PORT)", default=None, type=int)
    return parser.parse_args(argv)


def load_env_file(env_file: Path) -> bool:
    """Load a dotenv file into ``os.environ``. Returns True if anything was loaded."""
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    loaded_any = dotenv.load_dotenv(env_path, override=True)
    if loaded_any:
        logger.info("Environment variables loaded", extra={"source": str(env_path)})
    else:
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return loaded_any


async def serve(env: NexusEnv) -> None:
    app = create_app(env=env)
    server = uvicorn.Server(
        config=uvicorn.Config(
            app,
            host=env.srv_host,
            port=env.srv_port,
            log_config={
                "version": 1,
                "disable_existing_loggers": False,
            },
            log_level="info",
        )
    )
    logger.info("Starting HTTP server on %s:%s", env.srv_host, env.srv_port)
    await server.serve()
    if not server.started:
        # lifespan startup failed, most likely the broker was unreachable
        logger.critical("Startup failed, exiting")
        raise SystemExit(STARTUP_FAILURE)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Nexus bridge."""
    with correlation_context():
        logger.info("Starting Nexus bridge", extra={"version": NEXUS_VERSION})
        args = parse_cli(argv)

        check_python_version()
        if args.env is not None:
            _ = load_env_file(args.env)

        # NEXUS_* values from the env file are only visible from here on
        env = NexusEnv.from_environ()
        debug = args.debug or env.debug
        configure_loggers(
            debug=debug,
            log_format=env.log_format,
            json_file=env.log_json_file,
            human_output=env.log_human_output,
        )
        configure_library_loggers(debug)
        if debug:
            logger.info("Debug logging enabled")
        if args.host:
            env.srv_host = args.host
        if args.port:
            env.srv_port = args.port

        try:
            uvloop.run(serve(env))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        else:
            logger.info("Nexus bridge stopped gracefully")
