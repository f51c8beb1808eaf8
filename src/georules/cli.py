#!/usr/bin/env python3
"""Run the subscription rewriting proxy.

Usage:
    python -m georules --upstream-url https://panel:2096/json --secret-url s3cr3t
    python -m georules --config georules.yaml

Every option can also come from the environment (UPSTREAM_URL, SECRET_URL,
RULES_DIR, ...) or a YAML config file; command-line flags win.

Exit codes:
    0 - Clean shutdown
    1 - Proxy failed
    2 - Invalid configuration
"""

import argparse
import asyncio
import signal
import sys
from urllib.parse import urlsplit

from mitmproxy.options import Options
from mitmproxy.tools.dump import DumpMaster

from . import logging as georules_logging
from .config import ConfigError, ServerConfig, build_config, load_transform
from .geoip import CountryCache, GeoIPResolver
from .handlers import SubscriptionAddon
from .panel import NullTagSource, PanelClient
from .presets import RuleComposer, load_presets

# Graceful shutdown timeout (seconds)
SHUTDOWN_TIMEOUT = 3.0


def build_addon(config: ServerConfig) -> SubscriptionAddon:
    """Load presets and wire the addon's collaborators."""
    logger = georules_logging.logger
    index = load_presets(config.rules_dir, config.overrides_dir)
    if index.failures:
        logger.warning(f"{len(index.failures)} preset file(s) failed to load")

    composer = RuleComposer(
        index,
        public_url=config.public_url,
        direct_same_country=config.direct_same_country,
        transform=load_transform(config.transform),
    )
    tag_source = PanelClient(config.panel) if config.panel else NullTagSource()
    return SubscriptionAddon(
        composer,
        secret_url=config.secret_url,
        upstream_url=config.upstream_url,
        geoip=GeoIPResolver(config.geoip_db),
        country_cache=CountryCache(),
        tag_source=tag_source,
    )


def reverse_mode(upstream_url: str) -> str:
    """mitmproxy reverse mode for the upstream's origin."""
    parts = urlsplit(upstream_url)
    if not parts.scheme or not parts.netloc:
        raise ConfigError(f"upstream_url must be an absolute URL: {upstream_url}")
    return f"reverse:{parts.scheme}://{parts.netloc}"


async def run_proxy(config: ServerConfig, addon: SubscriptionAddon) -> None:
    """Run mitmproxy with our addon until a stop signal arrives."""
    logger = georules_logging.logger
    opts = Options(
        mode=[reverse_mode(config.upstream_url)],
        listen_host=config.listen_host,
        listen_port=config.listen_port,
    )
    master = DumpMaster(opts, with_termlog=False, with_dumper=False)
    master.addons.add(addon)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler(signum):
        logger.info(f"Received signal {signal.Signals(signum).name} ({signum})")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    logger.info(f"Listening on {config.listen_host}:{config.listen_port} -> {config.upstream_url}")
    proxy_task = asyncio.create_task(master.run(), name="mitmproxy")
    stop_task = asyncio.create_task(stop_event.wait(), name="stop_signal")
    try:
        done, _ = await asyncio.wait(
            [proxy_task, stop_task], return_when=asyncio.FIRST_COMPLETED
        )
        if proxy_task in done and proxy_task.exception():
            raise proxy_task.exception()
    finally:
        logger.info("Shutting down...")
        stop_task.cancel()
        master.shutdown()
        try:
            await asyncio.wait_for(proxy_task, timeout=SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown timed out after {SHUTDOWN_TIMEOUT}s")
        except asyncio.CancelledError:
            pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="georules",
        description="Rewrite subscription routing configs by client country and tags",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--upstream-url", help="Subscription source URL (without trailing slash)")
    parser.add_argument("--secret-url", help="Secret path segment: /<secret>/json/<id>")
    parser.add_argument("--rules-dir", help="Directory with rule presets (default: rules)")
    parser.add_argument("--overrides-dir", help="Directory with override presets (default: overrides)")
    parser.add_argument(
        "--no-same-country",
        dest="direct_same_country",
        action="store_const",
        const=False,
        default=None,
        help="Do not add direct rules for the client's own country",
    )
    parser.add_argument("--public-url", help="Public domain of this service (routed direct)")
    parser.add_argument("--geoip-db", help="MaxMind country database (.mmdb)")
    parser.add_argument("--listen-host", help="Address to listen on (default: 0.0.0.0)")
    parser.add_argument("--listen-port", type=int, help="Port to listen on (default: 8080)")
    parser.add_argument("--transform", help="Post-processing hook as module:function")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cli_values = {k: v for k, v in vars(args).items() if k != "config"}

    try:
        config = build_config(args.config, cli_values)
        reverse_mode(config.upstream_url)
        logger = georules_logging.init_logging()
        addon = build_addon(config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        asyncio.run(run_proxy(config, addon))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        georules_logging.close_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
