import argparse
import asyncio
import dataclasses
import signal
import sys
from pathlib import Path

from backend_playwright import PlaywrightBackend
from backend_selenium import SeleniumBackend
from config import ScrapeConfig
from errors import ConfigError
from events import LoggingEventSink
from fingerprint import load_user_agents
from logging_utils import LoggerFactory
from orchestrator import ScrapeOrchestrator
from profiles import ProfileManager
from tor import TorNetwork


def _read_text(path: str | None) -> str:
    if not path:
        return ""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {p}")
    return p.read_text(encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="CardMarket scraper with challenge handling and session rotation.")
    p.add_argument("url", nargs="*", help="URLs to scrape (optional if --url-file is used)")
    p.add_argument("--url-file", help="File with newline-separated URLs")
    p.add_argument("-f", "--field", action="append", help="Field rule 'title|xpath' (repeatable)")
    p.add_argument("--fields-file", help="File with field rules, one per line")
    p.add_argument("--auto-detect", action="store_true", help="Pick field rules per category from the URL path")
    p.add_argument("--categories", help="Comma separated category names for --auto-detect")
    p.add_argument("--engine", choices=["playwright", "selenium"])
    p.add_argument("--output", help="Output directory")
    p.add_argument("--headless", action="store_true")
    p.add_argument("--no-warmup", action="store_true", help="Skip warm-up visits on new sessions")
    p.add_argument("--retries", type=int, help="Retries per URL")
    p.add_argument("--min-delay", type=float, help="Minimum seconds between URLs")
    p.add_argument("--max-delay", type=float, help="Maximum seconds between URLs")
    p.add_argument("--urls-per-session", type=int, help="Rotate the session after this many URLs")
    p.add_argument("--ua-file", help="File with user agents, one per line")
    p.add_argument("--profiles-dir", help="Directory of browser profile copies")
    p.add_argument("--tor", action="store_true", help="Route sessions through Tor and renew the circuit on rotation")
    p.add_argument("--seed", type=int, help="Seed for all randomization")
    return p


def build_config(args, base: ScrapeConfig | None = None) -> ScrapeConfig:
    cfg = base or ScrapeConfig.from_env()
    overrides = {
        "engine": args.engine,
        "output_dir": args.output,
        "max_retries": args.retries,
        "min_delay_s": args.min_delay,
        "max_delay_s": args.max_delay,
        "urls_per_session": args.urls_per_session,
        "user_agents_file": args.ua_file,
        "profiles_dir": args.profiles_dir,
        "seed": args.seed,
    }
    changes = {k: v for k, v in overrides.items() if v is not None}
    if args.headless:
        changes["headless"] = True
    if args.no_warmup:
        changes["warmup"] = False
    if args.tor:
        changes["proxy_enabled"] = True
    if args.auto_detect:
        changes["auto_detect"] = True
    if args.categories:
        changes["categories"] = tuple(c.strip() for c in args.categories.split(",") if c.strip())
    return dataclasses.replace(cfg, **changes)


def collect_inputs(args) -> tuple[str, str]:
    url_lines = list(args.url or [])
    url_text = "\n".join(url_lines)
    if args.url_file:
        url_text = "\n".join([url_text, _read_text(args.url_file)])
    field_text = "\n".join(args.field or [])
    if args.fields_file:
        field_text = "\n".join([field_text, _read_text(args.fields_file)])
    return url_text, field_text


def install_stop_handler(loop, orchestrator, logger):
    """First Ctrl-C finishes the current URL and saves; a second one aborts."""
    def on_sigint():
        logger.warning("Stopping after the current URL, press Ctrl-C again to abort")
        orchestrator.request_stop()
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
    except NotImplementedError:
        # Windows event loops have no signal handlers
        pass


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = build_config(args)
    logger = LoggerFactory.create()

    try:
        urls_text, fields_text = collect_inputs(args)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 3

    tor = None
    proxy = None
    if cfg.proxy_enabled:
        tor = TorNetwork.from_config(cfg, logger)
        proxy = tor.proxy_settings()
        if not proxy:
            logger.error("Tor SOCKS proxy unreachable. Ensure Tor is running on host:port.")
            return 2

    backend_cls = SeleniumBackend if cfg.engine == "selenium" else PlaywrightBackend

    def backend_factory():
        return backend_cls(logger, headless=cfg.headless)

    orchestrator = ScrapeOrchestrator(
        cfg,
        backend_factory,
        logger,
        urls_text=urls_text,
        fields_text=fields_text,
        events=LoggingEventSink(logger),
        profile_manager=ProfileManager(cfg.profiles_dir, logger) if cfg.profiles_dir else None,
        tor=tor,
        proxy=proxy,
        user_agents=load_user_agents(cfg.user_agents_file, logger),
        families=backend_cls.SUPPORTED_FAMILIES,
    )

    install_stop_handler(asyncio.get_running_loop(), orchestrator, logger)

    try:
        results = await orchestrator.run()
    except ConfigError as e:
        logger.error(str(e))
        return 1
    ok = sum(1 for r in results if r.success)
    return 0 if ok == len(results) else 4


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
