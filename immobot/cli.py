# immobot/cli.py
"""Command line entry point.

    immobot run [--dry-run] [--headful] [--with-api] [--once]
    immobot api
    immobot status

Exit codes: 0 normal stop, 1 a single ``--once`` check failed,
2 configuration error, 3 out of memory or disk.
"""
import argparse
import signal
import sys
import threading
from .application import ApplicationSubmitter
from .artifacts import ArtifactCapture
from .auth import AccountLogin
from .browser import BrowserSession
from .checker import CheckCycle
from .config import load_settings
from .db import init_db, make_engine, make_session_factory
from .detection import BotDetectionMonitor, ConsoleOperator
from .notifications import EmailNotifier
from .scheduler import CheckScheduler
from .services import CaptchaRelay, ListingStore
from .utils import logger, add_file_handlers, is_resource_exhaustion, ConfigError

EXIT_OK = 0
EXIT_CHECK_FAILED = 1
EXIT_CONFIG = 2
EXIT_RESOURCES = 3


def _open_store(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    return make_session_factory(engine)


def _log_configuration(settings):
    logger.info("=" * 50)
    logger.info("ImmoBot starting")
    logger.info("Account: %s", settings.is24_email)
    logger.info("Search URL: %s", settings.search_url)
    logger.info("Interval: %d min (±%d%%)", settings.base_interval_minutes, settings.random_offset_percent)
    if settings.night_mode_enabled:
        logger.info("Night mode: %d:00 - %d:00", settings.night_start_hour, settings.night_end_hour)
    else:
        logger.info("Night mode: disabled")
    logger.info("Headless: %s, warmup: %s", settings.headless, not settings.skip_warmup)
    logger.info("E-mail notifications: %s", "on" if settings.email_enabled else "off")
    if settings.dry_run:
        logger.warning("DRY RUN: forms are filled but never submitted")
    logger.info("=" * 50)


def _serve_api_in_background(app, settings):
    import uvicorn

    config = uvicorn.Config(app, host=settings.api_host, port=settings.api_port, log_level="info")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="status-api", daemon=True)
    thread.start()
    logger.info("Status API on http://%s:%d", settings.api_host, settings.api_port)
    return server


def cmd_run(settings, args):
    session_factory = _open_store(settings)
    store = ListingStore(session_factory)
    notifier = EmailNotifier(settings)
    artifacts = ArtifactCapture(settings.pdf_dir, settings.screenshots_dir)
    artifacts.cleanup_old(settings.pdf_retention_days)

    relay = CaptchaRelay(session_factory, poll_seconds=settings.captcha_poll_seconds)
    # a previous run may have died mid-challenge
    relay.publish(False)
    monitor = BotDetectionMonitor(
        relay=relay,
        operator=ConsoleOperator(pause_seconds=settings.captcha_pause_minutes * 60),
        screenshot=artifacts.screenshot,
        notifier=notifier,
        timeout_seconds=settings.captcha_timeout_minutes * 60,
    )
    _log_configuration(settings)

    with BrowserSession(settings) as session:
        submitter = ApplicationSubmitter(settings, store, monitor, artifacts, notifier)
        auth = AccountLogin(settings, monitor, artifacts)
        cycle = CheckCycle(settings, session, store, monitor, submitter, notifier, auth=auth)

        if args.once:
            try:
                report = cycle.run_cycle()
            except Exception as e:
                if is_resource_exhaustion(e):
                    raise
                return EXIT_CHECK_FAILED
            logger.info("Single check done: %d found, %d new", report.found, len(report.new))
            return EXIT_OK

        scheduler = CheckScheduler(settings, cycle)
        api_server = None
        if args.with_api:
            from .main import create_app
            api_server = _serve_api_in_background(create_app(session_factory, settings, scheduler), settings)

        def _stop(signum, frame):
            logger.info("Received %s, shutting down gracefully...", signal.Signals(signum).name)
            scheduler.stop()

        signal.signal(signal.SIGINT, _stop)
        signal.signal(signal.SIGTERM, _stop)

        notifier.notify_startup()
        try:
            scheduler.start()
        finally:
            if api_server is not None:
                api_server.should_exit = True
    logger.info("Bot stopped")
    return EXIT_OK


def cmd_api(settings, args):
    import uvicorn
    from .main import create_app

    app = create_app(_open_store(settings), settings)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
    return EXIT_OK


def cmd_status(settings, args):
    store = ListingStore(_open_store(settings))
    for check in store.get_recent(args.limit):
        state = "ok " if check.success else "ERR"
        line = f"{check.checked_at:%d.%m.%Y %H:%M:%S}  {state}  found={check.listings_found:<3} new={check.new_listings}"
        if check.error_message:
            line += f"  {check.error_message}"
        print(line)
    print()
    for listing in store.get_recent_listings(args.limit):
        print(f"{listing.id:<12} {listing.status.value:<8} {listing.address}  {listing.price}")
    return EXIT_OK


def build_parser():
    parser = argparse.ArgumentParser(prog="immobot", description="ImmobilienScout24 listing watcher")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Check for new listings periodically and apply to them")
    p_run.add_argument("--dry-run", action="store_true", help="Fill contact forms but never submit")
    p_run.add_argument("--headful", action="store_true", help="Show the browser window")
    p_run.add_argument("--with-api", action="store_true", help="Serve the status API alongside the bot")
    p_run.add_argument("--once", action="store_true", help="Run a single check and exit")
    p_run.set_defaults(func=cmd_run)

    p_api = sub.add_parser("api", help="Serve the status API only")
    p_api.set_defaults(func=cmd_api)

    p_status = sub.add_parser("status", help="Print recent checks and listings")
    p_status.add_argument("--limit", type=int, default=10)
    p_status.set_defaults(func=cmd_status)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
        overrides = {}
        if getattr(args, "dry_run", False):
            overrides["dry_run"] = True
        if getattr(args, "headful", False):
            overrides["headless"] = False
        if overrides:
            settings = settings.with_overrides(**overrides)
        add_file_handlers(settings.logs_dir)
        return args.func(settings, args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG
    except Exception as e:
        if is_resource_exhaustion(e):
            logger.critical("Out of resources, exiting: %s", e)
            return EXIT_RESOURCES
        raise


if __name__ == "__main__":
    sys.exit(main())
