"""
Command-line monitor for the Quotio observability core.

WORKFLOW OVERVIEW:
==================
1. Initialization:
   - Sets up the per-session log file (same directory as settings.json)
   - Checks for debug flags (--debug, -d, or QUOTIO_DEBUG env var)
   - Resolves the management URL and key: command line, then environment
     (QUOTIO_MANAGEMENT_URL / QUOTIO_MANAGEMENT_KEY), then settings

2. Actions:
   - Default: stream realtime usage events to the terminal until Ctrl+C
   - --export PATH: save a usage statistics backup
   - --import PATH: restore a usage statistics backup
   - --audit PATH: write the local request audit package

3. Shutdown:
   - SIGINT/SIGTERM stop the stream session, interrupting a read on a quiet stream
   - The API client session is closed and the log file gets a footer
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from quotio_observability.models.usage_history import SSERequestEvent
from quotio_observability.services.api_client import ManagementAPIClient
from quotio_observability.services.request_tracker import RequestTracker
from quotio_observability.services.stream_session import RealtimeStreamSession
from quotio_observability.utils.feature_flags import FeatureFlagManager
from quotio_observability.utils.log import LOGGER_NAME, log_with_timestamp
from quotio_observability.utils.settings import SettingsManager, default_config_dir
from quotio_observability.viewmodels.observability_viewmodel import ObservabilityViewModel
from quotio_observability.viewmodels.usage_stats_viewmodel import UsageStatsViewModel

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_log_file_handler: Optional[logging.FileHandler] = None


def _get_log_file_path() -> Path:
    """Get the path to the log file in the config directory (same location as settings)."""
    config_dir = default_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    log_filename = f"quotio_observability_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    return config_dir / log_filename


def setup_file_logging() -> Optional[Path]:
    """
    Set up file logging for this session.

    Writes a session header, then attaches a file handler to the package
    logger so every component message also lands in the file.

    Returns:
        Path to the log file, or None if setup failed
    """
    global _log_file_handler

    log_path = _get_log_file_path()
    try:
        with open(log_path, 'a', encoding='utf-8') as f:
            f.write(f"\n{'='*80}\n")
            f.write(f"Session started: {datetime.now().strftime(LOG_DATE_FORMAT)}\n")
            f.write(f"Log file: {log_path}\n")
            f.write(f"Python version: {sys.version}\n")
            f.write(f"Working directory: {os.getcwd()}\n")
            f.write(f"{'='*80}\n\n")

        _log_file_handler = logging.FileHandler(log_path, encoding='utf-8', mode='a')
        _log_file_handler.setLevel(logging.DEBUG)
        _log_file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logging.getLogger(LOGGER_NAME).addHandler(_log_file_handler)
        return log_path
    except OSError as e:
        print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
        return None


def setup_console_logging(debug: bool = False) -> None:
    """Terminal logging: INFO by default, everything under --debug."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
        force=True,  # Override any existing configuration
    )
    logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG if debug else logging.INFO)


def setup_debug_logging() -> None:
    """
    Set up comprehensive debug logging.

    - Enables Python asyncio debug mode to catch async issues
    - Sets aiohttp and package loggers to DEBUG
    - Keeps asyncio at INFO (DEBUG shows too much transport detail)
    """
    os.environ['PYTHONASYNCIODEBUG'] = '1'
    setup_console_logging(debug=True)

    # aiohttp is used for HTTP requests to proxy API
    logging.getLogger('aiohttp').setLevel(logging.DEBUG)
    logging.getLogger('aiohttp.client').setLevel(logging.DEBUG)
    logging.getLogger('aiohttp.connector').setLevel(logging.DEBUG)
    logging.getLogger('asyncio').setLevel(logging.INFO)

    print("=" * 60, file=sys.stderr)
    print("DEBUG MODE ENABLED", file=sys.stderr)
    print("=" * 60, file=sys.stderr)


def cleanup_logging() -> None:
    """Write the session footer and detach the file handler."""
    global _log_file_handler

    if _log_file_handler is None:
        return
    logging.getLogger(LOGGER_NAME).removeHandler(_log_file_handler)
    _log_file_handler.close()
    try:
        with open(_log_file_handler.baseFilename, 'a', encoding='utf-8') as f:
            f.write(f"\n{'='*80}\n")
            f.write(f"Session ended: {datetime.now().strftime(LOG_DATE_FORMAT)}\n")
            f.write(f"{'='*80}\n\n")
    except OSError:
        pass
    _log_file_handler = None


def is_debug_requested(argv: List[str]) -> bool:
    # - Command line: --debug or -d
    # - Environment variable: QUOTIO_DEBUG=1/true/yes
    return '--debug' in argv or '-d' in argv or os.getenv('QUOTIO_DEBUG', '').lower() in ('1', 'true', 'yes')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quotio-observability",
        description="Monitor realtime proxy usage and manage usage statistics backups.",
    )
    parser.add_argument("--base-url", help="Management API base URL")
    parser.add_argument("--key", help="Management API key")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--export", dest="export_path", type=Path, help="Export usage statistics to a file")
    action.add_argument("--import", dest="import_path", type=Path, help="Import usage statistics from a file")
    action.add_argument("--audit", dest="audit_path", type=Path, help="Write the request audit package to a file")
    return parser


def resolve_connection(args: argparse.Namespace, settings: SettingsManager):
    """Command line overrides environment, environment overrides settings."""
    base_url = args.base_url or os.getenv("QUOTIO_MANAGEMENT_URL") or settings.management_base_url
    key = args.key if args.key is not None else os.getenv("QUOTIO_MANAGEMENT_KEY", settings.management_key)
    return base_url, key


def format_event(event: SSERequestEvent) -> str:
    if event.success is None:
        status = "?"
    else:
        status = "OK" if event.success else "FAIL"
    parts = [
        event.timestamp or "-",
        status,
        event.model or "-",
        event.provider or "-",
        event.auth_file or "-",
        f"{event.tokens or 0} tok",
        f"{event.latency_ms}ms" if event.latency_ms is not None else "-",
        event.request_id or "",
    ]
    if event.error:
        parts.append(f"error={event.error}")
    return "  ".join(parts)


def install_stop_handlers(session: RealtimeStreamSession) -> List[int]:
    """Route SIGINT/SIGTERM to session.stop(); returns the signals installed."""
    loop = asyncio.get_running_loop()
    stopping = set()

    def request_stop():
        log_with_timestamp("Stop requested, closing realtime stream", "[Main]")
        # stop() also cancels a read blocked on a quiet stream
        stop_task = loop.create_task(session.stop())
        stopping.add(stop_task)
        stop_task.add_done_callback(stopping.discard)

    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, request_stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            continue
        installed.append(signum)
    return installed


async def stream_events(
    api_client: ManagementAPIClient,
    session: Optional[RealtimeStreamSession] = None,
) -> None:
    if session is None:
        session = RealtimeStreamSession(api_client, on_event=lambda event: print(format_event(event), flush=True))

    task = session.start()
    installed = install_stop_handlers(session)
    log_with_timestamp(f"Streaming realtime events from {api_client.base_url}", "[Main]")
    try:
        # A stopped session ends with a cancelled task.
        await asyncio.wait({task})
    finally:
        if not task.done():
            session.cancel()
            task.cancel()
        loop = asyncio.get_running_loop()
        for signum in installed:
            loop.remove_signal_handler(signum)


async def run(args: argparse.Namespace) -> int:
    settings = SettingsManager()
    base_url, key = resolve_connection(args, settings)
    api_client = ManagementAPIClient(base_url=base_url, auth_key=key)
    coordinator = ObservabilityViewModel(
        api_client=api_client,
        request_tracker=RequestTracker(),
        feature_flags=FeatureFlagManager(settings),
    )
    try:
        if args.export_path:
            usage = UsageStatsViewModel(coordinator=coordinator)
            ok = await usage.export_stats(args.export_path)
            print(usage.feedback.message if usage.feedback else "")
            return 0 if ok else 1
        if args.import_path:
            usage = UsageStatsViewModel(coordinator=coordinator)
            ok = await usage.import_stats(args.import_path)
            print(usage.feedback.message if usage.feedback else "")
            return 0 if ok and not usage.feedback.is_error else 1
        if args.audit_path:
            await coordinator.refresh_auth_files()
            ok = coordinator.export_request_audit_package(args.audit_path)
            print(coordinator.feedback.message if coordinator.feedback else "")
            return 0 if ok else 1

        await stream_events(api_client)
        return 0
    finally:
        await api_client.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    WORKFLOW:
    1. Set up file logging
    2. Check for debug flags and configure terminal logging
    3. Run the requested action on a fresh event loop
    """
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)

    log_path = setup_file_logging()
    if args.debug or is_debug_requested(argv):
        setup_debug_logging()
    else:
        setup_console_logging()
    if log_path:
        log_with_timestamp(f"Logging to file: {log_path}", "[Main]", logging.DEBUG)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n[Main] KeyboardInterrupt received, shutting down")
        return 130
    finally:
        cleanup_logging()


if __name__ == "__main__":
    # Entry point when running as a script: python -m quotio_observability.main
    sys.exit(main())
