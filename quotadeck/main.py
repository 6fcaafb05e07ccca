"""
Main entry point for QuotaDeck.

WORKFLOW OVERVIEW:
==================
1. Startup:
   - Sets the process title
   - Reads --debug / QUOTADECK_DEBUG and configures logging
   - Builds ConnectionConfig from settings, keyring and env overrides

2. Watch:
   - Creates the ManagementAPIClient and QuotaViewModel
   - Loads credentials, waits for every quota fetch and logs a summary
   - With --once, exits; otherwise repeats every interval minutes
     (autoRefreshIntervalMinutes in settings, or --interval)

3. Shutdown:
   - Ctrl+C / SIGTERM stop the loop
   - The view model and API client are closed, then the log file
"""

import argparse
import asyncio
import os
import platform
import signal
import sys
import traceback
from typing import List, Optional

import setproctitle

from quotadeck import __version__
from quotadeck.models.connection import ConnectionConfig, load_management_key, normalize_api_base
from quotadeck.models.quota import FileQuota
from quotadeck.services.api_client import ManagementAPIClient
from quotadeck.services.refresh_bus import RefreshBus
from quotadeck.utils.log import close_log_file, configure_logging, log_with_timestamp
from quotadeck.utils.settings import SettingsManager
from quotadeck.viewmodels.quota_viewmodel import QuotaViewModel

PROCESS_NAME = "QuotaDeck"
DEFAULT_INTERVAL_MINUTES = 5


def _set_process_name():
    """Set the process name for better visibility in ps/top output."""
    setproctitle.setproctitle(PROCESS_NAME)
    if platform.system() == "Darwin":
        # setproctitle is limited on macOS; the thread title sometimes shows instead
        setproctitle.setthreadtitle(PROCESS_NAME)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="quotadeck", description="Watch provider account quotas.")
    parser.add_argument("-d", "--debug", action="store_true", help="verbose per-request logging")
    parser.add_argument("--once", action="store_true", help="fetch once and exit")
    parser.add_argument("--interval", type=float, default=None, help="minutes between refreshes")
    parser.add_argument("--api-base", default=None, help="management server base URL")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _describe(entry: FileQuota) -> str:
    label = entry.email or entry.filename
    if entry.plan:
        label = f"{label} [{entry.plan}]"
    if entry.error:
        return f"{label}: {entry.error}"
    if not entry.models:
        return f"{label}: no quota data"
    parts = []
    for model in entry.models:
        value = model.display_value or f"{model.percentage}%"
        part = f"{model.name} {value}"
        if model.reset_time:
            part = f"{part} (reset {model.reset_time})"
        parts.append(part)
    return f"{label}: " + ", ".join(parts)


def log_summary(view_model: QuotaViewModel):
    """One log line per credential, grouped by provider section."""
    if view_model.error:
        log_with_timestamp(f"Credential list unavailable: {view_model.error}", "[Main]")
        return
    if not view_model.sections:
        log_with_timestamp("No credentials found", "[Main]")
        return
    for section in view_model.sections:
        log_with_timestamp(f"{section.display_name} ({len(section.files)})", "[Main]")
        for entry in section.files:
            log_with_timestamp(f"  {_describe(entry)}", "[Main]")


async def watch(config: ConnectionConfig, settings: SettingsManager, once: bool, interval_minutes: float):
    """Load, fetch and summarize; repeat until stopped."""
    api_client = ManagementAPIClient(config.api_base, config.management_key)
    refresh_bus = RefreshBus()
    view_model = QuotaViewModel(api_client=api_client, refresh_bus=refresh_bus, settings=settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C raises KeyboardInterrupt
            pass

    log_with_timestamp(f"Watching {config.management_url}", "[Main]")
    try:
        while not stop_event.is_set():
            await view_model.load_credentials()
            await view_model.wait_for_pending()
            log_summary(view_model)
            if once:
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_minutes * 60)
            except asyncio.TimeoutError:
                pass
    finally:
        await view_model.close()
        await api_client.close()
        log_with_timestamp("Shutdown complete", "[Main]")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit code
    """
    _set_process_name()
    args = _parse_args(argv)

    debug_mode = args.debug or os.getenv("QUOTADECK_DEBUG", "").lower() in ("1", "true", "yes")
    configure_logging(debug=debug_mode)

    log_with_timestamp(f"QuotaDeck {__version__} - Running on {platform.system()}", "[Main]")
    if debug_mode:
        log_with_timestamp(f"Python version: {sys.version}", "[DEBUG]")

    settings = SettingsManager()
    config = ConnectionConfig.load(settings)
    if args.api_base:
        config.api_base = normalize_api_base(args.api_base)
        config.management_key = os.getenv("QUOTADECK_MANAGEMENT_KEY") or load_management_key(config.api_base)

    interval = args.interval or settings.get("autoRefreshIntervalMinutes") or DEFAULT_INTERVAL_MINUTES
    try:
        interval = float(interval)
    except (TypeError, ValueError):
        interval = DEFAULT_INTERVAL_MINUTES

    once = args.once or settings.get("autoRefreshEnabled") is False
    exit_code = 0
    try:
        asyncio.run(watch(config, settings, once, max(interval, 0.1)))
    except KeyboardInterrupt:
        log_with_timestamp("KeyboardInterrupt received, shutting down", "[Main]")
    except Exception as e:
        log_with_timestamp(f"Unexpected error: {e}", "[Main]")
        traceback.print_exc()
        exit_code = 1
    finally:
        close_log_file()
    return exit_code


if __name__ == "__main__":
    # Entry point when running as a script: python -m quotadeck.main
    sys.exit(main())
