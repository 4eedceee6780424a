from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import importlib.metadata
import sys
from pathlib import Path

from .adapters import available_adapters
from .config import BridgeSettings, load_config, write_template
from .daemon import run as run_daemon
from .errors import ConfigError, ConfigTemplateCreated

_LOCK_FILE = None


def _acquire_daemon_lock(settings: BridgeSettings) -> tuple[int, Path]:
    lock_path = settings.lock_path()
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_fd = lock_path.open("w")
    try:
        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as exc:
        lock_fd.close()
        raise RuntimeError(
            f"Another Claw Bridge instance appears to be using {settings.auth_dir} (lock: {lock_path}). "
            "Two bridges on one session replace each other."
        ) from exc
    lock_fd.write(str(Path.cwd()))
    lock_fd.flush()
    global _LOCK_FILE
    _LOCK_FILE = lock_fd
    atexit.register(_release_daemon_lock)
    return lock_fd.fileno(), lock_path


def _release_daemon_lock() -> None:
    global _LOCK_FILE
    if _LOCK_FILE is None:
        return
    try:
        fcntl.flock(_LOCK_FILE.fileno(), fcntl.LOCK_UN)
    except OSError:
        pass
    _LOCK_FILE.close()
    _LOCK_FILE = None


def _get_version() -> str:
    """Get the version from package metadata."""
    try:
        return importlib.metadata.version("claw-bridge")
    except importlib.metadata.PackageNotFoundError:
        return "0.1.0 (dev)"


def _settings_from_args(args: argparse.Namespace) -> BridgeSettings:
    overrides = {}
    if args.config:
        overrides["config_path"] = Path(args.config)
    if args.auth_dir:
        overrides["auth_dir"] = Path(args.auth_dir)
    if args.adapter:
        overrides["adapter"] = args.adapter
    return BridgeSettings(**overrides)


def _run_check(settings: BridgeSettings) -> int:
    try:
        config = load_config(settings.config_path)
    except ConfigTemplateCreated as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    print(f"Config:      {settings.config_path}")
    print(f"Dashboard:   {', '.join(config.dashboard_urls())}")
    print(f"API key:     {config.masked_api_key()}")
    print(f"Bot name:    {config.bot_name}")
    print(f"Pairing:     {'pairing code' if config.use_pairing_code else 'QR code'}")
    print(f"Auto restart: {config.auto_restart}")
    print(f"Auth dir:    {settings.auth_dir}")
    print(f"Profile:     {settings.profile}")
    print(f"Adapters:    {', '.join(available_adapters()) or '(none installed)'}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Claw Bridge runtime")
    parser.add_argument(
        "mode",
        choices=["run", "init", "check", "version"],
        nargs="?",
        default="run",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    parser.add_argument("--config", dest="config", default="", help="Path to config.json")
    parser.add_argument("--auth-dir", dest="auth_dir", default="", help="Directory holding session credentials")
    parser.add_argument("--adapter", dest="adapter", default="", help="Adapter entry-point name or module:attribute")
    parser.add_argument("--force", dest="force", action="store_true", help="With `init`, overwrite an existing config")

    args = parser.parse_args()

    if args.version or args.mode == "version":
        print(f"claw-bridge {_get_version()}")
        return

    settings = _settings_from_args(args)

    if args.mode == "init":
        path = Path(settings.config_path)
        if path.exists() and not args.force:
            print(f"{path} already exists (use --force to overwrite)", file=sys.stderr)
            raise SystemExit(1)
        write_template(path)
        print(f"Created {path} — edit it with your API key and dashboard URL.")
        return

    if args.mode == "check":
        raise SystemExit(_run_check(settings))

    try:
        _acquire_daemon_lock(settings)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc
    asyncio.run(run_daemon(settings))


if __name__ == "__main__":
    main()
