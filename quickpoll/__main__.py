"""CLI entry point for quickpoll.

Usage:
  python -m quickpoll serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m quickpoll stop
  python -m quickpoll restart [--port PORT] [--host HOST]
  python -m quickpoll status
  python -m quickpoll import [FILE ...]
  python -m quickpoll stats
"""
from __future__ import annotations

import os
import signal
import sys
import time
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"
    rest = args[1:]

    if command == "serve":
        _serve(rest)
    elif command == "stop":
        _stop()
    elif command == "restart":
        _stop(wait=True)
        _serve(rest)
    elif command == "status":
        pid = _running_pid()
        print(f"Server is running (PID {pid})." if pid else "Server is not running.")
    elif command == "import":
        _import_stacks(rest)
    elif command == "stats":
        _stats()
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, restart, status, import, stats")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (ProcessLookupError, PermissionError):
        return False
    return True


def _running_pid() -> int | None:
    """PID of the server started from this checkout; clears a stale PID file."""
    try:
        pid = int(PID_FILE.read_text().strip())
    except (FileNotFoundError, ValueError):
        pid = None
    if pid is not None and _alive(pid):
        return pid
    PID_FILE.unlink(missing_ok=True)
    return None


def _stop(wait: bool = False, timeout: float = 5.0) -> None:
    pid = _running_pid()
    if pid is None:
        print("Server is not running.")
        return
    os.kill(pid, signal.SIGTERM)
    if wait:
        deadline = time.monotonic() + timeout
        while _alive(pid) and time.monotonic() < deadline:
            time.sleep(0.1)
    PID_FILE.unlink(missing_ok=True)
    print(f"Stopped server (PID {pid}).")


def _serve(args: list[str]):
    import uvicorn

    existing = _running_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["QUICKPOLL_NO_AUTO_IMPORT"] = "1"
    port = int(_parse_flag(args, "--port", "8000"))
    host = _parse_flag(args, "--host", "127.0.0.1")

    PID_FILE.write_text(str(os.getpid()))
    print(f"Starting Quickpoll on http://{host}:{port}")
    try:
        uvicorn.run("quickpoll.app:app", host=host, port=port, timeout_graceful_shutdown=5)
    finally:
        PID_FILE.unlink(missing_ok=True)
        os.environ.pop("QUICKPOLL_NO_AUTO_IMPORT", None)


def _import_stacks(args: list[str]):
    from quickpoll.config import load_settings
    from quickpoll.db import Database
    from quickpoll.stack_parser import import_stack_file

    settings = load_settings()
    files = [Path(a) for a in args] if args else settings.resolved_stack_files()
    if not files:
        print(f"No stack files found in {settings.data_dir}")
        sys.exit(1)

    db = Database(settings.db_full_path)
    missing = 0
    for sf in files:
        if not sf.exists():
            print(f"  Skipping (not found): {sf}")
            missing += 1
            continue
        try:
            name, n = import_stack_file(db, sf)
        except ValueError as e:
            print(f"  Failed: {e}")
            missing += 1
            continue
        print(f"  {sf.name}: {n} questions -> '{name}'")

    print(f"\nTotal in DB: {db.get_stack_count()} stacks")
    db.close()
    if missing:
        sys.exit(1)


def _stats():
    from quickpoll.config import load_settings
    from quickpoll.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats()

    print("Quickpoll Stats")
    print("=" * 40)
    print(f"Quizzes:            {stats['total_quizzes']}")
    print(f"Question stacks:    {stats['total_stacks']}")
    print(f"Stack questions:    {stats['total_stack_questions']}")
    print(f"Finished attempts:  {stats['finished_attempts']}")
    print(f"Average score:      {stats['average_score']}%")
    db.close()


if __name__ == "__main__":
    main()
