#!/usr/bin/env python3
import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / 'backend'


def run_migrations(env: dict[str, str]) -> int:
    return subprocess.call([sys.executable, '-m', 'alembic', 'upgrade', 'head'], cwd=str(BACKEND_DIR), env=env)


def main() -> int:
    parser = argparse.ArgumentParser(description='Run the attempt engine API locally with auto-reload.')
    parser.add_argument('--port', type=int, default=8001)
    parser.add_argument('--skip-migrations', action='store_true', help='Do not run alembic upgrade head first.')
    args = parser.parse_args()

    env = os.environ.copy()
    if not env.get('DATABASE_URL'):
        raise SystemExit('DATABASE_URL is required.')

    if not args.skip_migrations:
        code = run_migrations(env)
        if code != 0:
            return code

    server = subprocess.Popen(
        [
            sys.executable,
            '-m',
            'uvicorn',
            'assessment_engine.main:app',
            '--host',
            '0.0.0.0',
            '--port',
            str(args.port),
            '--reload',
        ],
        cwd=str(BACKEND_DIR),
        env=env,
    )

    def handle_signal(_sig: int, _frame: object) -> None:
        if server.poll() is None:
            server.terminate()
        raise SystemExit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    return server.wait()


if __name__ == '__main__':
    raise SystemExit(main())
