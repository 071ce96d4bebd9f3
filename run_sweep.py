#!/usr/bin/env python3
"""Periodic sweep over every subject with background monitoring enabled.

Meant to be invoked by a time-based trigger (cron, a scheduler service, ...).
The trigger must present the shared secret configured on the server.

Usage:
    python run_sweep.py [--secret SECRET] [--verbose]

Environment variables:
    CRON_SECRET_KEY - secret the trigger must present (required)
    SWEEP_TRIGGER_SECRET - secret presented when --secret is omitted
    AUTOCOMMIT_DB_URL - PostgreSQL subject store (JSON file store when unset)
    AUTOCOMMIT_MAX_WORKERS - subjects checked in parallel (default 4)
"""

import argparse
import os
import sys

from autocommit.main import run


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the periodic keep-alive sweep")
    parser.add_argument("--secret", default=os.environ.get("SWEEP_TRIGGER_SECRET"))
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    argv = ["--verbose"] if args.verbose else []
    argv.append("sweep")
    if args.secret:
        argv += ["--secret", args.secret]
    return run(argv)


if __name__ == "__main__":
    sys.exit(main())
