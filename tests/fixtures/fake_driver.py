#!/usr/bin/env python3
"""Fake driver for integration testing.

Behaves like a UI-automation driver: prints some banner text, then a
readiness or failure line, keeps running and finally exits.

Usage:
    python fake_driver.py [--ready TEXT] [--fail TEXT] [--stderr TEXT]
                          [--before TEXT]... [--after TEXT]... [--interval SECONDS]
                          [--linger SECONDS] [--exit-code CODE] [--encoding CODEC]
                          [--split] [--wait-stdin] [--echo-args] [args...]

Arguments:
    --ready: Readiness line to print
    --fail: Failure line to print (before --ready, if both are given)
    --stderr: Line to print on stderr before anything else on stdout
    --before / --after: Extra stdout lines before / after the readiness line
    --interval: Delay between --after lines and between --split halves
    --linger: Seconds to stay alive after printing (default: 30)
    --exit-code: Exit code when the process ends on its own
    --encoding: Codec used for all output (e.g. utf-16-le)
    --split: Write the readiness line in two separately flushed halves
    --wait-stdin: After printing, block until stdin reaches EOF, then exit
    --echo-args: Print the positional arguments on one line
"""

from __future__ import annotations

import argparse
import sys
import time


def emit(stream, text: str, encoding: str) -> None:
    """Write text to a binary stream and flush it immediately."""
    stream.write(text.encode(encoding))
    stream.flush()


def main() -> None:
    parser = argparse.ArgumentParser(description="Fake driver for testing")
    parser.add_argument("--ready", default=None)
    parser.add_argument("--fail", default=None)
    parser.add_argument("--stderr", default=None)
    parser.add_argument("--before", action="append", default=[])
    parser.add_argument("--after", action="append", default=[])
    parser.add_argument("--interval", type=float, default=0.05)
    parser.add_argument("--linger", type=float, default=30.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--encoding", default="utf-8")
    parser.add_argument("--split", action="store_true")
    parser.add_argument("--wait-stdin", action="store_true")
    parser.add_argument("--echo-args", action="store_true")
    parser.add_argument("args", nargs="*")

    # Unknown flags (e.g. --port 4444) are treated as driver arguments
    args, extra = parser.parse_known_args()
    driver_args = args.args + extra
    out = sys.stdout.buffer
    err = sys.stderr.buffer

    if args.stderr:
        emit(err, args.stderr + "\n", args.encoding)

    for line in args.before:
        emit(out, line + "\n", args.encoding)

    if args.echo_args:
        emit(out, "args: " + " ".join(driver_args) + "\n", args.encoding)

    if args.fail:
        emit(out, args.fail + "\n", args.encoding)

    if args.ready:
        if args.split:
            half = len(args.ready) // 2
            emit(out, args.ready[:half], args.encoding)
            time.sleep(args.interval)
            emit(out, args.ready[half:] + "\n", args.encoding)
        else:
            emit(out, args.ready + "\n", args.encoding)

    for line in args.after:
        time.sleep(args.interval)
        emit(out, line + "\n", args.encoding)

    if args.wait_stdin:
        sys.stdin.read()
        sys.exit(args.exit_code)

    time.sleep(args.linger)
    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
