"""Command line entry point for sending commands to the control socket."""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional, Sequence

from .ctl import DEFAULT_CONTROL, Event, dial


def _parser(cmd: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=cmd)
    parser.add_argument(
        "-control",
        "--control",
        default=DEFAULT_CONTROL,
        help="Address to the control socket",
    )
    return parser


def ctl_command(args: Sequence[str]) -> int:
    """Send the command args[0] to the daemon and print its reply."""
    cmd = args[0]
    opts, _ = _parser(cmd).parse_known_args(list(args[1:]))
    with dial(opts.control) as client:
        data = client.send(Event(name=cmd))
    if isinstance(data, str):
        print(data)
    else:
        print(json.dumps(data, indent=4, sort_keys=True, ensure_ascii=False))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: nextdns <command> [-control ADDR]", file=sys.stderr)
        return 2
    try:
        return ctl_command(args)
    except OSError as e:
        print(f"{args[0]}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())