"""Structured diff tool invoked by kubectl through KUBECTL_EXTERNAL_DIFF.

`kubectl diff` calls this program with two directories holding the live and
the merged version of every changed object. The tool prints a single JSON
envelope with one result per object, e.g.:

    KUBECTL_EXTERNAL_DIFF=kubeapply-diff kubectl diff -R -f manifests/

Limits are read from the KUBEAPPLY_DIFF_* environment variables and may be
overridden with flags.
"""

import argparse
import dataclasses
import json
import logging
import os
import pathlib
import sys
import traceback

from kubeapply.exceptions import KubeApplyException
from kubeapply.resource_diff import DiffConfig, DiffResults, diff_paths

_LOGGER = logging.getLogger(__name__)

# kubectl treats exit status 1 as "differences found", so errors use 2
_ERROR_EXIT_CODE = 2


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubeapply-diff",
        description=(
            "Generates a structured diff between kubernetes manifests in two "
            "directories or files."
        ),
    )
    parser.add_argument("old", type=pathlib.Path, help="Path to the old objects")
    parser.add_argument("new", type=pathlib.Path, help="Path to the new objects")
    parser.add_argument("--debug", action="store_true", help="Log at debug level")
    parser.add_argument(
        "--context-lines",
        type=int,
        default=None,
        help="Number of context lines to show in diff outputs",
    )
    parser.add_argument(
        "--max-line-length",
        type=int,
        default=None,
        help="Max length of lines from diff",
    )
    parser.add_argument(
        "--max-size",
        type=int,
        default=None,
        help="Total maximum size of diff after clipping long lines",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """kubeapply-diff command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)
    for flag in ("context_lines", "max_line_length", "max_size"):
        if (value := getattr(args, flag)) is not None and value < 0:
            parser.error(f"--{flag.replace('_', '-')} must not be negative")

    # stdout only carries the JSON results
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO, stream=sys.stderr
    )

    try:
        config = DiffConfig.from_env(os.environ)
        overrides = {
            key: value
            for key, value in (
                ("context_lines", args.context_lines),
                ("max_line_length", args.max_line_length),
                ("max_size", args.max_size),
            )
            if value is not None
        }
        config = dataclasses.replace(config, **overrides)
        _LOGGER.debug("Diffing %s and %s with %s", args.old, args.new, config)
        results = diff_paths(args.old, args.new, config)
    except (KubeApplyException, OSError) as err:
        if args.debug:
            traceback.print_exc(file=sys.stderr)
        print("kubeapply-diff error: ", err, file=sys.stderr)
        sys.exit(_ERROR_EXIT_CODE)

    print(json.dumps(DiffResults(results=results).to_dict(), indent=2))


if __name__ == "__main__":
    main()
