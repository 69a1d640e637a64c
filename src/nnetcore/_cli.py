"""
Command-line front-end: ``python -m nnetcore <command> ...``.

Commands
--------
initialize PROTO OUT
    Build a randomly initialized network from a prototype file.
info MODEL
    Print the network summary.
concat MODEL [MODEL ...] OUT
    Append networks one after another into a single network.
copy IN OUT
    Re-write a network, optionally dropping leading/trailing components or
    changing dropout retention.
forward MODEL INPUT.npy OUTPUT.npy
    Run inference on a matrix saved with ``numpy.save``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

import numpy as np

from .domain._errors import NnetError
from .infrastructure.nnet._nnet import Nnet

logger = logging.getLogger(__name__)


def _add_binary_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--binary",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write output in binary mode (default: %(default)s).",
    )


def _cmd_initialize(args: argparse.Namespace) -> None:
    if args.seed is not None:
        np.random.seed(args.seed)
    nnet = Nnet.from_proto(args.proto)
    nnet.write_file(args.out, binary=args.binary)
    logger.info("Written initialized model to %s", args.out)


def _cmd_info(args: argparse.Namespace) -> None:
    nnet = Nnet.from_file(args.model)
    sys.stdout.write(nnet.info())


def _cmd_concat(args: argparse.Namespace) -> None:
    nnet = Nnet.from_file(args.models[0])
    for path in args.models[1:]:
        logger.info("Concatenating %s", path)
        nnet.append_nnet(Nnet.from_file(path))
    nnet.write_file(args.out, binary=args.binary)
    logger.info("Written model to %s", args.out)


def _cmd_copy(args: argparse.Namespace) -> None:
    nnet = Nnet.from_file(args.model_in)
    for _ in range(args.remove_first):
        nnet.remove_component(0)
    for _ in range(args.remove_last):
        nnet.remove_component(nnet.num_components() - 1)
    if args.dropout_retention is not None:
        nnet.set_dropout_retention(args.dropout_retention)
    nnet.write_file(args.model_out, binary=args.binary)
    logger.info("Written model to %s", args.model_out)


def _cmd_forward(args: argparse.Namespace) -> None:
    nnet = Nnet.from_file(args.model)
    if args.dropout_retention is not None:
        nnet.set_dropout_retention(args.dropout_retention)
    x = np.load(args.input)
    y = nnet.feedforward(x) if args.feedforward else nnet.propagate(x)
    np.save(args.output, y)
    logger.info("Forwarded %d rows through %s", x.shape[0], args.model)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nnetcore")
    parser.add_argument(
        "--verbose", "-v", action="count", default=0, help="Increase log verbosity."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("initialize", help="Initialize a network from a prototype.")
    p.add_argument("proto")
    p.add_argument("out")
    p.add_argument("--seed", type=int, default=None, help="RNG seed.")
    _add_binary_flag(p)
    p.set_defaults(func=_cmd_initialize)

    p = sub.add_parser("info", help="Print network summary.")
    p.add_argument("model")
    p.set_defaults(func=_cmd_info)

    p = sub.add_parser("concat", help="Append networks into one.")
    p.add_argument("models", nargs="+")
    p.add_argument("out")
    _add_binary_flag(p)
    p.set_defaults(func=_cmd_concat)

    p = sub.add_parser("copy", help="Copy a network, optionally editing it.")
    p.add_argument("model_in")
    p.add_argument("model_out")
    p.add_argument("--remove-first", type=int, default=0, help="Drop N leading components.")
    p.add_argument("--remove-last", type=int, default=0, help="Drop N trailing components.")
    p.add_argument("--dropout-retention", type=float, default=None)
    _add_binary_flag(p)
    p.set_defaults(func=_cmd_copy)

    p = sub.add_parser("forward", help="Run inference on a .npy matrix.")
    p.add_argument("model")
    p.add_argument("input")
    p.add_argument("output")
    p.add_argument(
        "--feedforward",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Use the low-memory inference path (default: %(default)s).",
    )
    p.add_argument("--dropout-retention", type=float, default=None)
    p.set_defaults(func=_cmd_forward)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except (NnetError, OSError, ValueError, IndexError) as e:
        logger.error("%s", e)
        return 1
    return 0
