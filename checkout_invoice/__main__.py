"""Module entrypoint: run the ordering server or render an order file."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from . import config
from .errors import DependencyError, InvoiceError


def _render(path: str, output: Optional[str]) -> None:
    from .models import order_from_dict
    from .server import render_with_config

    with open(path, "r", encoding="utf-8") as fh:
        order = order_from_dict(json.load(fh))
    pdf = render_with_config(order)
    target = output or f"invoice_{order.sequence}.pdf"
    with open(target, "wb") as fh:
        fh.write(pdf)
    logging.getLogger(__name__).info("Wrote %s (%d bytes)", target, len(pdf))


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="checkout_invoice")
    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="run the ordering HTTP server")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--port", type=int, default=config.PORT)
    render = sub.add_parser("render", help="render a stored order JSON file to PDF")
    render.add_argument("order_json")
    render.add_argument("-o", "--output")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "render":
            _render(args.order_json, args.output)
        else:
            from .server import run

            run(getattr(args, "host", config.HOST), getattr(args, "port", config.PORT))
    except DependencyError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc
    except InvoiceError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
