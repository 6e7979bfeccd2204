from __future__ import annotations

import argparse
import base64
import sys
from pathlib import Path
from typing import Sequence

from cache_connect.domain.errors import CacheConnectError
from cache_connect.domain.frame import decode, encode


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cache-connect")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="run the caching reverse proxy (configured from CACHE_* env)")

    encode_parser = subparsers.add_parser("encode", help="frame a response body for the cache")
    encode_parser.add_argument("--content-type", default="", help="content type stored with the body")
    encode_parser.add_argument("value", nargs="?", help="body as UTF-8 text")
    encode_parser.add_argument("--value-file", default=None, help="read the raw body from a file")
    encode_parser.add_argument(
        "--format",
        choices=("base64", "hex"),
        default="base64",
        help="output encoding for the frame",
    )

    decode_parser = subparsers.add_parser("decode", help="split a cached frame into content type and body")
    decode_parser.add_argument("frame", nargs="?", help="frame in --input-format")
    decode_parser.add_argument("--frame-file", default=None, help="read the raw frame from a file")
    decode_parser.add_argument(
        "--input-format",
        choices=("base64", "hex"),
        default="base64",
        help="encoding of the positional frame",
    )
    decode_parser.add_argument(
        "--format",
        choices=("base64", "hex", "utf8"),
        default="utf8",
        help="output encoding for the body",
    )
    decode_parser.add_argument(
        "--output",
        default=None,
        help="write the raw body to a file instead of printing",
    )

    return parser


def _encode_output(value: bytes, fmt: str) -> str:
    if fmt == "base64":
        return base64.b64encode(value).decode("ascii")
    if fmt == "hex":
        return value.hex()
    if fmt == "utf8":
        return value.decode("utf-8")
    raise ValueError(f"unknown format: {fmt}")


def _decode_input(value: str, fmt: str) -> bytes:
    if fmt == "base64":
        return base64.b64decode(value, validate=True)
    return bytes.fromhex(value)


def _read_body(args: argparse.Namespace) -> bytes:
    if args.value_file:
        return Path(args.value_file).read_bytes()
    if args.value is not None:
        return args.value.encode("utf-8")
    raise ValueError("encode requires a value (positional or --value-file)")


def _read_frame(args: argparse.Namespace) -> bytes:
    if args.frame_file:
        return Path(args.frame_file).read_bytes()
    if args.frame is not None:
        return _decode_input(args.frame, args.input_format)
    raise ValueError("decode requires a frame (positional or --frame-file)")


def run(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "serve":
        from cache_connect.main import main as serve_main

        serve_main()
        return 0

    try:
        if args.command == "encode":
            if args.value is not None and args.value_file:
                parser.error("encode: positional value cannot be combined with --value-file")
            frame = encode(args.content_type, _read_body(args))
            print(_encode_output(frame, args.format))
            return 0

        if args.command == "decode":
            cached = decode(_read_frame(args))
            print(f"content-type={cached.content_type}", file=sys.stderr)
            if args.output:
                Path(args.output).write_bytes(cached.body)
                return 0
            print(_encode_output(cached.body, args.format))
            return 0

        parser.error(f"unknown command: {args.command}")
        return 2
    except (CacheConnectError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
