"""Command-line helper to classify a spreadsheet and dump its workbook stream."""

import argparse
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import BinaryIO

from .config import ReaderConfiguration
from .errors import ExcelReaderError, InvalidPasswordError
from .factory import resolve_any, resolve_binary_only, resolve_openxml_only

RESOLVERS = {
    "any": resolve_any,
    "binary": resolve_binary_only,
    "openxml": resolve_openxml_only,
}
EXIT_INVALID_PASSWORD = 3

# msoffcrypto logs passwords and derived keys at DEBUG
QUIET_LOGGERS = ("msoffcrypto",)


def _password(args: argparse.Namespace) -> str:
    if args.password is not None:
        return args.password
    if args.password_env:
        return os.environ.get(args.password_env, "")
    return ""


def _write_atomically(stream: BinaryIO, target: Path) -> None:
    """Copy ``stream`` into ``target`` so that a failed copy leaves no file behind."""
    handle = tempfile.NamedTemporaryFile(dir=target.parent, prefix=f".{target.name}.", delete=False)
    try:
        with handle:
            shutil.copyfileobj(stream, handle)
        os.replace(handle.name, target)
    except BaseException:
        os.unlink(handle.name)
        raise


def main() -> None:
    parser = argparse.ArgumentParser(description="Identify an Excel container and resolve its workbook stream")
    parser.add_argument("workbook", type=Path, help="path to the .xls/.xlsx file")
    secret = parser.add_mutually_exclusive_group()
    secret.add_argument("--password", help="password for encrypted OpenXml packages")
    secret.add_argument("--password-env", metavar="VAR", help="read the password from this environment variable")
    parser.add_argument("--mode", choices=sorted(RESOLVERS), default="any", help="which readers to allow")
    parser.add_argument("--output", type=Path, help="write the resolved (decrypted) stream here")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.INFO)

    configuration = ReaderConfiguration(password=_password(args))
    try:
        with open(args.workbook, "rb") as source:
            resolved = RESOLVERS[args.mode](source, configuration)
            if args.output is not None:
                resolved.stream.seek(0)
                _write_atomically(resolved.stream, args.output)
    except InvalidPasswordError as exc:
        print(f"{parser.prog}: wrong password: {exc}", file=sys.stderr)
        sys.exit(EXIT_INVALID_PASSWORD)
    except ExcelReaderError as exc:
        parser.error(str(exc))
    except OSError as exc:
        parser.error(f"cannot read {args.workbook}: {exc}")

    print(f"container: {resolved.container.value}")
    print(f"format: {resolved.format.value}")
    print(f"encrypted: {'yes' if resolved.encrypted else 'no'}")


if __name__ == "__main__":
    main()
