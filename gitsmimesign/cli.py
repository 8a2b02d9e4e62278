"""
Command line entry point.

Accepts the subset of gpg's command line git uses, for example:

    gitsmimesign --status-fd=2 -bsau user@example.com
    gitsmimesign --keyid-format=long --status-fd=1 --verify sig.pem -
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .certstore import EXCLUDE_ROOT, CertificateStore, IncludePolicy
from .config import load_config, resolve_timestamp_authority
from .errors import SignClientError
from .fileio import read_input
from .sign import sign
from .status import StatusEmitter
from .verify import verify

logger = logging.getLogger(__name__)


def include_certs(value: str) -> IncludePolicy:
    try:
        return IncludePolicy.from_int(int(value))
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="gitsmimesign",
        description="Sign and verify git objects with X.509 certificates, speaking gpg's status protocol",
    )
    actions = p.add_mutually_exclusive_group(required=True)
    actions.add_argument("--list-keys", action="store_true", help="List all the keys available in the certificate store")
    actions.add_argument("-s", "--sign", action="store_true", help="Sign an object and make a signature")
    actions.add_argument("--verify", action="store_true", help="Verify a signature")

    p.add_argument("-u", "--local-user", help="Use USER-ID (e-mail address or certificate ID) to sign")
    p.add_argument("-b", "--detached-sign", action="store_true", help="Make a detached signature")
    p.add_argument("-a", "--armor", action="store_true", help="Create ASCII armored output")
    p.add_argument("--status-fd", help="Write special status strings to the specified file descriptor (1, 2 or a file)")
    p.add_argument(
        "-t",
        "--timestamp-authority",
        default=None,
        help="URL of the RFC 3161 timestamp authority, an empty value disables timestamping "
        "(default: configuration file, then http://timestamp.digicert.com)",
    )
    p.add_argument(
        "--include-certs",
        type=include_certs,
        default=EXCLUDE_ROOT,
        metavar="N",
        help="-2 includes all certificates except the root, -1 all certificates, 0 none, "
        "1 only the signer's and N up to N certificates starting with the signer's (default: -2)",
    )
    p.add_argument("--keyid-format", default="long", help="Accepted for gpg compatibility, ignored")
    p.add_argument("--cert-store", type=Path, help="Directory holding certificates and keys")
    p.add_argument("-v", "--verbose", action="store_true", help="Log debug information to stderr")
    p.add_argument("files", nargs="*", help="Input files, '-' for stdin")
    return p


def run(args: argparse.Namespace, emitter: StatusEmitter) -> int:
    config = load_config()
    if args.verbose or (config is not None and config.debug):
        logging.getLogger().setLevel(logging.DEBUG)

    store_path = args.cert_store or (config.store_path if config is not None else None)

    if args.list_keys:
        with CertificateStore(store_path) as store:
            store.list_keys(sys.stdout)
        return 0

    if args.sign:
        if not args.local_user:
            raise SignClientError("You must specify the ID for signing. Either an email address or the certificate ID.")
        authority = resolve_timestamp_authority(args.timestamp_authority, config)
        content = read_input(args.files[0] if args.files else None)
        with CertificateStore(store_path) as store:
            output = sign(
                args.local_user,
                content,
                emitter,
                store,
                timestamp_authority=authority,
                detached=args.detached_sign,
                armor=args.armor,
                include_policy=args.include_certs,
            )
        sys.stdout.buffer.write(output)
        sys.stdout.buffer.flush()
        return 0

    return verify(args.files, emitter)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.WARNING, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    args = build_parser().parse_args(argv)

    emitter = StatusEmitter.from_descriptor(args.status_fd, info=sys.stderr)
    with emitter:
        try:
            return run(args, emitter)
        except SignClientError as e:
            emitter.info(f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.debug("Unexpected failure", exc_info=True)
            emitter.info(f"{type(e).__name__}: {e}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
