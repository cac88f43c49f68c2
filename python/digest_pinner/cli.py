#!/usr/bin/env python3
"""
Command line entry point for credential classification and digest pinning.
"""

import argparse
import functools
import json
import sys
from typing import List, Optional

from tabulate import tabulate

from digest_pinner.auth import build_credential_lookup, exchange_acr_refresh_token
from digest_pinner.config_manager import ConfigValidationError, config_manager
from digest_pinner.context import ResolveContext
from digest_pinner.credentials import classify, classify_all
from digest_pinner.digest_resolver import DigestResolver
from digest_pinner.errors import ActionableError
from digest_pinner.logging_utils import get_logger, log_exception, setup_logging
from digest_pinner.reference import ReferenceParseError, parse_image_reference
from digest_pinner.skopeo_client import SkopeoResolver


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="digest-pinner",
        description="Classify registry credentials and pin image references to digests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check which authentication mode a credential uses
  digest-pinner classify '{"registry":"r.io","username":"u","userNameProviderType":"opaque","password":"p","passwordProviderType":"opaque"}'

  # Resolve an image to its digest anonymously
  digest-pinner resolve docker.io/library/alpine:3.19

  # Resolve with credentials for a private registry
  digest-pinner resolve myregistry.azurecr.io/app:v1 --credential "$CRED_JSON"
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    classify_parser = subparsers.add_parser("classify", help="Validate and classify serialized credentials")
    classify_parser.add_argument("blobs", nargs="+", help="Credential JSON blobs")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve an image reference to its digest")
    resolve_parser.add_argument("image", help="Image reference, e.g. myregistry.azurecr.io/app:v1")
    resolve_parser.add_argument(
        "--credential",
        action="append",
        default=[],
        help="Credential JSON blob (repeatable; added to credentials from config)",
    )
    resolve_parser.add_argument("--timeout", type=float, help="Seconds to wait for the registry (default: no limit)")
    resolve_parser.add_argument(
        "--tls-verify",
        dest="tls_verify",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Verify registry TLS certificates (default: from config)",
    )
    resolve_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    return parser.parse_args(argv)


def cmd_classify(args: argparse.Namespace) -> int:
    rows = []
    for blob in args.blobs:
        cred = classify(blob)
        rows.append([cred.registry, cred.mode.value, cred.identity])

    headers = ["Registry", "Mode", "Identity"]
    print(tabulate(rows, headers=headers, tablefmt="grid"))
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    logger = get_logger(__name__)

    ref = parse_image_reference(args.image)
    credentials = classify_all(list(config_manager.get_credentials()) + list(args.credential))
    exchanger = functools.partial(
        exchange_acr_refresh_token,
        scope=config_manager.get_azure_token_scope(),
        timeout=config_manager.get_azure_exchange_timeout(),
    )
    # Only the target registry's credential is turned into literal values
    lookup = build_credential_lookup(
        [cred for cred in credentials if cred.registry == ref.registry], token_exchanger=exchanger
    )

    resolver = SkopeoResolver.from_config(config_manager)
    if args.tls_verify is not None:
        resolver.tls_verify = args.tls_verify

    ctx = ResolveContext(timeout=args.timeout)
    digest = DigestResolver(credentials=lookup, resolver=resolver).resolve(ctx, ref)

    if args.json:
        print(json.dumps({"reference": ref.reference, "digest": digest or "", "pinned": ref.pinned()}))
    elif digest:
        print(ref.pinned())
    else:
        logger.info(f"{ref.reference} is not resolved to a digest")
        print(ref.reference)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging(config_manager.get_log_level())
    logger = get_logger(__name__)
    args = parse_arguments(argv)

    handlers = {"classify": cmd_classify, "resolve": cmd_resolve}
    try:
        return handlers[args.command](args)
    except (ActionableError, ReferenceParseError, ConfigValidationError) as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        log_exception(logger, f"Unexpected error running {args.command}", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
