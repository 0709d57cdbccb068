"""Command-line holder wallet: python -m credvault <command>"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from credvault.config import Settings
from credvault.core.issuer import LocalIssuer
from credvault.core.lifecycle import CredentialLifecycle
from credvault.exceptions import CredVaultError
from credvault.logging_config import setup_logging
from credvault.storage.content import ContentStore, FileContentStore, MemoryContentStore
from credvault.storage.device import FileDeviceStore, VaultIndex
from credvault.storage.ipfs import IpfsContentStore

logger = logging.getLogger("credvault.cli")


def build_content_store(settings: Settings) -> ContentStore:
    if settings.content_store == "ipfs":
        return IpfsContentStore(settings.ipfs_api_url, timeout=settings.request_timeout)
    if settings.content_store == "memory":
        return MemoryContentStore()
    return FileContentStore(settings.blob_dir)


def build_lifecycle(settings: Settings) -> CredentialLifecycle:
    return CredentialLifecycle(
        VaultIndex(FileDeviceStore(settings.device_dir)),
        build_content_store(settings),
        LocalIssuer(seed=settings.issuer_seed_bytes, name=settings.issuer_name),
        timeout=settings.request_timeout,
        retry_attempts=settings.retry_attempts,
        retry_backoff=settings.retry_backoff,
        cache_envelopes=settings.cache_envelopes,
        gateway=settings.ipfs_gateway_url,
    )


def parse_claim(text: str) -> tuple[str, Any]:
    """Parse ``name=value``; JSON scalars are decoded, anything else stays a string."""
    name, sep, raw = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"claim must look like name=value, got {text!r}")
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    if isinstance(value, float):
        value = raw
    return name, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credvault", description="Self-sovereign credential wallet"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    identity = sub.add_parser("identity", help="Manage the device identity")
    identity_sub = identity.add_subparsers(dest="action", required=True)
    create = identity_sub.add_parser("create", help="Generate a DID for this device")
    create.add_argument("--replace", action="store_true", help="Discard the existing identity")
    identity_sub.add_parser("show", help="Show the device identity")
    identity_sub.add_parser("clear", help="Delete the identity and its credential index")
    restore = identity_sub.add_parser("restore", help="Recreate the identity from a backup key")
    restore.add_argument("private_key", help="32-byte private key as hex")

    sub.add_parser("issuer", help="Show the issuer profile")

    issue = sub.add_parser("issue", help="Request, encrypt and publish a credential")
    issue.add_argument("--claim", action="append", type=parse_claim, required=True, dest="claims")
    issue.add_argument("--type", action="append", default=[], dest="types")

    sub.add_parser("list", help="List stored credentials")

    verify = sub.add_parser("verify", help="Retrieve, decrypt and verify a credential")
    verify.add_argument("handle")

    remove = sub.add_parser("remove", help="Remove a credential from the local index")
    remove.add_argument("handle")

    share = sub.add_parser("share", help="Print share text for a credential")
    share.add_argument("handle")

    return parser


async def run(args: argparse.Namespace, lifecycle: CredentialLifecycle) -> int:
    if args.command == "identity":
        if args.action == "create":
            identity = await lifecycle.create_identity(replace=args.replace)
            print(f"DID:     {identity.did}")
            print(f"Address: {identity.address}")
            return 0
        if args.action == "restore":
            try:
                seed = bytes.fromhex(args.private_key)
            except ValueError:
                print("Private key must be hex", file=sys.stderr)
                return 1
            identity = await lifecycle.restore_identity(seed)
            print(f"Restored {identity.did}")
            return 0
        if args.action == "clear":
            await lifecycle.clear_identity()
            print("Identity cleared from local storage")
            return 0
        identity = lifecycle.current_identity()
        if identity is None:
            print("No identity on this device", file=sys.stderr)
            return 1
        print(f"DID:        {identity.did}")
        print(f"Address:    {identity.address}")
        print(f"Public key: {identity.public_key.hex()}")
        return 0

    if args.command == "issuer":
        profile = await lifecycle.issuer_profile()
        print(f"{profile.name}: {profile.did}")
        return 0

    if args.command == "issue":
        record = await lifecycle.issue(dict(args.claims), types=args.types)
        suffix = " (simulated)" if record.simulated else ""
        print(f"Credential issued and stored! CID: {record.storage_handle}{suffix}")
        return 0

    if args.command == "list":
        records = lifecycle.list_credentials()
        if not records:
            print("No credentials yet")
        for record in records:
            claims = json.dumps(record.claims, sort_keys=True)
            issued = f"{record.issued_at:%Y-%m-%d}"
            print(f"{record.storage_handle}  {issued}  {record.issuer}  {claims}")
        return 0

    if args.command == "verify":
        report = await lifecycle.verify(args.handle)
        if report.verified:
            print(f"Credential verified: issued by {report.issuer} to {report.subject}")
            return 0
        print(f"Credential rejected: {report.reason.value}", file=sys.stderr)
        return 1

    if args.command == "remove":
        if await lifecycle.remove_credential(args.handle):
            print(f"Removed {args.handle}")
            return 0
        print(f"No credential {args.handle}", file=sys.stderr)
        return 1

    if args.command == "share":
        record = lifecycle.index.get_record(args.handle)
        if record is None:
            print(f"No credential {args.handle}", file=sys.stderr)
            return 1
        print(lifecycle.share_text(record))
        return 0

    return 2


async def _run_and_close(args: argparse.Namespace, lifecycle: CredentialLifecycle) -> int:
    try:
        return await run(args, lifecycle)
    finally:
        if isinstance(lifecycle.content_store, IpfsContentStore):
            await lifecycle.content_store.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    lifecycle = build_lifecycle(settings)
    try:
        return asyncio.run(_run_and_close(args, lifecycle))
    except CredVaultError as exc:
        logger.debug("Command failed", exc_info=True)
        step = f" at {exc.state}" if exc.state else ""
        print(f"Error ({exc.error_type}{step}): {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
