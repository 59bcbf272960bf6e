"""Command-line interface for localca."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .config import PKISettings
from .errors import PKIError, StorageError
from .pki_service.service import PKIService

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_NOT_FOUND = 2
EXIT_CONFLICT = 3
EXIT_PERMISSION_DENIED = 4
EXIT_UNSUPPORTED = 5
EXIT_TIMEOUT = 6
EXIT_FAILURE = 7

EXIT_CODE_BY_KIND = {
    "validation_error": EXIT_VALIDATION_ERROR,
    "not_found": EXIT_NOT_FOUND,
    "conflict": EXIT_CONFLICT,
    "permission_denied": EXIT_PERMISSION_DENIED,
    "unsupported": EXIT_UNSUPPORTED,
    "operation_timeout": EXIT_TIMEOUT,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="localca", description="Local certificate authority manager")
    parser.add_argument("--version", action="version", version=f"localca {__version__}")
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory holding CA and certificate files (default: $LOCALCA_OUTPUT_DIR or ~/.localca/output)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: $LOCALCA_LOG_LEVEL or INFO)")

    sub = parser.add_subparsers(dest="command", required=True)

    ca = sub.add_parser("ca", help="Manage certificate authorities")
    ca_sub = ca.add_subparsers(dest="ca_command", required=True)

    ca_create = ca_sub.add_parser("create", help="Create a self-signed CA")
    ca_create.add_argument("common_name", help="CA common name (also its name in the store)")
    ca_create.add_argument("--country", default=None, help="Two-letter country code")
    ca_create.add_argument("--state", default=None)
    ca_create.add_argument("--locality", default=None)
    ca_create.add_argument("--organization", default=None)
    ca_create.add_argument("--days", type=int, default=None, help="Validity in days (default: 3650)")

    ca_list = ca_sub.add_parser("list", help="List CAs")
    ca_list.add_argument("--json", action="store_true")

    ca_delete = ca_sub.add_parser("delete", help="Delete a CA (issued certificates are kept)")
    ca_delete.add_argument("name")

    ca_inspect = ca_sub.add_parser("inspect", help="Show CA certificate details")
    ca_inspect.add_argument("name")
    ca_inspect.add_argument("--json", action="store_true")

    ca_install = ca_sub.add_parser("install", help="Install a CA into this host's trust store")
    ca_install.add_argument("name")

    ca_installer = ca_sub.add_parser("installer", help="Build an installer archive for other machines")
    ca_installer.add_argument("name")
    ca_installer.add_argument("--output", default=None, help="Write the archive here instead of the exports directory")

    cert = sub.add_parser("cert", help="Manage leaf certificates")
    cert_sub = cert.add_subparsers(dest="cert_command", required=True)

    cert_create = cert_sub.add_parser("create", help="Issue a certificate signed by a CA")
    cert_create.add_argument("common_name")
    cert_create.add_argument("--ca", required=True, dest="issuer", help="Issuing CA name")
    cert_create.add_argument(
        "--san",
        action="append",
        default=[],
        help="DNS name or IP address; repeat or separate with commas",
    )
    cert_create.add_argument("--days", type=int, default=None, help="Validity in days (default: 730)")

    cert_list = cert_sub.add_parser("list", help="List certificates")
    cert_list.add_argument("--ca", default=None, dest="issuer", help="Only certificates issued by this CA")
    cert_list.add_argument("--json", action="store_true")

    cert_delete = cert_sub.add_parser("delete", help="Delete a certificate and its key")
    cert_delete.add_argument("identifier")

    cert_inspect = cert_sub.add_parser("inspect", help="Show certificate details")
    cert_inspect.add_argument("identifier")
    cert_inspect.add_argument("--json", action="store_true")

    cert_export = cert_sub.add_parser("export", help="Export certificate, CA and key as PKCS#12")
    cert_export.add_argument("identifier")
    cert_export.add_argument(
        "--password-env",
        default=None,
        help="Read the bundle password from this environment variable",
    )
    cert_export.add_argument("--output", default=None, help="Write the bundle here instead of the exports directory")

    cert_orphans = cert_sub.add_parser("orphans", help="List certificates whose CA is missing or was replaced")
    cert_orphans.add_argument("--json", action="store_true")

    sub.add_parser("privileged", help="Report whether trust-store installation is permitted")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {message}", file=stderr)
    return code


def _print_list(items: list[str], as_json: bool, stdout) -> int:
    if as_json:
        print(json.dumps(items), file=stdout)
    else:
        for item in items:
            print(item, file=stdout)
    return EXIT_SUCCESS


def _print_details(details, as_json: bool, stdout) -> int:
    if as_json:
        print(details.model_dump_json(indent=2), file=stdout)
        return EXIT_SUCCESS

    lines = [
        ("Identifier", details.identifier),
        ("Subject CN", details.subject_common_name),
        ("Issuer CN", details.issuer_common_name),
        ("Subject", ", ".join(f"{k}={v}" for k, v in details.subject.items())),
        ("Not before", details.not_valid_before.isoformat()),
        ("Not after", details.not_valid_after.isoformat()),
        ("Serial", f"{details.serial_number} (0x{details.serial_number_hex})"),
        ("DNS SANs", ", ".join(details.dns_names) or "-"),
        ("IP SANs", ", ".join(details.ip_addresses) or "-"),
        ("CA", "yes" if details.is_ca else "no"),
        ("SHA-256", details.fingerprint_sha256),
        ("Valid now", "yes" if details.valid else "no"),
    ]
    if details.issuer_name is not None:
        lines.append(("Issued by", details.issuer_name + (" (orphaned)" if details.orphaned else "")))
    for label, value in lines:
        print(f"{label + ':':<12} {value}", file=stdout)
    return EXIT_SUCCESS


def _write_file(path: str, data: bytes) -> Path:
    target = Path(path).expanduser()
    try:
        target.write_bytes(data)
    except OSError as e:
        raise StorageError(f"cannot write {target}: {e}", entity=str(target), operation="write output") from e
    return target


def _run_ca(args, service: PKIService, stdout) -> int:
    if args.ca_command == "create":
        subject = {
            "common_name": args.common_name,
            "country": args.country,
            "state": args.state,
            "locality": args.locality,
            "organization": args.organization,
        }
        name = service.create_ca(subject, args.days)
        print(f"Created CA '{name}'", file=stdout)
        return EXIT_SUCCESS

    if args.ca_command == "list":
        return _print_list(service.list_cas(), args.json, stdout)

    if args.ca_command == "delete":
        orphans = service.list_certificates(issuer_ca_name=args.name)
        service.delete_ca(args.name)
        print(f"Deleted CA '{args.name}'", file=stdout)
        if orphans:
            print(f"{len(orphans)} certificate(s) are now orphaned", file=stdout)
        return EXIT_SUCCESS

    if args.ca_command == "inspect":
        return _print_details(service.inspect_ca(args.name), args.json, stdout)

    if args.ca_command == "install":
        result = service.install_ca(args.name)
        if result.already_installed:
            print(f"CA '{args.name}' is already trusted ({result.trust_store})", file=stdout)
        else:
            print(f"Installed CA '{args.name}' into the {result.trust_store} trust store", file=stdout)
        return EXIT_SUCCESS

    if args.ca_command == "installer":
        if args.output:
            artifact = service.generate_installer(args.name)
            path = _write_file(args.output, artifact.content)
        else:
            path = service.write_installer(args.name)
        print(f"Installer written to {path}", file=stdout)
        return EXIT_SUCCESS

    raise AssertionError(f"unhandled ca command: {args.ca_command}")


def _run_cert(args, service: PKIService, stdout, stderr) -> int:
    if args.cert_command == "create":
        identifier = service.create_certificate(args.common_name, args.san, args.issuer, args.days)
        print(f"Issued certificate '{identifier}'", file=stdout)
        return EXIT_SUCCESS

    if args.cert_command == "list":
        return _print_list(service.list_certificates(args.issuer), args.json, stdout)

    if args.cert_command == "delete":
        service.delete_certificate(args.identifier)
        print(f"Deleted certificate '{args.identifier}'", file=stdout)
        return EXIT_SUCCESS

    if args.cert_command == "inspect":
        return _print_details(service.inspect_certificate(args.identifier), args.json, stdout)

    if args.cert_command == "export":
        password = ""
        if args.password_env:
            if args.password_env not in os.environ:
                return _print_error(
                    stderr, "error", f"environment variable {args.password_env} is not set",
                    code=EXIT_VALIDATION_ERROR
                )
            password = os.environ[args.password_env]
        if not password:
            print("warning: exporting without a password; the private key is not encrypted", file=stderr)

        if args.output:
            path = _write_file(args.output, service.export_bundle(args.identifier, password))
        else:
            path = service.write_bundle(args.identifier, password)
        print(f"Bundle written to {path}", file=stdout)
        return EXIT_SUCCESS

    if args.cert_command == "orphans":
        return _print_list(service.list_orphaned_certificates(), args.json, stdout)

    raise AssertionError(f"unhandled cert command: {args.cert_command}")


def main(argv: Optional[Sequence[str]] = None, *, stdout=sys.stdout, stderr=sys.stderr,
         service: Optional[PKIService] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    overrides = {}
    if args.output_dir:
        overrides["output_dir"] = args.output_dir
    if args.log_level:
        overrides["log_level"] = args.log_level

    try:
        settings = service.settings if service is not None else PKISettings.from_env(**overrides)
    except PKIError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == "serve":
        from .pki_service.main import serve
        serve(host=args.host, port=args.port, settings=settings)
        return EXIT_SUCCESS

    try:
        service = service or PKIService(settings)

        if args.command == "privileged":
            privileged = service.is_privileged()
            print(f"{'privileged' if privileged else 'not privileged'} ({service.trust_store.name})", file=stdout)
            return EXIT_SUCCESS if privileged else EXIT_PERMISSION_DENIED

        if args.command == "ca":
            return _run_ca(args, service, stdout)

        if args.command == "cert":
            return _run_cert(args, service, stdout, stderr)
    except PKIError as exc:
        return _print_error(stderr, exc.kind, str(exc), code=EXIT_CODE_BY_KIND.get(exc.kind, EXIT_FAILURE))

    parser.error(f"unknown command: {args.command}")
    return EXIT_VALIDATION_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
