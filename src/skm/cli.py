"""
Command-line interface for skm.

Provides commands for listing, inspecting, generating and deleting SSH keys,
and for exporting them to and importing them from encrypted backups.

Uses Python's argparse module (no external CLI libraries).

Exit Codes:
    0   success
    1   general failure (including per-key import errors)
    2   configuration error
    3   wrong passphrase or tampered backup
    4   file is not an skm backup, or its contents are invalid
    130 interrupted
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

from skm import __version__
from skm.backup import (
    BACKUP_EXTENSION,
    BackupManager,
    ExportOptions,
    ImportOptions,
    MergeStrategy,
)
from skm.config.settings import Settings, ensure_ssh_dir, load_config
from skm.crypto.encryption import EncryptionService
from skm.environment import SystemEnvironment
from skm.errors import (
    AuthenticationError,
    ConfigurationError,
    EnvelopeFormatError,
    KeyNotFoundError,
    SchemaError,
    SkmError,
)
from skm.keys import KeyGenerator, KeyGenOptions, KeyScanner, KeyType

# Set up logging
logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_AUTH_ERROR = 3
EXIT_FORMAT_ERROR = 4

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the skm CLI."""
    parser = argparse.ArgumentParser(
        prog="skm",
        description="SSH key manager with encrypted backup and restore",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"skm {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.skm/config.yaml)",
    )

    parser.add_argument(
        "--ssh-dir",
        metavar="DIR",
        dest="ssh_dir",
        help="Path to SSH directory (default: ~/.ssh)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="List all SSH keys",
        description="List the key pairs found in the SSH directory.",
    )
    list_parser.add_argument(
        "--format", "-f",
        choices=["table", "json", "names"],
        default="table",
        help="Output format (default: table)",
    )
    list_parser.set_defaults(func=cmd_list)

    # show command
    show_parser = subparsers.add_parser(
        "show",
        help="Show details of a key",
        description="Show type, status, fingerprint and public key of a key.",
    )
    show_parser.add_argument("name", metavar="NAME", help="Key name (e.g. id_ed25519)")
    show_parser.set_defaults(func=cmd_show)

    # generate command
    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate a new SSH key pair",
        description="Generate a new key pair in OpenSSH format.",
    )
    generate_parser.add_argument(
        "--type", "-t",
        dest="key_type",
        choices=["ed25519", "rsa", "ecdsa"],
        default="ed25519",
        help="Key type (default: ed25519)",
    )
    generate_parser.add_argument(
        "--filename", "-f",
        metavar="NAME",
        help="Key file name (default: id_<type>)",
    )
    generate_parser.add_argument(
        "--comment", "-c",
        metavar="TEXT",
        help="Key comment (default: user@host)",
    )
    generate_parser.add_argument(
        "--passphrase", "-p",
        metavar="TEXT",
        help="Passphrase protecting the private key ('-' to read from stdin)",
    )
    generate_parser.add_argument(
        "--bits", "-b",
        type=int,
        default=4096,
        help="Key size for RSA keys (default: 4096)",
    )
    generate_parser.set_defaults(func=cmd_generate)

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export keys to an encrypted backup",
        description="Write selected keys to a passphrase-encrypted .skm backup.",
    )
    export_parser.add_argument(
        "--output", "-o",
        metavar="PATH",
        help="Backup file path (default: <export_dir>/skm-backup-<timestamp>.skm)",
    )
    export_parser.add_argument(
        "--passphrase", "-p",
        metavar="TEXT",
        help="Encryption passphrase ('-' to read from stdin; prompted if omitted)",
    )
    export_parser.add_argument(
        "--key", "-k",
        dest="keys",
        action="append",
        default=[],
        metavar="NAME",
        help="Export only this key (can be repeated)",
    )
    export_parser.add_argument(
        "--public-only",
        action="store_true",
        dest="public_only",
        help="Export public keys only (no private keys)",
    )
    export_parser.add_argument(
        "--description", "-d",
        metavar="TEXT",
        help="Description stored in the backup",
    )
    export_parser.add_argument(
        "--armor",
        action="store_true",
        help="Write an ASCII-armored backup",
    )
    export_parser.set_defaults(func=cmd_export)

    # import command
    import_parser = subparsers.add_parser(
        "import",
        help="Import keys from an encrypted backup",
        description="Merge the keys in an .skm backup into the SSH directory.",
    )
    import_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file (.skm)",
    )
    import_parser.add_argument(
        "--passphrase", "-p",
        metavar="TEXT",
        help="Decryption passphrase ('-' to read from stdin; prompted if omitted)",
    )
    import_parser.add_argument(
        "--strategy", "-s",
        choices=[strategy.value for strategy in MergeStrategy],
        help="What to do when a key already exists (default: from config, usually skip)",
    )
    import_parser.add_argument(
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="Show what would be imported without writing anything",
    )
    import_parser.add_argument(
        "--json",
        action="store_true",
        help="Output the import report as JSON",
    )
    import_parser.set_defaults(func=cmd_import)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show backup information",
        description="Decrypt a backup and show its metadata and key names.",
    )
    info_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file (.skm)",
    )
    info_parser.add_argument(
        "--passphrase", "-p",
        metavar="TEXT",
        help="Decryption passphrase ('-' to read from stdin; prompted if omitted)",
    )
    info_parser.set_defaults(func=cmd_info)

    # delete command
    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete an SSH key",
        description="Delete a private key and its public key.",
    )
    delete_parser.add_argument("name", metavar="NAME", help="Key name")
    delete_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    delete_parser.set_defaults(func=cmd_delete)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def read_passphrase(value: str | None, prompt: str, confirm: bool = False) -> str | None:
    """
    Resolve a passphrase from an argument, stdin, or an interactive prompt.

    Args:
        value: The --passphrase argument. "-" reads one line from stdin.
        prompt: Prompt shown when asking interactively.
        confirm: Ask twice when prompting interactively.

    Returns:
        The passphrase, or None if the confirmation did not match.
    """
    if value == "-":
        return sys.stdin.readline().rstrip("\r\n")
    if value:
        return value

    passphrase = getpass.getpass(prompt)
    if confirm:
        again = getpass.getpass("Confirm passphrase: ")
        if again != passphrase:
            return None
    return passphrase


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)
    if args.ssh_dir:
        settings.ssh_dir = args.ssh_dir
    return settings


def _backup_manager(settings: Settings) -> BackupManager:
    return BackupManager(
        ssh_dir=Path(settings.ssh_dir).expanduser(),
        encryption=EncryptionService(iterations=settings.backup.kdf_iterations),
    )


def cmd_list(args: argparse.Namespace) -> int:
    """List the keys in the SSH directory."""
    settings = _load_settings(args)
    records = KeyScanner(Path(settings.ssh_dir).expanduser()).scan()

    if args.format == "json":
        output(json.dumps([record.to_summary() for record in records], indent=2), force=True)
        return 0

    if args.format == "names":
        for record in records:
            output(record.name, force=True)
        return 0

    if not records:
        output("No SSH keys found.")
        return 0

    output(f"{'Name':<24} {'Type':<10} {'Status':<18} Comment")
    output("-" * 72)
    for record in records:
        output(
            f"{record.name:<24} {record.key_type.label:<10} "
            f"{record.status.label:<18} {record.comment or '-'}"
        )
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show details of a single key."""
    settings = _load_settings(args)
    record = KeyScanner(Path(settings.ssh_dir).expanduser()).find_key_by_name(args.name)
    if record is None:
        raise KeyNotFoundError(f"Key not found: {args.name}")

    modified = record.modified_at.strftime("%Y-%m-%d %H:%M:%S") if record.modified_at else "Unknown"

    output(f"Name:        {record.name}")
    output(f"Type:        {record.key_type.label}")
    output(f"Status:      {record.status.label}")
    output(f"Private:     {record.path}")
    output(f"Public:      {record.public_path}")
    output(f"Fingerprint: {record.fingerprint or 'N/A'}")
    output(f"Comment:     {record.comment or 'N/A'}")
    output(f"Modified:    {modified}")

    public_text = record.public_text()
    if public_text:
        output()
        output("Public key content:")
        output(public_text.strip(), force=True)
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    """Generate a new key pair."""
    settings = _load_settings(args)
    ssh_dir = ensure_ssh_dir(settings)

    key_type = KeyType(args.key_type)
    passphrase = None
    if args.passphrase is not None:
        passphrase = read_passphrase(args.passphrase, "Key passphrase (empty for none): ") or None

    options = KeyGenOptions(
        key_type=key_type,
        filename=args.filename or key_type.default_filename,
        passphrase=passphrase,
        bits=args.bits if key_type is KeyType.RSA else None,
    )
    if args.comment is not None:
        options.comment = args.comment

    record = KeyGenerator(ssh_dir).generate(options)

    output(f"Generated key: {record.name}")
    output(f"  Private:     {record.path}")
    output(f"  Public:      {record.public_path}")
    output(f"  Fingerprint: {record.fingerprint or 'N/A'}")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export keys to an encrypted backup."""
    settings = _load_settings(args)
    manager = _backup_manager(settings)

    records = KeyScanner(manager.ssh_dir).scan()
    if not records:
        output_error("No keys to export.")
        return 1

    options = ExportOptions(
        description=args.description,
        public_only=args.public_only,
        selected_names=set(args.keys) if args.keys else None,
        armor=args.armor,
    )

    selected = manager.select_records(records, options)
    if args.keys:
        known = {record.name for record in records}
        for name in args.keys:
            if name not in known:
                output_error(f"Warning: key not found, skipping: {name}")
    if not selected:
        output_error("None of the selected keys were found.")
        return 1

    if args.output:
        output_path = Path(args.output).expanduser()
    else:
        timestamp = SystemEnvironment().now().strftime("%Y%m%d-%H%M%S")
        output_path = Path(settings.export_dir).expanduser() / f"skm-backup-{timestamp}.{BACKUP_EXTENSION}"

    passphrase = read_passphrase(args.passphrase, "Enter encryption passphrase: ", confirm=True)
    if passphrase is None:
        output_error("Passphrases do not match.")
        return 1
    if len(passphrase) < settings.backup.min_passphrase_length:
        output_error(
            f"Passphrase must be at least {settings.backup.min_passphrase_length} characters."
        )
        return 1

    manager.export(records, output_path, passphrase, options)

    output(f"Exported {len(selected)} keys to {output_path}")
    if args.public_only:
        output("  (public keys only)")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import keys from an encrypted backup."""
    settings = _load_settings(args)
    manager = _backup_manager(settings)

    backup_path = Path(args.backup_file).expanduser()
    if not backup_path.exists():
        output_error(f"Backup file not found: {backup_path}")
        return 1

    strategy = MergeStrategy.parse(args.strategy) if args.strategy else settings.backup.strategy
    passphrase = read_passphrase(args.passphrase, "Enter decryption passphrase: ")

    report = manager.import_backup(
        backup_path,
        passphrase or "",
        ImportOptions(strategy=strategy, dry_run=args.dry_run),
    )

    if args.json:
        output(json.dumps(report.to_dict(), indent=2), force=True)
        return 1 if report.has_errors else 0

    for warning in report.warnings:
        output_error(f"Warning: {warning}")

    if report.dry_run:
        output("Dry run - nothing was written.")
        _print_bucket("Would import", report.imported)
        _print_bucket("Would skip (already exist)", report.skipped)
        _print_bucket("Would overwrite", report.overwritten)
    else:
        output("Import complete:")
        _print_bucket("Imported", report.imported)
        _print_bucket("Skipped", report.skipped)
        _print_bucket("Overwritten", report.overwritten)

    if report.errors:
        output_error(f"  Errors: {len(report.errors)}")
        for name, message in report.errors:
            output_error(f"    - {name}: {message}")
        return 1

    return 0


def _print_bucket(title: str, names: list[str]) -> None:
    output(f"  {title}: {len(names)}")
    for name in names:
        output(f"    - {name}")


def cmd_info(args: argparse.Namespace) -> int:
    """Show the metadata and contents of a backup."""
    settings = _load_settings(args)
    manager = _backup_manager(settings)

    backup_path = Path(args.backup_file).expanduser()
    passphrase = read_passphrase(args.passphrase, "Enter decryption passphrase: ")
    container = manager.read_container(backup_path, passphrase or "")
    metadata = container.metadata

    output(f"Backup file: {backup_path}")
    output(f"  Version:     {metadata.schema_version}")
    output(f"  Created:     {metadata.created_at.strftime('%Y-%m-%d %H:%M:%S %z')}")
    output(f"  Created by:  {metadata.username}@{metadata.hostname}")
    output(f"  Description: {metadata.description or '-'}")
    output(f"  Keys:        {metadata.key_count}")
    for entry in container.entries:
        halves = []
        if entry.private_key is not None:
            halves.append("private")
        if entry.public_key is not None:
            halves.append("public")
        output(f"    - {entry.name} ({entry.key_type.label}; {', '.join(halves) or 'empty'})")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a key pair."""
    settings = _load_settings(args)
    record = KeyScanner(Path(settings.ssh_dir).expanduser()).find_key_by_name(args.name)
    if record is None:
        raise KeyNotFoundError(f"Key not found: {args.name}")

    if not args.force:
        response = input(f"Delete key '{record.name}' and its public key? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Cancelled.")
            return 0

    for path in (record.path, record.public_path):
        if path is not None and path.exists():
            path.unlink()
            logger.debug(f"Deleted {path}")

    output(f"Deleted key: {record.name}")
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the skm CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except AuthenticationError as e:
        output_error(f"Wrong passphrase: {e}")
        sys.exit(EXIT_AUTH_ERROR)
    except (EnvelopeFormatError, SchemaError) as e:
        output_error(f"Not a valid skm backup: {e}")
        sys.exit(EXIT_FORMAT_ERROR)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)
    except (SkmError, OSError, ValueError) as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
