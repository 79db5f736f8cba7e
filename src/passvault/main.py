#!/usr/bin/env python3
"""passvault - A local, single-user encrypted credential vault.

Every command opens the vault with the master password, performs one
operation through VaultManager and locks again before exiting.
"""

import argparse
import getpass
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from .audit import AuditLogger
from .crypto import PBKDF2_ITERATIONS
from .errors import VaultError
from .manager import VaultManager
from .models import CredentialKind, CredentialPatch
from .store import VaultStore

# Constants
DEFAULT_VAULT = Path.home() / ".passvault" / "vault.db"
AUDIT_LOG_NAME = "audit.log"
PASSWORD_ENV = "PASSVAULT_PASSWORD"
PATH_ENV = "PASSVAULT_PATH"
MASK = "********"
KDF_ITERATIONS = PBKDF2_ITERATIONS  # Cost for newly created vaults


def get_vault_path(args_vault=None):
    """Get vault path from args, then PASSVAULT_PATH, then the default."""
    if args_vault:
        return Path(args_vault)
    env_path = os.environ.get(PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_VAULT


def get_password(prompt="Enter master password: "):
    """Get password from environment variable or prompt.

    Checks PASSVAULT_PASSWORD first for automation/testing, then falls back
    to an interactive getpass prompt.

    Security note: environment variables may be visible in process lists.
    Only use PASSVAULT_PASSWORD in isolated environments.
    """
    env_password = os.environ.get(PASSWORD_ENV)
    if env_password:
        return env_password
    return getpass.getpass(prompt)


def build_manager(vault_path):
    """Create a locked manager for the vault at vault_path."""
    vault_path = Path(vault_path)
    audit_logger = AuditLogger(vault_path.parent / AUDIT_LOG_NAME)
    return VaultManager(
        VaultStore(vault_path),
        audit_logger=audit_logger,
        kdf_iterations=KDF_ITERATIONS,
    )


def open_vault(args):
    """Build a manager and unlock it, exiting on a wrong password."""
    manager = build_manager(get_vault_path(args.vault))
    try:
        unlocked = manager.unlock(get_password())
    except VaultError:
        manager.close()
        raise

    if not unlocked:
        manager.close()
        print("Invalid password", file=sys.stderr)
        sys.exit(1)
    return manager


def parse_fields(pairs):
    """Turn ['key=value', ...] into a dict."""
    fields = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            print(f"Invalid field (expected KEY=VALUE): {pair}", file=sys.stderr)
            sys.exit(1)
        fields[key] = value
    return fields


def cmd_unlock(args):
    """Create the vault, or check the master password against it."""
    vault_path = get_vault_path(args.vault)
    existed = vault_path.exists()

    manager = open_vault(args)
    count = len(manager.list_credentials())
    manager.close()

    if existed:
        print(f"Vault unlocked ({count} credential{'s' if count != 1 else ''})")
    else:
        print(f"Vault created at {vault_path}")


def cmd_add(args):
    """Add a password entry."""
    manager = open_vault(args)
    try:
        secret = getpass.getpass("Enter secret: ")
        credential_id = manager.add_password(
            args.service,
            args.username,
            secret,
            notes=args.note or "",
            tags=args.tag or [],
            custom_fields=parse_fields(args.field),
        )
    finally:
        manager.close()

    print(f"Saved {credential_id}")


def cmd_add_key(args):
    """Add an API key entry."""
    manager = open_vault(args)
    try:
        secret = getpass.getpass("Enter API key: ")
        credential_id = manager.add_api_key(
            args.service,
            args.account,
            secret,
            notes=args.note or "",
            is_active=not args.inactive,
            tags=args.tag or [],
            custom_fields=parse_fields(args.field),
        )
    finally:
        manager.close()

    print(f"Saved {credential_id}")


def cmd_list(args):
    """List entries, optionally filtered by tag."""
    manager = open_vault(args)
    try:
        credentials = manager.list_credentials()
    finally:
        manager.close()

    for credential in credentials:
        if args.tag and not credential.has_tag(args.tag):
            continue
        kind = "key" if credential.kind == CredentialKind.API_KEY else "password"
        tags = ",".join(credential.tags)
        print(f"{credential.id}  {kind:<8}  {credential.service}  {credential.principal}  {tags}".rstrip())


def cmd_show(args):
    """Show one entry. The secret is masked unless --show is given."""
    manager = open_vault(args)
    try:
        credential = manager.get_credential(args.id)
    finally:
        manager.close()

    secret = credential.secret.reveal().decode("utf-8", errors="replace") if args.show else MASK
    principal_label = "Account" if credential.kind == CredentialKind.API_KEY else "Username"

    print(f"ID:       {credential.id}")
    print(f"Service:  {credential.service}")
    print(f"{principal_label + ':':<10}{credential.principal}")
    print(f"Secret:   {secret}")
    if credential.kind == CredentialKind.API_KEY:
        print(f"Active:   {'yes' if credential.is_active else 'no'}")
    if credential.notes:
        print(f"Notes:    {credential.notes}")
    if credential.tags:
        print(f"Tags:     {', '.join(credential.tags)}")
    for key, value in credential.custom_fields.items():
        print(f"  {key}: {value}")
    print(f"Created:  {credential.created_at.isoformat()}")
    print(f"Updated:  {credential.updated_at.isoformat()}")
    credential.wipe()


def cmd_update(args):
    """Change selected fields of an entry."""
    manager = open_vault(args)
    try:
        custom_fields = None
        if args.field:
            custom_fields = dict(manager.get_credential(args.id).custom_fields)
            custom_fields.update(parse_fields(args.field))

        is_active = None
        if args.active:
            is_active = True
        elif args.inactive:
            is_active = False

        patch = CredentialPatch(
            service=args.service,
            principal=args.username,
            secret=getpass.getpass("Enter new secret: ") if args.secret else None,
            notes=args.note,
            tags=args.tag,
            is_active=is_active,
            custom_fields=custom_fields,
        )
        if not patch.present_fields():
            print("Nothing to update", file=sys.stderr)
            sys.exit(1)
        manager.update_credential(args.id, patch)
    finally:
        manager.close()

    print("Updated.")


def cmd_rm(args):
    """Delete an entry."""
    manager = open_vault(args)
    try:
        manager.remove_credential(args.id)
    finally:
        manager.close()

    print("Deleted.")


def cmd_reset(args):
    """Erase the vault permanently."""
    vault_path = get_vault_path(args.vault)

    if not args.yes:
        print("Refusing to reset without --yes. This permanently erases every credential.",
              file=sys.stderr)
        sys.exit(1)

    manager = build_manager(vault_path)
    manager.reset()
    print(f"Vault erased: {vault_path}")


def get_version():
    try:
        return version("passvault")
    except PackageNotFoundError:
        return "unknown"


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='passvault',
        description="passvault - Local encrypted credential vault"
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f"%(prog)s {get_version()}"
    )
    parser.add_argument('--vault', help='Path to vault file (default: ~/.passvault/vault.db)')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # unlock
    unlock_parser = subparsers.add_parser('unlock', help='Create the vault or verify the master password')
    unlock_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # add
    add_parser = subparsers.add_parser('add', help='Add a password entry')
    add_parser.add_argument('service', help='Service label')
    add_parser.add_argument('username', help='Username')
    add_parser.add_argument('--note', help='Optional note')
    add_parser.add_argument('--tag', action='append', help='Tag (can specify multiple)')
    add_parser.add_argument('--field', action='append', help='Custom field KEY=VALUE (can specify multiple)')
    add_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # add-key
    key_parser = subparsers.add_parser('add-key', help='Add an API key entry')
    key_parser.add_argument('service', help='Service label')
    key_parser.add_argument('account', help='Account name')
    key_parser.add_argument('--note', help='Optional note')
    key_parser.add_argument('--inactive', action='store_true', help='Mark the key inactive')
    key_parser.add_argument('--tag', action='append', help='Tag (can specify multiple)')
    key_parser.add_argument('--field', action='append', help='Custom field KEY=VALUE (can specify multiple)')
    key_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # list
    list_parser = subparsers.add_parser('list', help='List entries')
    list_parser.add_argument('--tag', help='Only entries with this tag')
    list_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # show
    show_parser = subparsers.add_parser('show', help='Show an entry')
    show_parser.add_argument('id', help='Credential id')
    show_parser.add_argument('--show', action='store_true', help='Print the secret instead of masking it')
    show_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # update
    update_parser = subparsers.add_parser('update', help='Change fields of an entry')
    update_parser.add_argument('id', help='Credential id')
    update_parser.add_argument('--service', help='New service label')
    update_parser.add_argument('--username', help='New username or account')
    update_parser.add_argument('--note', help='New note')
    update_parser.add_argument('--tag', action='append', help='Replace tags (can specify multiple)')
    update_parser.add_argument('--field', action='append', help='Set custom field KEY=VALUE')
    update_parser.add_argument('--secret', action='store_true', help='Prompt for a new secret')
    active_group = update_parser.add_mutually_exclusive_group()
    active_group.add_argument('--active', action='store_true', help='Mark an API key active')
    active_group.add_argument('--inactive', action='store_true', help='Mark an API key inactive')
    update_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # rm
    rm_parser = subparsers.add_parser('rm', help='Delete an entry')
    rm_parser.add_argument('id', help='Credential id')
    rm_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    # reset
    reset_parser = subparsers.add_parser('reset', help='Permanently erase the vault')
    reset_parser.add_argument('--yes', action='store_true', help='Confirm the irreversible reset')
    reset_parser.add_argument('--vault', dest='vault', default=argparse.SUPPRESS, help='Path to vault file')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        'unlock': cmd_unlock,
        'add': cmd_add,
        'add-key': cmd_add_key,
        'list': cmd_list,
        'show': cmd_show,
        'update': cmd_update,
        'rm': cmd_rm,
        'reset': cmd_reset,
    }

    try:
        commands[args.command](args)
    except VaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
