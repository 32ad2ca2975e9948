#!/usr/bin/env python3
"""
labctl command-line interface.

Manages an account on svc.lab47.dev and repositories on the vcr.pub
registry.

Example usage:
$ labctl login -e me@example.com
$ labctl namespaces
$ labctl vcr create-repo myns/myrepo
$ labctl vcr util read-manifest vcr.pub/myns/myrepo:latest

Optional env vars:
LAB47_API_BASE
LAB47_HOME
SIGSTORE_ROOT_FILE
"""
import argparse
import json
import sys
import uuid
import webbrowser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from labctl import __version__, credit, fulcioroots, oidc, registry, signatures
from labctl.api import ApiClient
from labctl.config import Config, Settings, load_config, save_config
from labctl.errors import LabctlError, UsageError
from labctl.logging import get_labctl_logger, setup_labctl_logger
from labctl.prompt import read_secret
from labctl.types import (
    AccountInfo,
    CreditAddRequest,
    CreditAddResponse,
    ListNamespaces,
    MachineAccountCreateRequest,
    MachineAccountCreateResponse,
    RepoSettingsApply,
    TokenResponse,
)

LOGGER = get_labctl_logger()


@dataclass
class Context:
    """
    Everything a command needs besides its own arguments.
    """

    settings: Settings
    client: ApiClient
    payment_timeout: float = credit.DEFAULT_TIMEOUT

    def load_config(self) -> Config:
        return load_config(self.settings.config_path)

    def save_session(self, email: str, token: str) -> None:
        config = self.load_config()
        config.account.email = email
        config.account.token = token
        save_config(config, self.settings.config_path)

    def require_token(self) -> str:
        return self.load_config().require_token()

    @property
    def service_host(self) -> str:
        return urlparse(self.settings.api_base).netloc or self.settings.api_base


Handler = Callable[[argparse.Namespace, Context], int]


@dataclass(frozen=True)
class Flag:
    names: Tuple[str, ...]
    options: Dict[str, Any] = field(default_factory=dict)


def flag(*names: str, **options: Any) -> Flag:
    return Flag(names=names, options=options)


@dataclass(frozen=True)
class Command:
    path: Tuple[str, ...]
    help: str
    handler: Handler
    flags: Tuple[Flag, ...] = ()


def create_account(args: argparse.Namespace, ctx: Context) -> int:
    if not args.email:
        raise UsageError("email (-e) is required")
    if not args.namespace:
        raise UsageError("namespace (-n) is required")
    password = read_secret(args.password)

    print("Creating account...")
    info = AccountInfo(email=args.email, namespace=args.namespace, password=password)
    resp = ctx.client.post("/api/v1/account", info, TokenResponse)

    ctx.save_session(args.email, resp.token)
    print("Account created and logged into!")
    return 0


def login(args: argparse.Namespace, ctx: Context) -> int:
    if not args.email:
        raise UsageError("email (-e) is required")
    password = read_secret(args.password)

    resp = ctx.client.basic_get(args.email, password, "/api/v1/token", TokenResponse)

    ctx.save_session(args.email, resp.token)
    print(f"Logged into {ctx.service_host}!")
    return 0


def namespaces(args: argparse.Namespace, ctx: Context) -> int:
    token = ctx.require_token()
    listing = ctx.client.token_get(token, "/api/v1/namespaces", ListNamespaces)

    for ns in listing.namespaces:
        print("[namespace]")
        print(f"   name: {ns.name}")
        print(f"credits: ${ns.credit}")
        print("  repos:")
        for repo in ns.repos:
            print(f"  - name: {repo.name}")
            print(f"    created_at: {repo.created.isoformat()}")
            print(f"    tags: {repo.total_tags}")
    return 0


def machine_account_create(args: argparse.Namespace, ctx: Context) -> int:
    if not args.namespace:
        raise UsageError("namespace (-n) is required")
    token = ctx.require_token()

    name = args.name or f"machine-{uuid.uuid4()}"
    print(f"Creating machine account '{name}'...")

    request = MachineAccountCreateRequest(
        name=name, description=args.description or "", write=args.enable_write
    )
    path = f"/api/v1/namespace/{args.namespace}/machine-account"
    resp = ctx.client.token_put(token, path, request, MachineAccountCreateResponse)

    print("Machine account created!")
    print(f"Token for account: {resp.token}")
    return 0


def _open_browser(url: str) -> bool:
    try:
        return webbrowser.open(url)
    except webbrowser.Error:
        LOGGER.debug("Unable to open browser", exc_info=True)
        return False


def credit_add(args: argparse.Namespace, ctx: Context) -> int:
    token = ctx.require_token()
    if not args.namespace:
        raise UsageError("name of namespace required")
    if args.dollars <= 0:
        raise UsageError("number of US Dollars to add to namespace required")

    print(f"Requesting ${args.dollars} USD to namespace {args.namespace}...")

    listener = credit.open_listener()
    try:
        request = CreditAddRequest(
            namespace=args.namespace,
            credits=args.dollars,
            local_port=listener.port if listener is not None else None,
        )
        resp = ctx.client.token_put(token, "/api/v1/credit/add", request, CreditAddResponse)

        print("Opening browser to enter payment information!")
        if not _open_browser(resp.url):
            print(f"Error opening browser. Please go to:\n{resp.url}")
            return 0

        if listener is None:
            print("Use payment screen to complete payment and credits will be added to account.")
            return 0

        print("Waiting for payment to complete...")
        result = listener.wait(ctx.payment_timeout)
    finally:
        if listener is not None:
            listener.close()

    if result.status == "success":
        print(f"Credits added! Current balance: {result.balance}")
    elif result.status == "cancel":
        print("Payment canceled, no credits added.")
    elif result.status == "":
        print("Timed out waiting for signal of successful payment.")
        print("Credits may be added anyway, check `labctl namespaces`.")
    else:
        print(f"Unknown payment status '{result.status}', check `labctl namespaces`.")
    return 0


def create_repo(args: argparse.Namespace, ctx: Context) -> int:
    name = registry.validate_repo_name(args.name)
    token = ctx.require_token()

    print("Creating repository...")
    ctx.client.token_post(token, f"/vcr/v1/repo/{name}")

    print(f"Repository created: {name}")
    return 0


def update_repo(args: argparse.Namespace, ctx: Context) -> int:
    name = registry.validate_repo_name(args.name)
    if args.public and args.private:
        raise UsageError("set either -P or -R, not both")
    token = ctx.require_token()

    print("Updating repository settings...")
    settings = RepoSettingsApply()
    if args.private:
        settings.public = False
        print("=> Setting visibility to private")
    elif args.public:
        settings.public = True
        print("=> Setting visibility to public")

    ctx.client.token_put(token, f"/vcr/v1/repo/{name}/update-settings", settings)

    print(f"Updated {name}!")
    return 0


def docker_login(args: argparse.Namespace, ctx: Context) -> int:
    token = ctx.require_token()
    server = ctx.settings.registry_server

    print(f"Logging local docker into {server}...")
    registry.docker_login(server, token)
    return 0


def kubernetes_secret(args: argparse.Namespace, ctx: Context) -> int:
    token = ctx.require_token()
    secret = registry.kubernetes_secret(ctx.settings.registry_server, token, args.name)
    print(secret, end="")
    return 0


def _registry_password(args: argparse.Namespace) -> Optional[str]:
    if args.username and not args.password:
        return read_secret(None, prompt=f"Password for {args.username}: ")
    return args.password


def read_manifest(args: argparse.Namespace, ctx: Context) -> int:
    password = _registry_password(args)
    with registry.make_registry_auth_file(args.reference, args.username, password) as authfile:
        descriptor = registry.fetch_descriptor(args.reference, authfile)
        registry.check_media_type(descriptor.media_type)
        manifest = registry.fetch_manifest(args.reference, authfile)

    print("Descriptor:")
    print(
        json.dumps(
            {
                "annotations": descriptor.annotations,
                "digest": descriptor.digest,
                "media-type": descriptor.media_type,
            },
            indent=2,
        )
    )
    print("Manifest:")
    print(json.dumps(manifest, indent=2))
    return 0


def read_config(args: argparse.Namespace, ctx: Context) -> int:
    password = _registry_password(args)
    with registry.make_registry_auth_file(args.reference, args.username, password) as authfile:
        config = registry.fetch_config(args.reference, authfile)

    print(json.dumps(config, indent=2))
    return 0


def verify(args: argparse.Namespace, ctx: Context) -> int:
    password = _registry_password(args)
    roots = fulcioroots.load_roots(ctx.settings.home)
    result = signatures.verify_signatures(args.reference, roots, args.username, password)

    signatures.print_verification_header(result)
    signatures.print_verification(result)
    return 0


def trust_init(args: argparse.Namespace, ctx: Context) -> int:
    path = fulcioroots.trust_init(ctx.settings.home, Path(args.root))
    print(f"Trusted root installed at {path}")
    return 0


def personal_token(args: argparse.Namespace, ctx: Context) -> int:
    token = ctx.require_token()
    jwt = oidc.fetch_personal_token(ctx.client, token)
    print(jwt)

    if args.validate:
        claims = oidc.validate_token(jwt)
        print(json.dumps(claims, indent=2, sort_keys=True))
    return 0


def fulcio_cert(args: argparse.Namespace, ctx: Context) -> int:
    token = ctx.require_token()
    jwt = oidc.fetch_personal_token(ctx.client, token)
    cert = oidc.request_signing_cert(jwt)

    print(cert.chain)
    print(cert.sct)
    return 0


_REGISTRY_AUTH = (
    flag("-u", "--username", help="username to authenticate with"),
    flag("-p", "--password", help="password associated with username"),
    flag("reference", help="image reference"),
)

COMMANDS: List[Command] = [
    Command(
        ("create-account",),
        "creates a new account on svc.lab47.dev",
        create_account,
        (
            flag("-e", "--email", help="email address for account"),
            flag("-n", "--namespace", help="initial namespace to reserve"),
            flag("-p", "--password", help="password for account"),
        ),
    ),
    Command(
        ("login",),
        "log into svc.lab47.dev",
        login,
        (
            flag("-e", "--email", help="email address for account"),
            flag("-p", "--password", help="password for account"),
        ),
    ),
    Command(("namespaces",), "list available namespaces", namespaces),
    Command(
        ("machine-account", "create"),
        "create a new machine account",
        machine_account_create,
        (
            flag("-n", "--namespace", help="namespace the account belongs to"),
            flag("--name", help="name for machine account"),
            flag("-d", "--description", help="description of machine account"),
            flag(
                "--enable-write",
                action="store_true",
                help="allow the account to have write access",
            ),
        ),
    ),
    Command(
        ("credit", "add"),
        "add credit to a namespace",
        credit_add,
        (
            flag("-n", "--namespace", help="namespace to add credit to"),
            flag(
                "-d",
                "--credit",
                dest="dollars",
                type=int,
                default=0,
                help="how many USD to add in credits",
            ),
        ),
    ),
    Command(
        ("vcr", "create-repo"),
        "creates a new repository on vcr.pub",
        create_repo,
        (flag("name", nargs="?", help="repository name, in namespace/repo format"),),
    ),
    Command(
        ("vcr", "update-repo"),
        "update repository settings",
        update_repo,
        (
            flag("-P", "--public", action="store_true", help="change the repo to public"),
            flag("-R", "--private", action="store_true", help="change the repo to private"),
            flag("name", nargs="?", help="repository name, in namespace/repo format"),
        ),
    ),
    Command(
        ("vcr", "docker-login"),
        "log the local docker instance into vcr.pub",
        docker_login,
    ),
    Command(
        ("vcr", "kubernetes-secret"),
        "print out a kubernetes secret to access vcr.pub",
        kubernetes_secret,
        (flag("--name", default=registry.DEFAULT_SECRET_NAME, help="name of the secret"),),
    ),
    Command(
        ("vcr", "util", "read-manifest"),
        "print out the manifest for a given reference",
        read_manifest,
        _REGISTRY_AUTH,
    ),
    Command(
        ("vcr", "util", "read-config"),
        "print out the config for a given reference",
        read_config,
        _REGISTRY_AUTH,
    ),
    Command(
        ("vcr", "util", "verify"),
        "verify the signatures of a given reference",
        verify,
        _REGISTRY_AUTH,
    ),
    Command(
        ("vcr", "util", "trust-init"),
        "install the trusted TUF root used to fetch the Fulcio roots",
        trust_init,
        (flag("root", help="path to a trusted root.json"),),
    ),
    Command(
        ("token", "personal"),
        "print a personal OIDC token",
        personal_token,
        (flag("-V", "--validate", action="store_true", help="validate token for OIDC"),),
    ),
    Command(
        ("token", "fulcio-cert"),
        "request a signing certificate from Fulcio",
        fulcio_cert,
    ),
]


def build_parser(commands: Optional[List[Command]] = None) -> argparse.ArgumentParser:
    """
    Build the argument parser from the command table. Intermediate words of a
    command path ("vcr", "util", ...) become command groups.
    """
    parser = argparse.ArgumentParser(prog="labctl", description="lab47 account and registry CLI")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--version", action="version", version=f"labctl {__version__}")

    groups: Dict[Tuple[str, ...], Any] = {
        (): parser.add_subparsers(dest="command", metavar="COMMAND", required=True)
    }
    for command in commands if commands is not None else COMMANDS:
        for depth in range(1, len(command.path)):
            prefix = command.path[:depth]
            if prefix not in groups:
                group = groups[prefix[:-1]].add_parser(prefix[-1], help=f"{prefix[-1]} commands")
                groups[prefix] = group.add_subparsers(
                    dest="_".join(prefix) + "_command", metavar="COMMAND", required=True
                )

        sub = groups[command.path[:-1]].add_parser(command.path[-1], help=command.help)
        sub.set_defaults(handler=command.handler)
        for option in command.flags:
            sub.add_argument(*option.names, **option.options)
    return parser


def main(argv: Optional[List[str]] = None, ctx: Optional[Context] = None) -> int:
    """
    Run one command and return the process exit status.
    """
    args = build_parser().parse_args(argv)
    setup_labctl_logger(verbose=args.verbose)

    try:
        if ctx is None:
            settings = Settings.from_env()
            ctx = Context(settings=settings, client=ApiClient(settings.api_base))
        return args.handler(args, ctx)
    except LabctlError as e:
        LOGGER.debug("Command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
