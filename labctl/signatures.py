"""
Keyless signature verification of registry images with cosign.

cosign checks the certificate chain against the Fulcio roots, the signature
claims, and the transparency log entry. This module only threads the roots
and registry credentials through to it and renders the result.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TextIO

from cryptography import x509

from labctl.errors import DecodeError
from labctl.fulcioroots import ROOT_FILE_ENV, roots_file
from labctl.logging import get_labctl_logger
from labctl.registry import make_registry_auth_file, run_command

LOGGER = get_labctl_logger()

REKOR_URL = "https://rekor.sigstore.dev"
SERVICE_SIGNER = "vcr.pub"


@dataclass
class Signature:
    """
    One verified signature as reported by ``cosign verify --output json``.
    """

    critical: Dict[str, Any] = field(default_factory=dict)
    optional: Dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> str:
        return str(self.optional.get("Subject") or "")

    @property
    def issuer(self) -> str:
        return str(self.optional.get("Issuer") or "")

    @property
    def bundled(self) -> bool:
        return bool(self.optional.get("Bundle"))

    @property
    def service_signed(self) -> bool:
        return self.optional.get("signed-by") == SERVICE_SIGNER


@dataclass
class VerificationResult:
    signatures: List[Signature]
    bundle_verified: bool
    rekor_url: str = REKOR_URL


def parse_cosign_output(raw: str) -> List[Signature]:
    """
    Parse the JSON printed by cosign verify. Older releases print one JSON
    document per line instead of a single array.
    """
    text = raw.strip()
    if not text:
        return []

    try:
        documents = json.loads(text)
    except json.JSONDecodeError:
        try:
            documents = [json.loads(line) for line in text.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise DecodeError(f"error decoding the payload: {e}") from e

    if isinstance(documents, dict):
        documents = [documents]
    if not isinstance(documents, list):
        raise DecodeError("error decoding the payload: expected a list of signatures")

    signatures = []
    for doc in documents:
        if not isinstance(doc, dict):
            continue
        signatures.append(
            Signature(
                critical=dict(doc.get("critical") or {}),
                optional=dict(doc.get("optional") or {}),
            )
        )
    return signatures


def verify_signatures(
    reference: str,
    roots: List[x509.Certificate],
    username: Optional[str] = None,
    password: Optional[str] = None,
    rekor_url: str = REKOR_URL,
) -> VerificationResult:
    """
    Verify the keyless signatures attached to an image.

    Args:
        reference (str): image reference
        roots (list[Certificate]): Fulcio root certificates to trust
        username (str | None): registry username
        password (str | None): registry password
        rekor_url (str): transparency log to check entries against

    Raises:
        CommandError: cosign found no valid signature or could not run.
    """
    cmd = [
        "cosign",
        "verify",
        f"--rekor-url={rekor_url}",
        "--certificate-identity-regexp=.*",
        "--certificate-oidc-issuer-regexp=.*",
        "--output=json",
        reference,
    ]
    with roots_file(roots) as roots_path:
        env = {ROOT_FILE_ENV: roots_path}
        with make_registry_auth_file(reference, username, password) as authfile:
            if authfile:
                env["DOCKER_CONFIG"] = os.path.dirname(authfile)
            LOGGER.debug("Verifying signatures for %s", reference)
            result = run_command(cmd, env=env)

    signatures = parse_cosign_output(result.stdout)
    bundled = any(sig.bundled for sig in signatures)
    return VerificationResult(signatures=signatures, bundle_verified=bundled, rekor_url=rekor_url)


def print_verification_header(result: VerificationResult, out: TextIO = sys.stderr) -> None:
    print("Checks:", file=out)
    print("✅ fulcio roots", file=out)
    print("✅ cosign claims", file=out)
    if result.bundle_verified:
        print("✅ offline transparency log", file=out)
    elif result.rekor_url:
        print("✅ online transparency log", file=out)


def print_verification(
    result: VerificationResult, out: TextIO = sys.stdout, err: TextIO = sys.stderr
) -> None:
    for sig in result.signatures:
        if sig.subject:
            print(f"✅ subject: {sig.subject}", file=out)
        if sig.issuer:
            print(f"✅ issuer: {sig.issuer}", file=out)
        if sig.service_signed:
            print(f"✅ {SERVICE_SIGNER} service side signature", file=err)
