"""
Personal OIDC tokens and Fulcio signing certificates.

The account service issues short-lived personal OIDC tokens from
``https://allow.pub``. A token can be checked against the issuer's published
keys, and exchanged with Fulcio for a code-signing certificate bound to a
freshly generated key.
"""

import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import jwt
import pydantic as pdc
import requests
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from jwt.exceptions import PyJWKClientConnectionError

from labctl.api import ApiClient
from labctl.errors import DecodeError, StatusError, TransportError
from labctl.logging import get_labctl_logger
from labctl.types import PersonalTokenRequest, PersonalTokenResponse

LOGGER = get_labctl_logger()

OIDC_ISSUER = "https://allow.pub"
PERSONAL_TOKEN_URL = f"{OIDC_ISSUER}/api/v1/personal-token"
FULCIO_URL = "https://fulcio.sigstore.dev"


class OidcDiscovery(pdc.BaseModel):
    issuer: str
    jwks_uri: str
    id_token_signing_alg_values_supported: List[str] = pdc.Field(
        default_factory=lambda: ["RS256"]
    )


@dataclass
class SigningCert:
    chain: str
    sct: str


def fetch_personal_token(client: ApiClient, token: str, url: str = PERSONAL_TOKEN_URL) -> str:
    resp = client.token_post(token, url, PersonalTokenRequest(), PersonalTokenResponse)
    assert resp is not None  # a response model was requested
    return resp.jwt


def unverified_claims(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise DecodeError(f"invalid token: {e}") from e


def validate_token(
    token: str,
    issuer: str = OIDC_ISSUER,
    client: Optional[ApiClient] = None,
    jwks_client: Optional[jwt.PyJWKClient] = None,
) -> Dict[str, Any]:
    """Verify a token against the keys published by its OIDC issuer.

    The audience is not checked; personal tokens are not issued for a
    particular client.

    Args:
        token (str): Encoded JWT
        issuer (str): Expected issuer, also used for discovery
        client (ApiClient): Client rooted at the issuer, used for discovery
        jwks_client (PyJWKClient): Key client to use instead of the discovered one

    :return: Verified claims
    """
    if client is None:
        client = ApiClient(issuer)
    discovery = client.get("/.well-known/openid-configuration", OidcDiscovery)
    assert discovery is not None  # a response model was requested
    if jwks_client is None:
        jwks_client = jwt.PyJWKClient(discovery.jwks_uri)

    try:
        signing_key = jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=discovery.id_token_signing_alg_values_supported,
            issuer=discovery.issuer,
            options={"verify_aud": False},
        )
    except PyJWKClientConnectionError as e:
        raise TransportError(f"error fetching signing keys for {issuer}: {e}") from e
    except jwt.PyJWTError as e:
        raise DecodeError(f"token failed verification: {e}") from e


def request_signing_cert(
    token: str,
    fulcio_url: str = FULCIO_URL,
    session: Optional[requests.Session] = None,
    private_key: Optional[ec.EllipticCurvePrivateKey] = None,
) -> SigningCert:
    """Request a code-signing certificate from Fulcio.

    A P-256 key is generated unless one is given. Fulcio requires proof of
    possession: the token subject signed with that key.

    Args:
        token (str): OIDC identity token, sent as bearer credential
        fulcio_url (str): Fulcio base URL
        session (Session): HTTP session
        private_key (EllipticCurvePrivateKey): Key to certify

    :return: The PEM certificate chain and the signed certificate timestamp
    """
    if private_key is None:
        private_key = ec.generate_private_key(ec.SECP256R1())
    if session is None:
        session = requests.Session()

    subject = str(unverified_claims(token).get("sub") or "")
    if not subject:
        raise DecodeError("token has no subject")

    public_der = private_key.public_key().public_bytes(
        Encoding.DER, PublicFormat.SubjectPublicKeyInfo
    )
    proof = private_key.sign(subject.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    body = {
        "publicKey": {
            "algorithm": "ecdsa",
            "content": base64.b64encode(public_der).decode("ascii"),
        },
        "signedEmailAddress": base64.b64encode(proof).decode("ascii"),
    }

    url = f"{fulcio_url.rstrip('/')}/api/v1/signingCert"
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/pem-certificate-chain",
    }
    LOGGER.debug("POST request URL: %s", url)
    try:
        resp = session.post(url, json=body, headers=headers, timeout=30)
    except requests.RequestException as e:
        raise TransportError(f"error calling {url}: {e}") from e

    if not resp.ok:
        LOGGER.debug("Fulcio request failed with %s - %s", resp.status_code, resp.text)
        raise StatusError(resp.status_code)

    return SigningCert(chain=resp.text, sct=resp.headers.get("SCT", ""))
