"""
Helpers for the vcr.pub container registry: repository names, docker and
kubernetes credential export, and manifest/config inspection through ORAS.
"""

import base64
import json
import os
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, List, Mapping, Optional

import yaml

from labctl.api import TOKEN_USER, basic_auth_header
from labctl.errors import CommandError, DecodeError, UsageError
from labctl.logging import get_labctl_logger

LOGGER = get_labctl_logger()

DEFAULT_SECRET_NAME = "vcr-pub"
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"
DOCKER_HUB_HOSTS = {"docker.io", "index.docker.io", "registry-1.docker.io"}

INDEX_MEDIA_TYPES = {
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
}
MANIFEST_MEDIA_TYPES = {
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
}


def validate_repo_name(name: Optional[str]) -> str:
    """
    Check that a repository name is in ``namespace/repo`` form.
    """
    if not name:
        raise UsageError("requires repository name as argument")
    if name.count("/") != 1:
        raise UsageError("name must be in namespace/repo format")
    return name


def run_command(
    cmd: List[str],
    env: Optional[Mapping[str, str]] = None,
    stdin: Optional[str] = None,
    capture: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run an external tool and fail with CommandError on a non-zero exit code.

    Args:
        cmd (list[str]): command to run
        env (dict[str, str] | None): variables added to the current environment
        stdin (str | None): text fed to the process on stdin
        capture (bool): capture stdout/stderr instead of passing them through
    """
    tool = cmd[0]
    LOGGER.debug("Running %s", " ".join(cmd))
    full_env = None
    if env:
        full_env = {**os.environ, **env}

    try:
        result = subprocess.run(
            cmd,
            input=stdin,
            capture_output=capture,
            text=True,
            env=full_env,
            check=False,
        )
    except FileNotFoundError as e:
        raise CommandError(tool, 127, f"{tool} not found, make sure it is in PATH") from e

    if result.returncode != 0:
        raise CommandError(tool, result.returncode, result.stderr or "")
    return result


def docker_login(server: str, token: str) -> None:
    """
    Log the local docker daemon into the registry using the session token.
    The token is passed on stdin so it never shows up in the process list.
    """
    cmd = ["docker", "login", "-u", TOKEN_USER, "--password-stdin", server]
    run_command(cmd, stdin=token, capture=False)


def docker_config_json(server: str, user: str, password: str) -> str:
    auths = {"auths": {server: {"auth": _encoded_auth(user, password)}}}
    return json.dumps(auths, indent=4) + "\n"


def kubernetes_secret(server: str, token: str, name: str = DEFAULT_SECRET_NAME) -> str:
    """
    Render a kubernetes.io/dockerconfigjson Secret that lets a cluster pull
    from the registry with the session token.
    """
    config = docker_config_json(f"https://{server}", TOKEN_USER, token)
    encoded = base64.b64encode(config.encode("utf-8")).decode("ascii")
    secret = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name},
        "data": {".dockerconfigjson": encoded},
        "type": "kubernetes.io/dockerconfigjson",
    }
    return yaml.safe_dump(secret, default_flow_style=False, sort_keys=False)


def registry_for(reference: str) -> str:
    """
    Return the docker config.json auths key for the registry of an image
    reference. References without an explicit registry belong to Docker Hub,
    whose credentials docker and oras look up under its legacy index URL.
    """
    first, sep, _ = reference.partition("/")
    if first in DOCKER_HUB_HOSTS and sep:
        return DOCKER_HUB_AUTH_KEY
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first
    return DOCKER_HUB_AUTH_KEY


@contextmanager
def make_registry_auth_file(
    reference: str, username: Optional[str] = None, password: Optional[str] = None
) -> Generator[Optional[str], Any, None]:
    """
    Gets path to a temporary docker config.json holding the given credentials
    for the registry of <reference>. Deletes the file after the with
    statement. Yields None when no password is given so the tools fall back
    to the user's own docker credentials.

    Example:
        >>> with make_registry_auth_file(ref, "user", "pass") as auth_path:
                fetch_manifest(ref, auth_path)
    """
    if not password:
        yield None
        return

    with tempfile.TemporaryDirectory(prefix="labctl-auth-") as tmpdir:
        path = os.path.join(tmpdir, "config.json")
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(docker_config_json(registry_for(reference), username or "", password))
        yield path


@dataclass
class ManifestDescriptor:
    media_type: str
    digest: str
    annotations: Dict[str, str]


def _oras(args: List[str], authfile: Optional[str]) -> Any:
    cmd = ["oras", *args]
    if authfile:
        cmd += ["--registry-config", authfile]
    result = run_command(cmd)
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise DecodeError(f"invalid JSON from {' '.join(cmd[:3])}: {e}") from e


def fetch_descriptor(reference: str, authfile: Optional[str] = None) -> ManifestDescriptor:
    data = _oras(["manifest", "fetch", "--descriptor", reference], authfile)
    if not isinstance(data, dict):
        raise DecodeError(f"unexpected descriptor for {reference}")
    return ManifestDescriptor(
        media_type=str(data.get("mediaType") or ""),
        digest=str(data.get("digest") or ""),
        annotations=dict(data.get("annotations") or {}),
    )


def fetch_manifest(reference: str, authfile: Optional[str] = None) -> Dict[str, Any]:
    """
    Gets a dictionary containing the manifest (or index) for an image
    reference.
    """
    LOGGER.info("Fetching manifest for %s", reference)
    data = _oras(["manifest", "fetch", reference], authfile)
    if not isinstance(data, dict):
        raise DecodeError(f"error parsing manifest for {reference}")
    return data


def fetch_config(reference: str, authfile: Optional[str] = None) -> Dict[str, Any]:
    """
    Gets the image configuration blob referenced by an image manifest.
    """
    LOGGER.info("Fetching config for %s", reference)
    data = _oras(["manifest", "fetch-config", reference], authfile)
    if not isinstance(data, dict):
        raise DecodeError(f"error parsing config information for {reference}")
    return data


def check_media_type(media_type: str) -> str:
    if media_type in INDEX_MEDIA_TYPES or media_type in MANIFEST_MEDIA_TYPES:
        return media_type
    raise DecodeError(f"unknown media-type: {media_type}")


def _encoded_auth(user: str, password: str) -> str:
    return basic_auth_header(user, password).removeprefix("Basic ")
