"""
Loading of the Fulcio root certificates used to check keyless signatures.

The roots come either from a PEM bundle named by SIGSTORE_ROOT_FILE or from
the ``fulcio.crt.pem`` target of the Sigstore TUF repository. TUF needs a
trusted ``root.json`` to start from; it is seeded once with
``labctl vcr util trust-init``.
"""

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, List, Mapping, Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from tuf.api.exceptions import DownloadError, RepositoryError
from tuf.api.metadata import Metadata, Root
from tuf.ngclient import Updater

from labctl.errors import RootCertError
from labctl.logging import get_labctl_logger

LOGGER = get_labctl_logger()

ROOT_FILE_ENV = "SIGSTORE_ROOT_FILE"
FULCIO_TARGET = "fulcio.crt.pem"
TUF_METADATA_URL = "https://tuf-repo-cdn.sigstore.dev"
TUF_TARGETS_URL = "https://tuf-repo-cdn.sigstore.dev/targets/"


def tuf_dir(home: Path) -> Path:
    return home / "tuf"


def trust_init(home: Path, trusted_root: Path) -> Path:
    """
    Seed the local TUF metadata directory with a trusted root.json.

    :return: Path of the installed root.json
    """
    try:
        Metadata[Root].from_bytes(trusted_root.read_bytes())
    except OSError as e:
        raise RootCertError(f"error reading TUF root {trusted_root}: {e}") from e
    except Exception as e:  # pylint: disable=broad-except
        raise RootCertError(f"{trusted_root} is not a valid TUF root: {e}") from e

    metadata_dir = tuf_dir(home)
    dest = metadata_dir / "root.json"
    try:
        metadata_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        (metadata_dir / "targets").mkdir(exist_ok=True)
        shutil.copyfile(trusted_root, dest)
    except OSError as e:
        raise RootCertError(f"error installing TUF root into {metadata_dir}: {e}") from e
    return dest


def parse_roots(raw: bytes, source: str) -> List[x509.Certificate]:
    try:
        certs = x509.load_pem_x509_certificates(raw)
    except ValueError as e:
        raise RootCertError(f"error creating root cert pool from {source}: {e}") from e
    if not certs:
        raise RootCertError(f"no certificates found in {source}")
    return certs


def _fetch_tuf_target(home: Path) -> bytes:
    metadata_dir = tuf_dir(home)
    if not (metadata_dir / "root.json").is_file():
        raise RootCertError(
            f"no trusted TUF root in {metadata_dir}; run 'labctl vcr util trust-init' "
            f"or set {ROOT_FILE_ENV}"
        )

    target_dir = metadata_dir / "targets"
    try:
        target_dir.mkdir(exist_ok=True)
        updater = Updater(
            str(metadata_dir),
            TUF_METADATA_URL,
            str(target_dir),
            TUF_TARGETS_URL,
        )
        updater.refresh()
        info = updater.get_targetinfo(FULCIO_TARGET)
        if info is None:
            raise RootCertError(f"{FULCIO_TARGET} not found in TUF repository")
        path = updater.find_cached_target(info) or updater.download_target(info)
        with open(path, "rb") as f:
            return f.read()
    except (RepositoryError, DownloadError, OSError) as e:
        raise RootCertError(f"error fetching {FULCIO_TARGET} from TUF: {e}") from e


def load_roots(
    home: Path, environ: Optional[Mapping[str, str]] = None
) -> List[x509.Certificate]:
    """
    Load the Fulcio root certificates.

    Args:
        home (Path): labctl home directory, holding the TUF metadata
        environ (Mapping | None): environment to read SIGSTORE_ROOT_FILE from

    Raises:
        RootCertError: The roots could not be read, fetched or parsed.
    """
    if environ is None:
        environ = os.environ

    root_file = (environ.get(ROOT_FILE_ENV) or "").strip()
    if root_file:
        LOGGER.debug("Loading Fulcio roots from %s", root_file)
        try:
            with open(root_file, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise RootCertError(f"error reading root PEM file: {e}") from e
        return parse_roots(raw, root_file)

    LOGGER.debug("Loading Fulcio roots from TUF")
    raw = _fetch_tuf_target(home)
    # The published target carries an indented PEM body.
    raw = raw.replace(b"\n  ", b"\n")
    return parse_roots(raw, FULCIO_TARGET)


@contextmanager
def roots_file(certs: List[x509.Certificate]) -> Generator[str, Any, None]:
    """
    Write the certificates to a temporary PEM bundle for external tools.
    Deletes the file after the with statement.
    """
    with tempfile.TemporaryDirectory(prefix="labctl-roots-") as tmpdir:
        path = os.path.join(tmpdir, "fulcio.pem")
        with open(path, "wb") as f:
            for cert in certs:
                f.write(cert.public_bytes(Encoding.PEM))
        yield path
