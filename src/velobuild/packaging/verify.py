"""Collector package verification.

Re-hashes every bundled tool against the build manifest and, when a public
key is given, checks the manifest signature.
"""

import hashlib
import json
import zipfile
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from velobuild.core.hashing import CHUNK_SIZE
from velobuild.models.build import CollectionManifest
from velobuild.packaging.packager import CONFIG_NAME, MANIFEST_NAME, SIGNATURE_NAME
from velobuild.packaging.signing import SignatureInfo, VerificationKey, verify_manifest


class VerificationResult(BaseModel):
    """Outcome of verifying a package."""

    package_path: str
    valid: bool
    build_id: str | None = None
    tools_checked: int = 0
    signed: bool = False
    signature_valid: bool | None = Field(
        default=None, description="None when no key was supplied"
    )
    errors: list[str] = Field(default_factory=list)


class PackageVerifier:
    """Verifies collector package integrity."""

    def __init__(self, package_path: Path) -> None:
        """Initialize package verifier.

        Args:
            package_path: Path to the collector zip
        """
        self.package_path = Path(package_path)

    def load_manifest(self) -> CollectionManifest | None:
        """Load the package manifest.

        Returns:
            CollectionManifest if present and valid, None otherwise
        """
        try:
            with zipfile.ZipFile(self.package_path) as zf:
                data = json.loads(zf.read(MANIFEST_NAME))
            return CollectionManifest(**data)
        except (OSError, KeyError, zipfile.BadZipFile, json.JSONDecodeError, ValidationError):
            return None

    def verify(self, verification_key: VerificationKey | None = None) -> VerificationResult:
        """Verify the package.

        Args:
            verification_key: Public key to check the manifest signature with

        Returns:
            VerificationResult; ``valid`` is False on any problem
        """
        errors: list[str] = []
        result = VerificationResult(package_path=str(self.package_path), valid=False)

        if not self.package_path.is_file():
            result.errors.append(f"Package {self.package_path} not found")
            return result

        try:
            zf = zipfile.ZipFile(self.package_path)
        except (OSError, zipfile.BadZipFile) as e:
            result.errors.append(f"Not a valid zip archive: {e}")
            return result

        with zf:
            names = set(zf.namelist())
            for required in (CONFIG_NAME, MANIFEST_NAME):
                if required not in names:
                    errors.append(f"{required} not found")

            manifest_bytes = zf.read(MANIFEST_NAME) if MANIFEST_NAME in names else b""
            manifest = None
            if manifest_bytes:
                try:
                    manifest = CollectionManifest(**json.loads(manifest_bytes))
                except (json.JSONDecodeError, ValidationError) as e:
                    errors.append(f"Invalid manifest: {e}")

            if manifest is not None:
                result.build_id = manifest.build_id
                for tool in manifest.included_tools:
                    if tool.archive_path not in names:
                        errors.append(f"Missing tool file: {tool.archive_path}")
                        continue
                    actual = self._hash_member(zf, tool.archive_path)
                    result.tools_checked += 1
                    if actual != tool.sha256:
                        errors.append(
                            f"Hash mismatch for {tool.archive_path}: "
                            f"expected {tool.sha256}, got {actual}"
                        )
                for artifact in manifest.selected_artifacts:
                    if f"artifacts/{artifact}.yaml" not in names:
                        errors.append(f"Missing artifact definition: {artifact}")

            result.signed = SIGNATURE_NAME in names
            if verification_key is not None:
                if not result.signed:
                    errors.append("Package is not signed")
                    result.signature_valid = False
                else:
                    try:
                        info = SignatureInfo(**json.loads(zf.read(SIGNATURE_NAME)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        errors.append(f"Invalid signature file: {e}")
                        result.signature_valid = False
                    else:
                        problems = verify_manifest(verification_key, manifest_bytes, info)
                        errors.extend(problems)
                        result.signature_valid = not problems

        result.errors = errors
        result.valid = not errors
        return result

    @staticmethod
    def _hash_member(zf: zipfile.ZipFile, name: str) -> str:
        sha256 = hashlib.sha256()
        with zf.open(name) as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                sha256.update(chunk)
        return sha256.hexdigest()
