"""
Content-addressed claim storage.

Content is stored under an address derived from its bytes, so the same claim
always lands at the same address. File, S3 and in-memory backends address by
SHA256; the IPFS backend uses the CID returned by the IPFS node.
"""
import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional

import httpx


logger = logging.getLogger(__name__)

SHA256_PATTERN = re.compile(r'^[0-9a-f]{64}$')


class ContentNotFound(KeyError):
    """Raised when an address is not present in the content store."""
    pass


class ContentStoreBackend:
    """Abstract base for content storage backends."""

    def put(self, content: bytes) -> str:
        """Store content and return its address."""
        raise NotImplementedError

    def get(self, address: str) -> Optional[bytes]:
        """Retrieve content by address, or None if absent."""
        raise NotImplementedError

    def exists(self, address: str) -> bool:
        """Check if content exists."""
        raise NotImplementedError


class MemoryBackend(ContentStoreBackend):
    """In-memory backend for tests and local runs."""

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    def put(self, content: bytes) -> str:
        sha256 = hashlib.sha256(content).hexdigest()
        self.blobs.setdefault(sha256, content)
        return sha256

    def get(self, address: str) -> Optional[bytes]:
        return self.blobs.get(address)

    def exists(self, address: str) -> bool:
        return address in self.blobs


class FileBackend(ContentStoreBackend):
    """File-based content storage backend."""

    def __init__(self, storage_root: Path):
        self.storage_root = storage_root
        self.storage_root.mkdir(parents=True, exist_ok=True)

    def _path(self, sha256: str) -> Optional[Path]:
        # Addresses come from untrusted feeds, never let them escape the root
        if not SHA256_PATTERN.match(sha256):
            return None
        return self.storage_root / sha256[:2] / sha256

    def put(self, content: bytes) -> str:
        """Store content in filesystem."""
        sha256 = hashlib.sha256(content).hexdigest()
        storage_path = self._path(sha256)
        storage_path.parent.mkdir(exist_ok=True)

        # Write content if not already exists (deduplication)
        if not storage_path.exists():
            tmp_path = storage_path.with_suffix('.tmp')
            tmp_path.write_bytes(content)
            os.replace(tmp_path, storage_path)

        return sha256

    def get(self, address: str) -> Optional[bytes]:
        """Retrieve content from filesystem."""
        storage_path = self._path(address)

        if storage_path is not None and storage_path.exists():
            return storage_path.read_bytes()

        return None

    def exists(self, address: str) -> bool:
        """Check if content exists in filesystem."""
        storage_path = self._path(address)
        return storage_path is not None and storage_path.exists()


class S3Backend(ContentStoreBackend):
    """S3-based content storage backend."""

    MISSING_CODES = ('404', 'NoSuchKey', 'NotFound')

    def __init__(self, bucket: str, prefix: str = "claims"):
        """
        Initialize S3 backend.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix for stored claims
        """
        try:
            import boto3
            from botocore.exceptions import ClientError
        except ImportError:
            raise RuntimeError("boto3 required for S3 backend. Install with: pip install boto3")

        self.bucket = bucket
        self.prefix = prefix.rstrip('/')
        self.s3_client = boto3.client('s3')
        self.client_error = ClientError

    def _get_key(self, sha256: str) -> str:
        """Get S3 key for content (sharded by first 2 chars)."""
        return f"{self.prefix}/{sha256[:2]}/{sha256}"

    def _is_missing(self, error) -> bool:
        return error.response.get('Error', {}).get('Code') in self.MISSING_CODES

    def put(self, content: bytes) -> str:
        """Store content in S3."""
        sha256 = hashlib.sha256(content).hexdigest()

        if not self.exists(sha256):
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=self._get_key(sha256),
                Body=content,
                ContentType='application/json',
                Metadata={
                    'sha256': sha256,
                    'size': str(len(content))
                }
            )

        return sha256

    def get(self, address: str) -> Optional[bytes]:
        """Retrieve content from S3."""
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=self._get_key(address))
        except self.client_error as e:
            if self._is_missing(e):
                return None
            raise
        return response['Body'].read()

    def exists(self, address: str) -> bool:
        """Check if content exists in S3."""
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=self._get_key(address))
        except self.client_error as e:
            if self._is_missing(e):
                return False
            raise
        return True


class IpfsBackend(ContentStoreBackend):
    """
    IPFS backend talking to a node's HTTP RPC API.

    Addresses are the CIDs assigned by the node.
    """

    def __init__(self, api_url: str, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        self.api_url = api_url.rstrip('/')
        self.client = client or httpx.Client(base_url=self.api_url, timeout=timeout)

    def put(self, content: bytes) -> str:
        response = self.client.post(
            "/api/v0/add",
            params={'pin': 'true', 'cid-version': '1'},
            files={'file': ('claim.json', content)}
        )
        response.raise_for_status()
        return response.json()['Hash']

    def get(self, address: str) -> Optional[bytes]:
        response = self.client.post("/api/v0/cat", params={'arg': address})
        if response.status_code == 500 and self._is_missing(response):
            return None
        response.raise_for_status()
        return response.content

    def exists(self, address: str) -> bool:
        response = self.client.post("/api/v0/block/stat", params={'arg': address, 'offline': 'true'})
        if response.status_code == 500 and self._is_missing(response):
            return False
        response.raise_for_status()
        return True

    @staticmethod
    def _is_missing(response: httpx.Response) -> bool:
        try:
            message = response.json().get('Message', '')
        except ValueError:
            return False
        return 'not found' in message or 'invalid path' in message or 'invalid cid' in message

    def close(self):
        self.client.close()


class ContentStore:
    """
    Content-addressed claim storage with pluggable backends.

    Backend selected via environment variables when none is passed:
    - CLAIMSYNC_CONTENT_BACKEND=file|s3|ipfs|memory (default: file)
    - CLAIMSYNC_CONTENT_S3_BUCKET (required for s3 backend)
    - CLAIMSYNC_CONTENT_S3_PREFIX (optional, default: claims)
    - CLAIMSYNC_IPFS_URL (optional, default: http://localhost:5001)
    """

    def __init__(self, storage_root: Optional[Path] = None, backend: Optional[ContentStoreBackend] = None):
        """
        Initialize content store.

        Args:
            storage_root: Root directory for file backend (default: ~/.claimsync/content)
            backend: Custom backend (or None to auto-detect from env)
        """
        if backend is not None:
            self.backend = backend
            return

        backend_type = os.getenv('CLAIMSYNC_CONTENT_BACKEND', 'file')

        if backend_type == 's3':
            bucket = os.getenv('CLAIMSYNC_CONTENT_S3_BUCKET')
            if not bucket:
                raise ValueError("CLAIMSYNC_CONTENT_S3_BUCKET required for S3 backend")
            prefix = os.getenv('CLAIMSYNC_CONTENT_S3_PREFIX', 'claims')
            self.backend = S3Backend(bucket=bucket, prefix=prefix)
        elif backend_type == 'ipfs':
            self.backend = IpfsBackend(api_url=os.getenv('CLAIMSYNC_IPFS_URL', 'http://localhost:5001'))
        elif backend_type == 'memory':
            self.backend = MemoryBackend()
        elif backend_type == 'file':
            if storage_root is None:
                storage_root = Path.home() / ".claimsync" / "content"
            self.backend = FileBackend(storage_root=Path(storage_root))
        else:
            raise ValueError(f"Unknown content backend: {backend_type}")

    def put(self, content: bytes) -> str:
        """
        Store content and return its address.

        Args:
            content: Raw bytes (canonical claim serialization)

        Returns:
            Content address
        """
        address = self.backend.put(content)
        logger.debug(f"Stored {len(content)} bytes at {address}")
        return address

    def get(self, address: str) -> bytes:
        """
        Retrieve content by address.

        Raises:
            ContentNotFound: If nothing is stored at the address
        """
        content = self.backend.get(address)
        if content is None:
            raise ContentNotFound(address)
        return content

    def exists(self, address: str) -> bool:
        """Check if content exists."""
        return self.backend.exists(address)

    def close(self):
        """Close backend connections."""
        if hasattr(self.backend, 'close'):
            self.backend.close()
