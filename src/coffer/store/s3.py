"""S3ObjectStore — boto3-backed gateway for any S3-compatible object store."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from coffer.fs.exceptions import ConsistencyError, StorageError

from .keys import FOLDER_MARKER_CONTENT_TYPE
from .types import ListObjectsResult, ObjectInfo, StoredObject

if TYPE_CHECKING:
    from coffer.config import CofferConfig

logger = logging.getLogger(__name__)

_DELETE_BATCH_SIZE = 1000
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStore:
    """Object store gateway over a boto3 S3 client.

    Implements ``ObjectStore``.  All SDK calls are wrapped in
    ``asyncio.to_thread`` because boto3 is synchronous.  Timeouts and
    retries are delegated to botocore via the client ``Config``.

    Usage::

        store = S3ObjectStore("my-bucket", region_name="eu-west-1")
        await store.open()
        await store.put("u1/report.pdf", data, "application/pdf")
        url = await store.presign_get("u1/report.pdf", 3600)
    """

    def __init__(
        self,
        bucket: str,
        *,
        client: Any = None,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_attempts: int = 3,
    ) -> None:
        if not bucket:
            raise ValueError("S3ObjectStore requires a bucket name")
        self._bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region_name,
                endpoint_url=endpoint_url,
                aws_access_key_id=aws_access_key_id,
                aws_secret_access_key=aws_secret_access_key,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"max_attempts": max_attempts, "mode": "standard"},
                ),
            )
        self._client = client

    @classmethod
    def from_config(cls, config: CofferConfig) -> S3ObjectStore:
        """Build a gateway from a ``CofferConfig``."""
        return cls(
            config.bucket,
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            max_attempts=config.max_attempts,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def client(self) -> Any:
        return self._client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Verify the bucket is reachable so misconfiguration fails early."""
        await self._call("head_bucket", self._bucket, Bucket=self._bucket)

    async def close(self) -> None:
        """No-op — the boto3 client needs no explicit shutdown."""

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
        *,
        metadata: dict[str, str] | None = None,
        bucket: str | None = None,
    ) -> ObjectInfo:
        params: dict[str, Any] = {
            "Bucket": bucket or self._bucket,
            "Key": key,
            "Body": body,
        }
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata
        resp = await self._call("put_object", key, **params)
        logger.debug("Stored object %s (%d bytes)", key, len(body))
        return ObjectInfo(
            key=key,
            size=len(body),
            content_type=content_type,
            etag=resp.get("ETag"),
            metadata=dict(metadata or {}),
        )

    async def get(self, key: str, *, bucket: str | None = None) -> StoredObject:
        resp = await self._call("get_object", key, Bucket=bucket or self._bucket, Key=key)
        return StoredObject(info=self._info_from_response(key, resp), body=resp["Body"])

    async def read(self, key: str, *, bucket: str | None = None) -> bytes:
        """Fetch the whole object into memory."""
        obj = await self.get(key, bucket=bucket)
        try:
            return await asyncio.to_thread(obj.body.read)
        finally:
            obj.body.close()

    async def head(self, key: str, *, bucket: str | None = None) -> ObjectInfo | None:
        """Return object metadata, or ``None`` if the key does not exist."""
        try:
            resp = await asyncio.to_thread(
                self._client.head_object, Bucket=bucket or self._bucket, Key=key
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise _translate(e, "head", key) from e
        except BotoCoreError as e:
            raise _translate(e, "head", key) from e
        return self._info_from_response(key, resp)

    async def delete(self, key: str, *, bucket: str | None = None) -> None:
        await self._call("delete_object", key, Bucket=bucket or self._bucket, Key=key)
        logger.debug("Deleted object %s", key)

    async def copy(self, source_key: str, dest_key: str, *, bucket: str | None = None) -> None:
        """Server-side copy within one bucket."""
        target = bucket or self._bucket
        await self._call(
            "copy_object",
            source_key,
            Bucket=target,
            Key=dest_key,
            CopySource={"Bucket": target, "Key": source_key},
        )

    # ------------------------------------------------------------------
    # Prefixes
    # ------------------------------------------------------------------

    async def list_under_prefix(
        self,
        prefix: str,
        *,
        recursive: bool = True,
        max_keys: int = 1000,
        continuation_token: str | None = None,
        bucket: str | None = None,
    ) -> ListObjectsResult:
        """List one page of objects under *prefix*.

        Non-recursive listings use ``/`` as delimiter and report the
        immediate child prefixes separately.
        """
        params: dict[str, Any] = {
            "Bucket": bucket or self._bucket,
            "Prefix": prefix,
            "MaxKeys": max_keys,
        }
        if not recursive:
            params["Delimiter"] = "/"
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        resp = await self._call("list_objects_v2", prefix, **params)

        objects = [
            ObjectInfo(
                key=item["Key"],
                size=item.get("Size", 0),
                last_modified=item.get("LastModified"),
                etag=item.get("ETag"),
            )
            for item in resp.get("Contents", [])
        ]
        child_prefixes = [cp["Prefix"] for cp in resp.get("CommonPrefixes", [])]
        truncated = bool(resp.get("IsTruncated"))
        return ListObjectsResult(
            objects=objects,
            child_prefixes=child_prefixes,
            next_token=resp.get("NextContinuationToken") if truncated else None,
            truncated=truncated,
        )

    async def list_keys(self, prefix: str, *, bucket: str | None = None) -> list[str]:
        """Every key under *prefix*, following continuation tokens."""
        keys: list[str] = []
        token: str | None = None
        while True:
            page = await self.list_under_prefix(
                prefix, continuation_token=token, bucket=bucket
            )
            keys.extend(obj.key for obj in page.objects)
            if not page.truncated or not page.next_token:
                return keys
            token = page.next_token

    async def create_prefix(self, prefix: str, *, bucket: str | None = None) -> str:
        """Write the zero-byte marker object representing a folder."""
        if not prefix.endswith("/"):
            prefix += "/"
        await self.put(prefix, b"", FOLDER_MARKER_CONTENT_TYPE, bucket=bucket)
        logger.info("Created folder prefix %s", prefix)
        return prefix

    async def rename_prefix(
        self, old_prefix: str, new_prefix: str, *, bucket: str | None = None
    ) -> int:
        """Move every object under *old_prefix* to *new_prefix*.

        S3 has no native rename: each object is copied, then the originals
        are deleted and the marker is recreated at *new_prefix*.  If a copy
        fails, copies already made are removed best-effort and the
        originals are left untouched.  If the delete phase fails, any
        originals already removed are copied back and the new copies are
        discarded before the error is re-raised; when that cleanup fails
        too, ``ConsistencyError`` is raised.  Returns the number of objects
        moved.
        """
        keys = await self.list_keys(old_prefix, bucket=bucket)
        copied: list[str] = []
        try:
            for key in keys:
                dest = new_prefix + key[len(old_prefix):]
                await self.copy(key, dest, bucket=bucket)
                copied.append(dest)
        except StorageError:
            logger.error("Prefix rename failed: %s -> %s", old_prefix, new_prefix, exc_info=True)
            await self._discard(copied, bucket=bucket)
            raise

        try:
            await self._delete_keys(keys, bucket=bucket)
            await self.create_prefix(new_prefix, bucket=bucket)
        except StorageError:
            logger.error(
                "Prefix rename failed after copying: %s -> %s", old_prefix, new_prefix, exc_info=True
            )
            await self._restore_prefix(keys, copied, old_prefix, new_prefix, bucket=bucket)
            raise

        logger.info("Renamed prefix %s -> %s (%d objects)", old_prefix, new_prefix, len(keys))
        return len(keys)

    async def _restore_prefix(
        self,
        keys: list[str],
        copied: list[str],
        old_prefix: str,
        new_prefix: str,
        *,
        bucket: str | None = None,
    ) -> None:
        """Put back originals deleted by a half-finished rename and drop the copies."""
        try:
            for key in keys:
                if await self.head(key, bucket=bucket) is None:
                    await self.copy(new_prefix + key[len(old_prefix):], key, bucket=bucket)
            leftovers = copied if new_prefix in copied else [*copied, new_prefix]
            await self._delete_keys(leftovers, bucket=bucket)
        except StorageError as e:
            logger.critical(
                "Could not restore %s after a failed rename to %s; objects may be split "
                "between both prefixes. Manual intervention needed.",
                old_prefix, new_prefix,
            )
            raise ConsistencyError(
                f"Prefix rename {old_prefix} -> {new_prefix} left objects under both prefixes"
            ) from e
        logger.warning("Restored %s after a failed rename to %s", old_prefix, new_prefix)

    async def delete_prefix(self, prefix: str, *, bucket: str | None = None) -> int:
        """Delete every object under *prefix*.  Returns the number removed."""
        keys = await self.list_keys(prefix, bucket=bucket)
        await self._delete_keys(keys, bucket=bucket)
        logger.info("Deleted prefix %s (%d objects)", prefix, len(keys))
        return len(keys)

    # ------------------------------------------------------------------
    # Presigned URLs
    # ------------------------------------------------------------------

    async def presign_get(
        self, key: str, expires_in: int, *, bucket: str | None = None
    ) -> str:
        url = await self._call(
            "generate_presigned_url",
            key,
            ClientMethod="get_object",
            Params={"Bucket": bucket or self._bucket, "Key": key},
            ExpiresIn=expires_in,
        )
        logger.debug("Presigned GET for %s, expires in %ds", key, expires_in)
        return url

    async def presign_put(
        self,
        key: str,
        expires_in: int,
        *,
        content_type: str | None = None,
        server_side_encryption: str | None = None,
        bucket: str | None = None,
    ) -> str:
        params: dict[str, Any] = {"Bucket": bucket or self._bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        if server_side_encryption:
            params["ServerSideEncryption"] = server_side_encryption
        url = await self._call(
            "generate_presigned_url",
            key,
            ClientMethod="put_object",
            Params=params,
            ExpiresIn=expires_in,
        )
        logger.debug("Presigned PUT for %s, expires in %ds", key, expires_in)
        return url

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, method: str, target: str, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(getattr(self._client, method), **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error("Object store %s failed for %s", method, target, exc_info=True)
            raise _translate(e, method, target) from e

    async def _delete_keys(self, keys: list[str], *, bucket: str | None = None) -> None:
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[start : start + _DELETE_BATCH_SIZE]
            resp = await self._call(
                "delete_objects",
                batch[0],
                Bucket=bucket or self._bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
            errors = resp.get("Errors") or []
            if errors:
                failed = ", ".join(err.get("Key", "?") for err in errors[:5])
                raise StorageError(f"Failed to delete {len(errors)} objects: {failed}")

    async def _discard(self, keys: list[str], *, bucket: str | None = None) -> None:
        if not keys:
            return
        try:
            await self._delete_keys(keys, bucket=bucket)
        except StorageError:
            logger.warning("Could not discard %d partial copies; orphans remain", len(keys))

    @staticmethod
    def _info_from_response(key: str, resp: dict[str, Any]) -> ObjectInfo:
        return ObjectInfo(
            key=key,
            size=resp.get("ContentLength", 0),
            last_modified=resp.get("LastModified"),
            content_type=resp.get("ContentType"),
            etag=resp.get("ETag"),
            metadata=dict(resp.get("Metadata") or {}),
        )


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _translate(error: Exception, action: str, target: str) -> StorageError:
    """Map a botocore failure to a ``StorageError`` with a stable message."""
    if isinstance(error, ClientError):
        code = _error_code(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in ("AccessDenied", "403") or status == 403:
            return StorageError("Access denied to object store bucket")
        if code == "NoSuchBucket":
            return StorageError("Object store bucket not found")
        if code == "InvalidBucketName":
            return StorageError("Invalid object store bucket name")
        if code in _NOT_FOUND_CODES:
            return StorageError(f"Object not found: {target}")
    return StorageError(f"Object store {action} failed for {target}")
