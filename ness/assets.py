"""
Publishing site assets to the web stack's bucket.
"""

import logging
import mimetypes
import os
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from .config import DEFAULT_REGION
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CACHE_MUST_REVALIDATE = "public, max-age=0, must-revalidate"
CACHE_IMMUTABLE = "public, max-age=31536000, immutable"

_PAGE_DATA_JSON = re.compile(r"page-data/.*\.json$")


def must_revalidate(key: str) -> bool:
    """Files that change between deploys without changing their name."""
    return key.endswith(".html") or bool(_PAGE_DATA_JSON.search(key)) or key == "sw.js"


def cache_control_for(key: str, content_type: Optional[str], override: Optional[str] = None) -> str:
    if content_type and "font" in content_type:
        return CACHE_IMMUTABLE
    if override:
        return override
    return CACHE_MUST_REVALIDATE if must_revalidate(key) else CACHE_IMMUTABLE


def walk(directory: Path) -> List[Path]:
    """All files below a directory, in a stable order."""
    files = []
    for root, _dirs, names in os.walk(directory):
        for name in sorted(names):
            files.append(Path(root) / name)
    return sorted(files)


class AssetPublisher(ABC):
    """Uploads a local directory to a bucket and refreshes the CDN."""

    @abstractmethod
    def publish(self, directory: str, bucket: str, distribution_id: Optional[str] = None) -> int:
        """Upload `directory` to `bucket`; returns the number of files uploaded."""
        pass

    @abstractmethod
    def clear_bucket(self, bucket: str, prefix: Optional[str] = None) -> int:
        """Delete every object (under `prefix`) in `bucket`; returns the count deleted."""
        pass


class S3AssetPublisher(AssetPublisher):
    """
    AssetPublisher backed by S3 and CloudFront.

    Args:
        session: boto3 session
        prune: Empty the bucket before uploading
        max_workers: Parallel uploads
        cache_control: Cache-Control override for non-font files
    """

    def __init__(self, session, region: str = DEFAULT_REGION, prune: bool = True, max_workers: int = 8,
                 cache_control: Optional[str] = None, prefix: str = "", invalidation_timeout: int = 300):
        self.s3 = session.client("s3", region_name=region)
        self.cloudfront = session.client("cloudfront", region_name=region)
        self.prune = prune
        self.max_workers = max_workers
        self.cache_control = cache_control
        self.prefix = prefix
        self.invalidation_timeout = invalidation_timeout

    def clear_bucket(self, bucket: str, prefix: Optional[str] = None) -> int:
        deleted = 0
        paginator = self.s3.get_paginator("list_objects_v2")
        params = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix

        for page in paginator.paginate(**params):
            contents = page.get("Contents") or []
            if not contents:
                break
            objects = [{"Key": item["Key"]} for item in contents]
            self.s3.delete_objects(Bucket=bucket, Delete={"Objects": objects})
            deleted += len(objects)

        logger.info(f"Removed {deleted} object(s) from {bucket}")
        return deleted

    def _upload(self, bucket: str, local_root: Path, path: Path) -> str:
        key = self.prefix + path.relative_to(local_root).as_posix()
        content_type, _ = mimetypes.guess_type(path.name)

        params = {
            "Bucket": bucket,
            "Key": key,
            "Body": path.read_bytes(),
            "CacheControl": cache_control_for(key, content_type, self.cache_control),
        }
        if content_type:
            params["ContentType"] = content_type

        self.s3.put_object(**params)
        logger.debug(f"{path}: {content_type}")
        return key

    def publish(self, directory: str, bucket: str, distribution_id: Optional[str] = None) -> int:
        """
        Sync a local directory to S3, then invalidate the distribution.

        Raises:
            ConfigurationError: If the directory does not exist
        """
        local_root = Path(directory).resolve()
        if not local_root.is_dir():
            raise ConfigurationError(f"Publish directory {directory} does not exist")

        if self.prune:
            self.clear_bucket(bucket, self.prefix or None)

        files = walk(local_root)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            # list() re-raises the first upload error
            list(pool.map(lambda p: self._upload(bucket, local_root, p), files))

        logger.info(f"Uploaded {len(files)} file(s) to {bucket}")

        if distribution_id:
            self.invalidate(distribution_id)

        return len(files)

    def invalidate(self, distribution_id: str, paths: Optional[List[str]] = None) -> None:
        paths = paths or ["/*"]
        response = self.cloudfront.create_invalidation(
            DistributionId=distribution_id,
            InvalidationBatch={
                "CallerReference": str(int(time.time() * 1000)),
                "Paths": {"Quantity": len(paths), "Items": paths},
            },
        )
        invalidation_id = response["Invalidation"]["Id"]

        waiter = self.cloudfront.get_waiter("invalidation_completed")
        waiter.wait(
            DistributionId=distribution_id,
            Id=invalidation_id,
            WaiterConfig={"Delay": 20, "MaxAttempts": max(1, self.invalidation_timeout // 20)},
        )
        logger.info(f"Invalidated {', '.join(paths)} on {distribution_id}")
