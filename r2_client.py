# r2_client.py
import json
from typing import Any, Dict, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from settings import Settings

# --- R2 / S3 client ---------------------------------------------------------

# NOTE:
# - endpoint_url MUST be the S3 API endpoint (the cloudflarestorage.com host),
#   NOT the public/dev domain. Region must be "auto" and path-style is required.


def normalize_endpoint(endpoint: str, bucket: str) -> str:
    # Normalize accidental trailing slashes or bucket suffixes
    endpoint = endpoint.rstrip("/")
    if bucket and endpoint.endswith(f"/{bucket}"):
        endpoint = endpoint[: -(len(bucket) + 1)]
    return endpoint


def build_r2_client(cfg: Settings):
    return boto3.client(
        "s3",
        endpoint_url=normalize_endpoint(cfg.r2_endpoint_url, cfg.r2_bucket) or None,
        aws_access_key_id=cfg.r2_access_key_id or None,
        aws_secret_access_key=cfg.r2_secret_access_key or None,
        region_name="auto",
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


# --- JSON object helpers -----------------------------------------------------

def put_json(s3, bucket: str, key: str, value: Dict[str, Any]) -> None:
    s3.put_object(
        Bucket=bucket,
        Key=key,
        Body=json.dumps(value).encode("utf-8"),
        ContentType="application/json",
    )


def get_json(s3, bucket: str, key: str) -> Optional[Dict[str, Any]]:
    """Returns the decoded object, or None when the key does not exist."""
    try:
        obj = s3.get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
            return None
        raise
    return json.loads(obj["Body"].read())


def iter_keys(s3, bucket: str, prefix: str) -> Iterator[str]:
    paginator = s3.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
        for item in page.get("Contents", []):
            yield item["Key"]
