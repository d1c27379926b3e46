"""Object storage client capability and its S3-compatible implementation.

The upload manager only talks to the narrow ``StorageClient`` interface.
``S3StorageClient`` implements it with boto3 against any S3-compatible
endpoint. For OCI Object Storage the S3 compatibility endpoint embeds the
namespace in the host name, e.g.::

    https://{namespace}.compat.objectstorage.us-ashburn-1.oraclecloud.com

so one boto3 client is built (and cached) per namespace.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

import boto3
import httpx
from botocore.client import Config
from botocore.exceptions import ClientError

from objtransfer.errors import ChecksumMismatchError, ConfigurationError, ResumeNotFoundError
from objtransfer.models import ProviderConfig, UploadedPart

logger = logging.getLogger(__name__)

CHECKSUM_ERROR_CODES = {"BadDigest", "InvalidDigest"}
NOT_FOUND_ERROR_CODES = {"NoSuchUpload", "NotFound", "404"}

# Lifetime of presigned part URLs
PRESIGNED_URL_EXPIRES = 3600


class StorageClient(ABC):
    """Operations the upload manager and the demo flows need."""

    @abstractmethod
    def get_namespace(self) -> str:
        pass

    @abstractmethod
    def create_bucket(
        self,
        namespace: str,
        bucket: str,
        compartment_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        pass

    @abstractmethod
    def delete_bucket(self, namespace: str, bucket: str) -> None:
        pass

    @abstractmethod
    def put_object(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        body: bytes,
        content_md5: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Upload a whole object in one request and return its ETag."""
        pass

    @abstractmethod
    def delete_object(self, namespace: str, bucket: str, object_name: str) -> None:
        pass

    @abstractmethod
    def create_multipart_upload(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Start a multipart upload and return its upload ID."""
        pass

    @abstractmethod
    def upload_part(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        upload_id: str,
        part_number: int,
        body: bytes,
        content_md5: Optional[str] = None,
    ) -> str:
        """Upload one part and return its ETag."""
        pass

    @abstractmethod
    def list_uploaded_parts(
        self, namespace: str, bucket: str, object_name: str, upload_id: str
    ) -> list[UploadedPart]:
        """Parts the service has acknowledged for ``upload_id``.

        Raises:
            ResumeNotFoundError: If the service does not know the upload.
        """
        pass

    @abstractmethod
    def complete_multipart_upload(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        upload_id: str,
        parts: list[tuple[int, str]],
    ) -> str:
        """Assemble ``parts`` (ascending (part_number, etag)) into the object."""
        pass

    @abstractmethod
    def abort_multipart_upload(
        self, namespace: str, bucket: str, object_name: str, upload_id: str
    ) -> None:
        pass


def build_s3_client(config: ProviderConfig, endpoint_url: Optional[str] = None):
    """Build a boto3 S3 client for the given provider configuration.

    Args:
        config: Provider configuration containing endpoint, credentials,
               region, and addressing style.
        endpoint_url: Endpoint override (the namespace-resolved URL).

    Returns:
        A boto3 S3 client configured for the provider.
    """
    boto_config = Config(
        signature_version="s3v4",
        s3={"addressing_style": config.addressing_style},
    )

    return boto3.client(
        "s3",
        endpoint_url=endpoint_url or config.endpoint_url,
        aws_access_key_id=config.aws_access_key_id,
        aws_secret_access_key=config.aws_secret_access_key,
        region_name=config.region_name,
        config=boto_config,
    )


def _error_code(error: ClientError) -> Optional[str]:
    return error.response.get("Error", {}).get("Code")


class S3StorageClient(StorageClient):
    """StorageClient backed by boto3.

    When ``config.presigned_parts`` is set, parts are PUT with httpx to
    presigned ``upload_part`` URLs whose signature covers Content-Length
    (and Content-MD5 when a digest is supplied).
    """

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._http_client = http_client
        self._owns_http_client = http_client is None

    def _endpoint_for(self, namespace: str) -> str:
        endpoint = self.config.endpoint_url
        if "{namespace}" in endpoint:
            if not namespace:
                raise ConfigurationError(
                    f"Endpoint for provider '{self.config.key}' requires a namespace"
                )
            endpoint = endpoint.format(namespace=namespace)
        return endpoint

    def client_for(self, namespace: str):
        """Return the (cached) boto3 client serving ``namespace``."""
        endpoint = self._endpoint_for(namespace)
        with self._lock:
            client = self._clients.get(endpoint)
            if client is None:
                client = build_s3_client(self.config, endpoint)
                self._clients[endpoint] = client
        return client

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=60.0)
        return self._http_client

    def close(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> "S3StorageClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def get_namespace(self) -> str:
        """Return the namespace from the provider configuration.

        The S3 API has no namespace lookup, so the value comes from
        ``ProviderConfig.namespace`` (``PROVIDER_*_NAMESPACE`` or config.json).
        """
        if not self.config.namespace:
            raise ConfigurationError(
                f"No namespace configured for provider '{self.config.key}'"
            )
        return self.config.namespace

    def create_bucket(
        self,
        namespace: str,
        bucket: str,
        compartment_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        client = self.client_for(namespace)
        params: dict[str, Any] = {"Bucket": bucket, "ACL": "private"}
        if self.config.region_name and self.config.region_name != "us-east-1":
            params["CreateBucketConfiguration"] = {
                "LocationConstraint": self.config.region_name
            }
        if compartment_id:
            # The S3 API has no compartments; buckets land in the
            # tenancy's designated S3 compartment.
            logger.debug("Ignoring compartment %s for S3 bucket %s", compartment_id, bucket)
        client.create_bucket(**params)
        if metadata:
            client.put_bucket_tagging(
                Bucket=bucket,
                Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in metadata.items()]},
            )
        logger.info("Created bucket %s", bucket)

    def delete_bucket(self, namespace: str, bucket: str) -> None:
        self.client_for(namespace).delete_bucket(Bucket=bucket)
        logger.info("Deleted bucket %s", bucket)

    def put_object(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        body: bytes,
        content_md5: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_name,
            "Body": body,
            "ContentLength": len(body),
        }
        if content_md5:
            params["ContentMD5"] = content_md5
        if metadata:
            params["Metadata"] = metadata
        try:
            response = self.client_for(namespace).put_object(**params)
        except ClientError as e:
            if _error_code(e) in CHECKSUM_ERROR_CODES:
                raise ChecksumMismatchError(
                    f"Checksum rejected for {object_name}", cause=e
                ) from e
            raise
        return response["ETag"]

    def delete_object(self, namespace: str, bucket: str, object_name: str) -> None:
        self.client_for(namespace).delete_object(Bucket=bucket, Key=object_name)
        logger.info("Deleted object %s/%s", bucket, object_name)

    def create_multipart_upload(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_name}
        if metadata:
            params["Metadata"] = metadata
        response = self.client_for(namespace).create_multipart_upload(**params)
        return response["UploadId"]

    def upload_part(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        upload_id: str,
        part_number: int,
        body: bytes,
        content_md5: Optional[str] = None,
    ) -> str:
        if self.config.presigned_parts:
            return self._upload_part_presigned(
                namespace, bucket, object_name, upload_id, part_number, body, content_md5
            )

        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_name,
            "UploadId": upload_id,
            "PartNumber": part_number,
            "Body": body,
            "ContentLength": len(body),
        }
        if content_md5:
            params["ContentMD5"] = content_md5
        try:
            response = self.client_for(namespace).upload_part(**params)
        except ClientError as e:
            if _error_code(e) in CHECKSUM_ERROR_CODES:
                raise ChecksumMismatchError(
                    f"Checksum rejected for part {part_number}",
                    part_number=part_number,
                    cause=e,
                ) from e
            raise
        return response["ETag"]

    def generate_part_url(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        upload_id: str,
        part_number: int,
        content_length: int,
        content_md5: Optional[str] = None,
    ) -> str:
        """Presign an upload_part URL with Content-Length in the signature."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_name,
            "UploadId": upload_id,
            "PartNumber": part_number,
            "ContentLength": content_length,
        }
        if content_md5:
            params["ContentMD5"] = content_md5
        return self.client_for(namespace).generate_presigned_url(
            ClientMethod="upload_part",
            Params=params,
            ExpiresIn=PRESIGNED_URL_EXPIRES,
        )

    def _upload_part_presigned(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        upload_id: str,
        part_number: int,
        body: bytes,
        content_md5: Optional[str],
    ) -> str:
        url = self.generate_part_url(
            namespace, bucket, object_name, upload_id, part_number, len(body), content_md5
        )
        headers = {"Content-Length": str(len(body))}
        if content_md5:
            headers["Content-MD5"] = content_md5

        response = self.http_client.put(url, content=body, headers=headers)
        if response.status_code == 400 and any(
            code in response.text for code in CHECKSUM_ERROR_CODES
        ):
            raise ChecksumMismatchError(
                f"Checksum rejected for part {part_number}", part_number=part_number
            )
        response.raise_for_status()
        return response.headers.get("ETag", "")

    def list_uploaded_parts(
        self, namespace: str, bucket: str, object_name: str, upload_id: str
    ) -> list[UploadedPart]:
        paginator = self.client_for(namespace).get_paginator("list_parts")
        parts: list[UploadedPart] = []
        try:
            for page in paginator.paginate(Bucket=bucket, Key=object_name, UploadId=upload_id):
                for part in page.get("Parts", []):
                    parts.append(
                        UploadedPart(
                            part_number=part["PartNumber"],
                            etag=part["ETag"],
                            size=part.get("Size"),
                        )
                    )
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_ERROR_CODES:
                raise ResumeNotFoundError(upload_id) from e
            raise
        return parts

    def complete_multipart_upload(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        upload_id: str,
        parts: list[tuple[int, str]],
    ) -> str:
        response = self.client_for(namespace).complete_multipart_upload(
            Bucket=bucket,
            Key=object_name,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [{"PartNumber": number, "ETag": etag} for number, etag in parts]
            },
        )
        return response.get("ETag", "")

    def abort_multipart_upload(
        self, namespace: str, bucket: str, object_name: str, upload_id: str
    ) -> None:
        try:
            self.client_for(namespace).abort_multipart_upload(
                Bucket=bucket,
                Key=object_name,
                UploadId=upload_id,
            )
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_ERROR_CODES:
                raise ResumeNotFoundError(upload_id) from e
            raise
        logger.info("Aborted multipart upload %s", upload_id)
