from typing import AsyncIterator, List, Tuple, Any, Optional
from aiobotocore.session import get_session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from ..models.files import StoredFile
import asyncio
import logging

# S3 DeleteObjects accepts at most 1000 keys per request
MAX_DELETE_KEYS = 1000
CHUNK_SIZE = 64 * 1024
NOT_FOUND_CODES = ("404", "NoSuchKey", "NoSuchBucket", "NotFound")

class S3Error(Exception):
    """Exception raised when managing S3 files."""
    pass

class S3NotFoundError(S3Error):
    """Exception raised when a key or the bucket does not exist."""
    pass

class S3TimeoutError(S3Error):
    """Exception raised when a S3 call exceeds the configured timeout."""
    pass

class S3Service(object):

    def __init__(self, s3_endpoint_url: str, s3_access_key_id: str, s3_secret_access_key: str, region: str, bucket: str, with_checksums: bool = False, timeout: float = 10.0):
        """Initiate the S3 service.

        Args:
            s3_endpoint_url (str): The endpoint URL of the S3 service.
            s3_access_key_id (str): The access key ID for S3 authentication.
            s3_secret_access_key (str): The secret access key for S3 authentication.
            region (str): The AWS region where the S3 bucket is located.
            bucket (str): The name of the S3 bucket.
            with_checksums (bool, optional): Whether to enable checksum handling. When False (default),
            checksum use is disabled for compatibility with S3-compatible services that do not support checksums.
            timeout (float, optional): Maximum duration in seconds of uploads and listings. Defaults to 10.
        """
        self.s3_endpoint_url = s3_endpoint_url
        self.s3_access_key_id = s3_access_key_id
        self.s3_secret_access_key = s3_secret_access_key
        self.region = region
        self.bucket = bucket
        self.with_checksums = with_checksums
        self.timeout = timeout

    async def bucket_exists(self) -> bool:
        """Check that the bucket exists.

        Returns:
            bool: True if the bucket exists, False otherwise
        """
        async with self._create_client() as client:
            try:
                await client.head_bucket(Bucket=self.bucket)
            except ClientError as e:
                if self._error_code(e) in NOT_FOUND_CODES:
                    return False
                raise self._to_error(e, f"Failed to check bucket {self.bucket}")
            except BotoCoreError as e:
                raise S3Error(f"Failed to check bucket {self.bucket}: {e}") from e
        return True

    async def create_bucket(self):
        """Create the bucket."""
        async with self._create_client() as client:
            try:
                await client.create_bucket(Bucket=self.bucket)
            except (ClientError, BotoCoreError) as e:
                raise self._to_error(e, "Failed to create new bucket")
        logging.info(f"Bucket created : {self.s3_endpoint_url}/{self.bucket}")

    async def path_exists(self, key: str) -> bool:
        """Check if an object exists in S3 storage

        Args:
            key (str): Key of the object in S3

        Returns:
            bool: True if the object exists, False otherwise
        """
        async with self._create_client() as client:
            try:
                await client.head_object(Bucket=self.bucket, Key=key)
            except ClientError as e:
                if self._error_code(e) in NOT_FOUND_CODES:
                    return False
                raise self._to_error(e, f"Failed to check file {key}")
        return True

    async def iter_keys(self, prefix: str, recursive: bool = True) -> AsyncIterator[str]:
        """Iterate over the keys starting with a prefix. When not recursive, only
        the direct children are given, sub folders as their common prefix.

        Args:
            prefix (str): The key prefix
            recursive (bool, optional): Walk the whole key space below the prefix. Defaults to True.

        Yields:
            str: The object keys
        """
        params = {"Bucket": self.bucket, "Prefix": prefix}
        if not recursive:
            params["Delimiter"] = "/"
        try:
            # client creation fails early on a malformed endpoint
            async with self._create_client() as client:
                paginator = client.get_paginator('list_objects_v2')
                async for page in paginator.paginate(**params):
                    for common_prefix in page.get('CommonPrefixes', []):
                        yield common_prefix['Prefix']
                    for obj in page.get('Contents', []):
                        yield obj['Key']
        except (ClientError, BotoCoreError, ValueError) as e:
            raise self._to_error(e, f"Failed to list files in {prefix}")

    async def list_files(self, prefix: str, recursive: bool = True) -> List[str]:
        """List keys in a folder in S3 storage

        Args:
            prefix (str): Key prefix of the folder in S3
            recursive (bool, optional): Include the content of sub folders. Defaults to True.

        Raises:
            S3TimeoutError: When the listing takes longer than the timeout

        Returns:
            List[str]: An array of S3 file keys.
        """
        async def collect():
            return [key async for key in self.iter_keys(prefix, recursive)]
        return await self._with_timeout(collect(), f"Listing of {prefix}")

    async def get_file(self, key: str) -> StoredFile:
        """Get a file descriptor from S3 storage, content is streamed when read.

        Args:
            key (str): Key of the file in S3

        Raises:
            S3NotFoundError: When there is no such file

        Returns:
            StoredFile: The file size, mimetype and content stream
        """
        async with self._create_client() as client:
            try:
                response = await client.head_object(Bucket=self.bucket, Key=key)
            except (ClientError, BotoCoreError) as e:
                raise self._to_error(e, f"Failed to get file {key}")
        stored = StoredFile(name=key,
                            size=response.get("ContentLength", 0),
                            mime_type=response.get("ContentType"))
        stored._opener = lambda: self._stream(key)
        return stored

    async def put_file(self, key: str, data: Any, size: Optional[int] = None, mime_type: str = "application/octet-stream") -> int:
        """Perform the data upload to S3, the bucket is created when missing.

        Args:
            key (str): Path of the object in the bucket
            data (Any): Bytes or file-like object to be uploaded
            size (int, optional): Size of the data, when known
            mime_type (str, optional): Object mimetype

        Raises:
            S3Error: When S3 upload fails
            S3TimeoutError: When the upload takes longer than the timeout

        Returns:
            int: The object size in bytes
        """
        await self._ensure_bucket()
        logging.debug(f"put new object {key} to bucket {self.bucket}")

        async def upload():
            async with self._create_client() as client:
                put_kwargs = {
                    'Bucket': self.bucket,
                    'Key': key,
                    'Body': data,
                    'ContentType': mime_type
                }
                if size is not None:
                    put_kwargs['ContentLength'] = size
                try:
                    await client.put_object(**put_kwargs)
                    resp = await client.head_object(Bucket=self.bucket, Key=key)
                except (ClientError, BotoCoreError) as e:
                    raise self._to_error(e, "Failed to upload file")
                logging.info(
                    f"File uploaded path : {self.s3_endpoint_url}/{self.bucket}/{key}")
                return resp.get("ContentLength", 0)
        return await self._with_timeout(upload(), f"Upload of {key}")

    async def put_marker(self, key: str):
        """Put an empty object, used as folder marker.

        Args:
            key (str): The marker key, usually ending with a slash
        """
        async with self._create_client() as client:
            try:
                await client.put_object(Bucket=self.bucket, Key=key, Body=b"")
            except (ClientError, BotoCoreError) as e:
                raise self._to_error(e, f"Failed to create directory {key}")
        logging.info(f"Folder created path : {self.s3_endpoint_url}/{self.bucket}/{key}")

    async def copy_file(self, source_key: str, destination_key: str) -> str:
        """Copy a file from one location to another in the same S3 storage

        Args:
            source_key (str): Key of the file in S3
            destination_key (str): Destination key in S3

        Returns:
            str: The destination key
        """
        async with self._create_client() as client:
            try:
                await client.copy_object(
                    Bucket=self.bucket,
                    CopySource={'Bucket': self.bucket, 'Key': source_key},
                    Key=destination_key)
            except (ClientError, BotoCoreError) as e:
                raise self._to_error(e, f"Failed to copy file {source_key}")
        logging.info(
            f"File copied path : {self.s3_endpoint_url}/{self.bucket}/{destination_key}")
        return destination_key

    async def delete_file(self, key: str) -> str:
        """Delete file from S3 storage

        Args:
            key (str): Key of the file in S3

        Returns:
            str: The deleted key
        """
        async with self._create_client() as client:
            try:
                await client.delete_object(Bucket=self.bucket, Key=key)
            except (ClientError, BotoCoreError) as e:
                raise self._to_error(e, f"Failed to delete file {key}")
        logging.info(
            f"File deleted path : {self.s3_endpoint_url}/{self.bucket}/{key}")
        return key

    async def delete_files(self, keys: List[str]) -> List[Tuple[str, str]]:
        """Delete a batch of files, errors are reported per key.

        Args:
            keys (List[str]): The keys to delete, at most 1000

        Returns:
            List[Tuple[str, str]]: The keys that could not be deleted, with the error message
        """
        if not keys:
            return []
        if len(keys) > MAX_DELETE_KEYS:
            raise ValueError(f"Cannot delete more than {MAX_DELETE_KEYS} keys at once")
        async with self._create_client() as client:
            try:
                response = await client.delete_objects(
                    Bucket=self.bucket,
                    Delete={'Objects': [{'Key': key} for key in keys], 'Quiet': True})
            except (ClientError, BotoCoreError) as e:
                message = str(self._to_error(e, "Failed to delete files"))
                return [(key, message) for key in keys]
        errors = [(error.get('Key'), f"{error.get('Code')}: {error.get('Message')}")
                  for error in response.get('Errors', [])]
        failed = {key for key, _ in errors}
        for key in keys:
            if key not in failed:
                logging.info(
                    f"File deleted path : {self.s3_endpoint_url}/{self.bucket}/{key}")
        return errors

    #
    # Private methods
    #

    def _create_client(self):
        """Create an S3 client using the provided credentials and endpoint URL.

        Returns:
            Any: The S3 client.
        """
        settings = {
            'payload_signing_enabled': False,
            'use_accelerate_endpoint': False,
            'addressing_style': 'path'
        }
        if not self.with_checksums:
            # Completely disable checksums for S3-compatible services that don't support them
            settings['checksum_mode'] = 'DISABLED'
            settings['request_checksum_calculation'] = 'when_required'
            settings['response_checksum_validation'] = 'when_required'
        config = Config(
            s3=settings,
            signature_version='s3v4',
            disable_request_compression=True
        )

        session = get_session()
        return session.create_client(
            's3',
            region_name=self.region,
            endpoint_url=self.s3_endpoint_url,
            aws_secret_access_key=self.s3_secret_access_key,
            aws_access_key_id=self.s3_access_key_id,
            config=config)

    async def _ensure_bucket(self):
        if not await self.bucket_exists():
            logging.warning(f"no bucket {self.bucket}. creating new one...")
            await self.create_bucket()

    async def _stream(self, key: str) -> AsyncIterator[bytes]:
        async with self._create_client() as client:
            try:
                response = await client.get_object(Bucket=self.bucket, Key=key)
            except (ClientError, BotoCoreError) as e:
                raise self._to_error(e, f"Failed to get file {key}")
            async with response['Body'] as stream:
                while True:
                    chunk = await stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk

    async def _with_timeout(self, coroutine, what: str):
        try:
            return await asyncio.wait_for(coroutine, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise S3TimeoutError(f"{what} exceeded {self.timeout}s") from e

    def _error_code(self, error: ClientError) -> str:
        return str(error.response.get("Error", {}).get("Code", ""))

    def _to_error(self, error: Exception, message: str) -> S3Error:
        if isinstance(error, ClientError) and self._error_code(error) in NOT_FOUND_CODES:
            wrapped = S3NotFoundError(f"{message}. err: {error}")
        else:
            wrapped = S3Error(f"{message}. err: {error}")
        wrapped.__cause__ = error
        return wrapped
