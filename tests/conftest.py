import asyncio
import pytest
from typing import Dict, List, Optional, Set, Tuple
from enacit4r_filemanager.models.files import StoredFile
from enacit4r_filemanager.services.s3 import S3Error, S3NotFoundError


class MemoryS3Service:
    """An in-memory stand-in of S3Service, with failure injection."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        for key, content in (objects or {}).items():
            self.objects[key] = (content, "application/octet-stream")
        self.fail_copy_at: Optional[int] = None
        self.fail_delete_keys: Set[str] = set()
        self.fail_listing = False
        self.listing_error: Optional[Exception] = None
        self.list_delay = 0.0
        self.fail_put = False
        self.vanished_keys: Set[str] = set()
        self.copy_calls: List[Tuple[str, str]] = []
        self.delete_calls: List[str] = []
        self.bulk_delete_calls: List[List[str]] = []

    async def list_files(self, prefix: str, recursive: bool = True) -> List[str]:
        return [key async for key in self.iter_keys(prefix, recursive)]

    async def iter_keys(self, prefix: str, recursive: bool = True):
        if self.listing_error is not None:
            raise self.listing_error
        if self.fail_listing:
            raise S3Error("listing failed")
        for key in sorted(self.objects):
            if key.startswith(prefix):
                if self.list_delay:
                    await asyncio.sleep(self.list_delay)
                yield key

    async def path_exists(self, key: str) -> bool:
        return key in self.objects

    async def get_file(self, key: str) -> StoredFile:
        if key not in self.objects:
            raise S3NotFoundError(f"Failed to get file {key}. err: NoSuchKey")
        content, mime_type = self.objects[key]

        async def stream():
            if key in self.vanished_keys:
                raise S3NotFoundError(f"Failed to get file {key}. err: NoSuchKey")
            yield content

        stored = StoredFile(name=key, size=len(content), mime_type=mime_type)
        stored._opener = stream
        return stored

    async def put_file(self, key: str, data, size: Optional[int] = None, mime_type: str = "application/octet-stream") -> int:
        if self.fail_put:
            raise S3Error("Failed to upload file. err: injected")
        content = data if isinstance(data, bytes) else data.read()
        self.objects[key] = (content, mime_type)
        return len(content)

    async def put_marker(self, key: str):
        self.objects[key] = (b"", "application/octet-stream")

    async def copy_file(self, source_key: str, destination_key: str) -> str:
        self.copy_calls.append((source_key, destination_key))
        if self.fail_copy_at is not None and len(self.copy_calls) == self.fail_copy_at:
            raise S3Error(f"Failed to copy file {source_key}. err: injected")
        if source_key not in self.objects:
            raise S3NotFoundError(f"Failed to copy file {source_key}. err: NoSuchKey")
        self.objects[destination_key] = self.objects[source_key]
        return destination_key

    async def delete_file(self, key: str) -> str:
        self.delete_calls.append(key)
        if key in self.fail_delete_keys:
            raise S3Error(f"Failed to delete file {key}. err: injected")
        self.objects.pop(key, None)
        return key

    async def delete_files(self, keys: List[str]) -> List[Tuple[str, str]]:
        self.bulk_delete_calls.append(list(keys))
        errors = []
        for key in keys:
            if key in self.fail_delete_keys:
                errors.append((key, "AccessDenied: injected"))
            else:
                self.objects.pop(key, None)
        return errors


@pytest.fixture
def memory_s3():
    return MemoryS3Service()
