from fastapi.exceptions import HTTPException
from fastapi.datastructures import UploadFile

# multipart forms are kept in memory up to 32 MB
DEFAULT_MAX_FILE_SIZE = 32 << 20


class FileChecker:
    """A class that checks the uploaded files before they are sent to the store
    """

    def __init__(self, max_size: int = DEFAULT_MAX_FILE_SIZE):
        self.max_size = max_size

    async def check_files(self, files: list[UploadFile]) -> list[UploadFile]:
        """Check the uploaded files: each one must be named and not exceed the max size.

        Args:
            files (list[UploadFile]): The uploaded files

        Raises:
            HTTPException: 400 when a file is not valid

        Returns:
            list[UploadFile]: The checked files, ready to be read again
        """
        for file in files:
            if not file.filename:
                raise HTTPException(400, detail="Uploaded file has no name")
            await self._check_size(file)
        return files

    async def _check_size(self, file: UploadFile):
        file_size = file.size
        if file_size is None:
            content = await file.read()
            file_size = len(content)
            await file.seek(0)
        if file_size > self.max_size:
            detail = f"File {file.filename} size {file_size} exceeds max size {self.max_size}"
            raise HTTPException(400, detail=detail)
