from typing import Callable, List, Optional
from fastapi.datastructures import UploadFile
from ..models.files import KeyRewrite, RewriteReport, StoredFile, SubDir
from ..utils.keys import (KeyDecodeError, dir_key, join_key, normalize_file_name,
                          sanitize_file_name, sanitize_path, strip_processing_prefix)
from ..utils.tree import SubDirTreeBuilder
from .rewrite import PrefixRewriter
from .s3 import S3Service
import logging
import mimetypes

class FilesService:
  """
  This service provides a file system view over the flat key space of a S3
  bucket. User paths are relative to the root folder, which is prepended to
  every path sent to the store and removed from every path it returns.
  """

  def __init__(self, s3_service: S3Service, root_prefix: str = "",
               rewriter: Optional[PrefixRewriter] = None,
               tree_order: str = "desc", tree_strict: bool = False, empty_listing: str = "error",
               on_skip: Optional[Callable[[str, KeyDecodeError], None]] = None):
    """Initialize the files service.

    Args:
        s3_service (S3Service): The object store.
        root_prefix (str, optional): The root folder of all the keys. Defaults to "".
        rewriter (PrefixRewriter, optional): The folder operations engine. Defaults to one with the default error policies.
        tree_order (str, optional): Sort order of the listed folders. Defaults to "desc".
        tree_strict (bool, optional): Fail listings on undecodable keys. Defaults to False.
        empty_listing (str, optional): "error" or "empty", see SubDirTreeBuilder. Defaults to "error".
        on_skip (Callable, optional): Hook called for each undecodable key skipped by listings.
    """
    self.s3_service = s3_service
    self.root_prefix = root_prefix.strip("/")
    self.rewriter = rewriter if rewriter is not None else PrefixRewriter(s3_service)
    self.tree_order = tree_order
    self.tree_strict = tree_strict
    self.empty_listing = empty_listing
    self.on_skip = on_skip

  def to_key(self, path: str) -> str:
    """Get the store key of a user path.

    Args:
        path (str): The path relative to the root folder.

    Raises:
        ValueError: When the path is not valid.

    Returns:
        str: The object key.
    """
    return join_key(self.root_prefix, sanitize_path(path))

  def to_folder_key(self, path: str) -> str:
    """Get the store key of a user folder, the root folder itself is refused.

    Args:
        path (str): The folder path relative to the root folder.

    Raises:
        ValueError: When the path is not valid or designates the root folder.

    Returns:
        str: The folder key, without trailing slash.
    """
    folder = sanitize_path(path).strip("/")
    if not folder:
      raise ValueError("Invalid path: the root folder cannot be used as a folder")
    return join_key(self.root_prefix, folder)

  def from_key(self, key: str) -> str:
    """Get the user path of a store key."""
    return strip_processing_prefix(key, self.root_prefix)

  async def get_file(self, path: str) -> StoredFile:
    """Get a file, its content is streamed on demand.

    Args:
        path (str): The file path.

    Returns:
        StoredFile: The file descriptor.
    """
    stored = await self.s3_service.get_file(self.to_key(path))
    stored.name = self.from_key(stored.name)
    return stored

  async def get_files(self) -> List[SubDir]:
    """Get the tree of folders and files below the root folder.

    Raises:
        TreeBuildError: When there is nothing to list and empty listings are errors.

    Returns:
        List[SubDir]: The top level folders.
    """
    keys = await self.s3_service.list_files(dir_key(self.root_prefix), recursive=True)
    builder = SubDirTreeBuilder(order=self.tree_order, strict=self.tree_strict,
                                empty=self.empty_listing, on_skip=self.on_skip)
    tree = builder.add_keys([self.from_key(key) for key in keys]).build()
    if builder.skipped:
      logging.warning(f"{builder.skipped} key(s) skipped while listing {self.root_prefix or 'bucket'}")
    return tree

  async def upload_file(self, upload_file: UploadFile, folder: str = "") -> StoredFile:
    """Upload a file to the specified folder. The file name is normalized:
    spaces become underscores, accents are removed.

    Args:
        upload_file (UploadFile): The file to upload.
        folder (str, optional): The folder to upload the file to. Defaults to "".

    Returns:
        StoredFile: The uploaded file descriptor, without content stream.
    """
    name = normalize_file_name(sanitize_file_name(upload_file.filename))
    key = self.to_key(join_key(folder, name))
    mime_type = upload_file.content_type or self._get_mime_type(name)
    content = await upload_file.read()
    size = await self.s3_service.put_file(key, content, size=len(content), mime_type=mime_type)
    return StoredFile(name=self.from_key(key), size=size, mime_type=mime_type)

  async def remove_file(self, path: str) -> str:
    key = self.to_key(path)
    await self.s3_service.delete_file(key)
    return self.from_key(key)

  async def rename_file(self, old: str, new: str) -> KeyRewrite:
    """Rename a file: copy to the new path, then delete the old one.

    Args:
        old (str): The current file path.
        new (str): The new file path.

    Returns:
        KeyRewrite: The file rewrite.
    """
    rewrite = await self.rewriter.rename_file(self.to_key(old), self.to_key(new))
    return self._relative_rewrite(rewrite)

  async def move_file(self, src: str, dst: str) -> KeyRewrite:
    rewrite = await self.rewriter.move_file(self.to_key(src), self.to_key(dst))
    return self._relative_rewrite(rewrite)

  async def create_directory(self, folder: str) -> str:
    """Create an empty folder, as a marker object.

    Args:
        folder (str): The folder path.

    Returns:
        str: The folder path.
    """
    marker = await self.rewriter.create_directory(self.to_folder_key(folder))
    return self.from_key(marker)

  async def rename_directory(self, old: str, new: str) -> RewriteReport:
    """Rename a folder, key by key.

    Args:
        old (str): The current folder path.
        new (str): The new folder path.

    Raises:
        RewriteAborted: When a key fails, keys already renamed stay renamed.

    Returns:
        RewriteReport: The state of every key rewrite.
    """
    report = await self.rewriter.rename_directory(self.to_folder_key(old), self.to_folder_key(new))
    return self._relative_report(report)

  async def move_directory(self, src: str, dst: str) -> RewriteReport:
    report = await self.rewriter.move_directory(self.to_folder_key(src), self.to_folder_key(dst))
    return self._relative_report(report)

  async def remove_directory(self, folder: str) -> RewriteReport:
    """Remove a folder and its content. Failing keys are logged and reported,
    they do not fail the removal.

    Args:
        folder (str): The folder path.

    Returns:
        RewriteReport: The state of every key deletion.
    """
    report = await self.rewriter.remove_directory(self.to_folder_key(folder))
    return self._relative_report(report)

  #
  # Private methods
  #

  def _relative_rewrite(self, rewrite: KeyRewrite) -> KeyRewrite:
    return rewrite.model_copy(update={
      "source": self.from_key(rewrite.source),
      "destination": self.from_key(rewrite.destination) if rewrite.destination is not None else None,
    })

  def _relative_report(self, report: RewriteReport) -> RewriteReport:
    return report.model_copy(update={
      "rewrites": [self._relative_rewrite(rewrite) for rewrite in report.rewrites],
    })

  def _get_mime_type(self, file_name: str) -> str:
    """Guess the mime type from file name.

    Args:
        file_name (str): The file name.

    Returns:
        str: A standard mime type string.
    """
    mime_type, encoding = mimetypes.guess_type(file_name)
    if mime_type is None:
      if file_name.endswith('.webp'):
        mime_type = 'image/webp'
      else:
        mime_type = 'application/octet-stream'
    return mime_type
