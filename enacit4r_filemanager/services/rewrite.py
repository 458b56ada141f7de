from contextlib import suppress
from typing import AsyncIterator, List, Optional
from ..models.files import ErrorPolicy, KeyRewrite, RewriteReport, RewriteState
from ..utils.keys import dir_key
from .s3 import S3Error, S3Service, S3TimeoutError, MAX_DELETE_KEYS
import asyncio
import logging


class RewriteAborted(S3Error):
  """Exception raised when a folder operation stops on a failing key. The keys
  handled before the failure are not restored, see the report."""

  def __init__(self, error: Exception, report: RewriteReport):
    super().__init__(str(error))
    self.error = error
    self.report = report


class PrefixRewriter:
  """
  Folder level operations on a flat key space. A folder is rewritten or deleted
  key by key: nothing is atomic across keys and no lock is taken, callers must
  not run conflicting folder operations concurrently.
  """

  def __init__(self, s3_service: S3Service,
               rename_policy: ErrorPolicy = ErrorPolicy.ABORT_ON_FIRST_ERROR,
               delete_policy: ErrorPolicy = ErrorPolicy.COLLECT_AND_CONTINUE,
               queue_size: int = MAX_DELETE_KEYS,
               list_timeout: float = 10.0):
    """Initialize the rewriter.

    Args:
        s3_service (S3Service): The object store.
        rename_policy (ErrorPolicy, optional): Behaviour of rename and move on a failing key. Defaults to abort on first error.
        delete_policy (ErrorPolicy, optional): Behaviour of folder removal on a failing key. Defaults to collect and continue.
        queue_size (int, optional): Number of listed keys buffered ahead of the bulk deletes. Defaults to 1000.
        list_timeout (float, optional): Maximum wait in seconds for the next listed key of a folder removal. Defaults to 10.
    """
    self.s3_service = s3_service
    self.rename_policy = rename_policy
    self.delete_policy = delete_policy
    self.queue_size = queue_size
    self.list_timeout = list_timeout

  async def create_directory(self, folder: str) -> str:
    """Put the empty marker object of a folder.

    Args:
        folder (str): The folder key, without trailing slash.

    Returns:
        str: The marker key.
    """
    marker = self._folder_prefix(folder)
    await self.s3_service.put_marker(marker)
    return marker

  async def rename_file(self, source_key: str, destination_key: str) -> KeyRewrite:
    """Copy a file to its new key, then delete the original.

    If the delete fails the copy is kept: both keys exist afterwards.

    Args:
        source_key (str): The current file key.
        destination_key (str): The new file key.

    Raises:
        S3Error: The copy or delete error.

    Returns:
        KeyRewrite: The rewrite, in deleted state.
    """
    rewrite = KeyRewrite(source=source_key, destination=destination_key)
    await self._rewrite_key(rewrite)
    return rewrite

  async def move_file(self, source_key: str, destination_key: str) -> KeyRewrite:
    return await self.rename_file(source_key, destination_key)

  async def rename_directory(self, old_folder: str, new_folder: str) -> RewriteReport:
    """Rename a folder: every key under the old folder is copied under the new
    folder, keeping its path relative to the folder, then deleted.

    Args:
        old_folder (str): The folder key.
        new_folder (str): The new folder key.

    Raises:
        RewriteAborted: When a key fails and the policy is to abort on first error.

    Returns:
        RewriteReport: The state of every key rewrite.
    """
    old_prefix = self._folder_prefix(old_folder)
    new_prefix = self._folder_prefix(new_folder)
    report = RewriteReport(operation="rename_directory", policy=self.rename_policy)

    # the whole listing is done first: the new folder may be under the old one
    keys = await self.s3_service.list_files(old_prefix)
    for key in keys:
      rewrite = KeyRewrite(source=key, destination=f"{new_prefix}{key[len(old_prefix):]}")
      report.rewrites.append(rewrite)
      try:
        await self._rewrite_key(rewrite)
      except S3Error as e:
        report.errors.append(str(e))
        if self.rename_policy == ErrorPolicy.ABORT_ON_FIRST_ERROR:
          logging.error(f"Folder rename {old_prefix} -> {new_prefix} aborted at {key}: {e}")
          raise RewriteAborted(e, report) from e
        logging.error(f"Folder rename {old_prefix} -> {new_prefix} failed at {key}: {e}")
    return report

  async def move_directory(self, source_folder: str, destination_folder: str) -> RewriteReport:
    report = await self.rename_directory(source_folder, destination_folder)
    report.operation = "move_directory"
    return report

  async def remove_directory(self, folder: str) -> RewriteReport:
    """Delete a folder and its whole content with bulk deletes.

    Listing runs in a producer task feeding a bounded queue, keys are deleted
    by batches as they come. Failing keys are logged and reported; with the
    collect and continue policy the removal goes on.

    Args:
        folder (str): The folder key.

    Raises:
        RewriteAborted: When a key fails and the policy is to abort on first error.

    Returns:
        RewriteReport: The state of every key deletion.
    """
    prefix = self._folder_prefix(folder)
    report = RewriteReport(operation="remove_directory", policy=self.delete_policy)
    queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)

    async def produce():
      keys = self.s3_service.iter_keys(prefix, recursive=True)
      try:
        while True:
          key = await self._next_key(keys, prefix)
          if key is None:
            break
          await queue.put(key)
      except S3Error as e:
        logging.error(f"list of objects error: {e}")
        report.errors.append(str(e))
      except Exception:
        # release the consumer, the error is raised when the producer is awaited
        await queue.put(None)
        raise
      finally:
        await keys.aclose()
      await queue.put(None)

    producer = asyncio.create_task(produce())
    try:
      batch: List[str] = []
      while True:
        key = await queue.get()
        if key is None:
          break
        batch.append(key)
        if len(batch) >= MAX_DELETE_KEYS:
          await self._delete_batch(batch, report)
          batch = []
      await self._delete_batch(batch, report)
      await producer
    finally:
      if not producer.done():
        producer.cancel()
        with suppress(asyncio.CancelledError):
          await producer

    if report.errors and self.delete_policy == ErrorPolicy.ABORT_ON_FIRST_ERROR:
      raise RewriteAborted(S3Error(report.errors[0]), report)
    return report

  #
  # Private methods
  #

  async def _next_key(self, keys: AsyncIterator[str], prefix: str) -> Optional[str]:
    try:
      return await asyncio.wait_for(anext(keys, None), timeout=self.list_timeout)
    except asyncio.TimeoutError as e:
      raise S3TimeoutError(f"Listing of {prefix} stalled for more than {self.list_timeout}s") from e

  def _folder_prefix(self, folder: str) -> str:
    prefix = dir_key(folder)
    if not prefix:
      raise ValueError("The root folder cannot be used as a folder operand")
    return prefix

  async def _rewrite_key(self, rewrite: KeyRewrite):
    try:
      await self.s3_service.copy_file(rewrite.source, rewrite.destination)
    except S3Error as e:
      rewrite.state = RewriteState.FAILED
      rewrite.error = str(e)
      raise
    rewrite.state = RewriteState.COPIED
    try:
      await self.s3_service.delete_file(rewrite.source)
    except S3Error as e:
      # the copy stays, source and destination both exist
      rewrite.error = str(e)
      raise
    rewrite.state = RewriteState.DELETED

  async def _delete_batch(self, keys: List[str], report: RewriteReport):
    if not keys:
      return
    errors = dict(await self.s3_service.delete_files(keys))
    for key in keys:
      rewrite = KeyRewrite(source=key)
      if key in errors:
        rewrite.state = RewriteState.FAILED
        rewrite.error = errors[key]
        report.errors.append(f"{key}: {errors[key]}")
        logging.error(f"remove object error {key}: {errors[key]}")
      else:
        rewrite.state = RewriteState.DELETED
      report.rewrites.append(rewrite)
    if errors and self.delete_policy == ErrorPolicy.ABORT_ON_FIRST_ERROR:
      raise RewriteAborted(S3Error(report.errors[0]), report)
