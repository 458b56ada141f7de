from enum import Enum
from typing import Optional, List, AsyncIterator, Callable
from pydantic import BaseModel, Field, PrivateAttr

class SubDir(BaseModel):
  name: str
  subdirs: List["SubDir"] = Field(default_factory=list)
  files: List[str] = Field(default_factory=list)

# We need to update self references.
SubDir.model_rebuild()

class StoredFile(BaseModel):
  """A file object of the store. Its content is only fetched when iterated or read."""
  name: str
  size: int
  mime_type: Optional[str] = None
  _opener: Optional[Callable[[], AsyncIterator[bytes]]] = PrivateAttr(default=None)

  def iter_chunks(self) -> AsyncIterator[bytes]:
    if self._opener is None:
      raise ValueError(f"File {self.name} has no content stream")
    return self._opener()

  async def read(self) -> bytes:
    """Buffer the whole content of the file."""
    chunks = []
    async for chunk in self.iter_chunks():
      chunks.append(chunk)
    return b"".join(chunks)

class Rename(BaseModel):
  old: str
  new: str

class Move(BaseModel):
  src: str
  dst: str

class RemoveFileRequest(BaseModel):
  filename: str

class DirRequest(BaseModel):
  dir: str

class ErrorPolicy(str, Enum):
  ABORT_ON_FIRST_ERROR = "abort_on_first_error"
  COLLECT_AND_CONTINUE = "collect_and_continue"

class RewriteState(str, Enum):
  PENDING = "pending"
  COPIED = "copied"
  DELETED = "deleted"
  FAILED = "failed"

class KeyRewrite(BaseModel):
  source: str
  destination: Optional[str] = None
  state: RewriteState = RewriteState.PENDING
  error: Optional[str] = None

class RewriteReport(BaseModel):
  operation: str
  policy: ErrorPolicy
  rewrites: List[KeyRewrite] = Field(default_factory=list)
  errors: List[str] = Field(default_factory=list)

  @property
  def done(self) -> List[KeyRewrite]:
    return [rewrite for rewrite in self.rewrites if rewrite.state == RewriteState.DELETED]

  @property
  def failed(self) -> List[KeyRewrite]:
    return [rewrite for rewrite in self.rewrites if rewrite.error is not None]
