from .files import FilesService
from ..models.files import SubDir, StoredFile
from .rewrite import PrefixRewriter, RewriteAborted
from .s3 import S3Service, S3Error, S3NotFoundError, S3TimeoutError
