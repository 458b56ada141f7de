from .models.files import SubDir, StoredFile, RewriteReport, KeyRewrite, ErrorPolicy
from .services.files import FilesService
from .services.rewrite import PrefixRewriter, RewriteAborted
from .services.s3 import S3Service, S3Error, S3NotFoundError, S3TimeoutError
from .utils.tree import SubDirTreeBuilder, TreeBuildError
