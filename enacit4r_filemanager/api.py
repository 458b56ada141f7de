from typing import AsyncIterator, List, Optional
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from .config import Settings
from .models.files import DirRequest, Move, RemoveFileRequest, Rename, StoredFile, SubDir
from .services.files import FilesService
from .services.rewrite import PrefixRewriter
from .services.s3 import S3Error, S3Service
from .utils.files import FileChecker
from .utils.tree import TreeBuildError
import logging

router = APIRouter()


def get_files_service(request: Request) -> FilesService:
  return request.app.state.files_service


def get_file_checker(request: Request) -> FileChecker:
  return request.app.state.file_checker


def _fail(status_code: int, error: Exception):
  logging.error(f"Request failed ({status_code}): {error}")
  raise HTTPException(status_code, detail=str(error))


@router.get("/static", response_model=None)
@router.get("/static/{path:path}", response_model=None)
async def get_file(path: str = "", service: FilesService = Depends(get_files_service)):
  if not path:
    logging.info("Get files from bucket")
    try:
      tree: List[SubDir] = await service.get_files()
    except (S3Error, TreeBuildError, ValueError) as e:
      _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
    return JSONResponse(jsonable_encoder(tree))

  try:
    stored = await service.get_file(path)
    body = await _open_body(stored)
  except (S3Error, ValueError) as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  headers = {"Content-Length": str(stored.size)}
  return StreamingResponse(body, media_type=stored.mime_type, headers=headers)


async def _open_body(stored: StoredFile) -> AsyncIterator[bytes]:
  # the object is fetched before any header is sent, store errors still give a proper status
  chunks = stored.iter_chunks()
  first = await anext(chunks, None)

  async def body():
    if first is not None:
      yield first
    async for chunk in chunks:
      yield chunk
  return body()


@router.post("/file/upload", status_code=status.HTTP_201_CREATED)
async def upload_files(request: Request,
                       service: FilesService = Depends(get_files_service),
                       checker: FileChecker = Depends(get_file_checker)):
  logging.info("Upload file")
  form = await request.form()
  files = [item for item in form.getlist("file") if isinstance(item, StarletteUploadFile)]
  if not files:
    raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing file in form")
  folder: Optional[str] = form.get("dir")
  if folder is None or not isinstance(folder, str):
    raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing dir in form")
  await checker.check_files(files)

  uploaded = []
  for upload_file in files:
    try:
      uploaded.append(await service.upload_file(upload_file, folder))
    except (S3Error, ValueError) as e:
      _fail(status.HTTP_400_BAD_REQUEST, e)
  return uploaded


@router.delete("/file/remove")
async def remove_file(body: RemoveFileRequest, service: FilesService = Depends(get_files_service)):
  logging.info("Delete file")
  try:
    await service.remove_file(body.filename)
  except (S3Error, ValueError) as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  return Response(status_code=status.HTTP_200_OK)


@router.post("/file/rename")
async def rename_file(body: Rename, service: FilesService = Depends(get_files_service)):
  logging.info("Rename file")
  try:
    await service.rename_file(body.old, body.new)
  except ValueError as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  except S3Error as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  return Response(status_code=status.HTTP_200_OK)


@router.post("/file/move")
async def move_file(body: Move, service: FilesService = Depends(get_files_service)):
  logging.info("Move file")
  try:
    await service.move_file(body.src, body.dst)
  except ValueError as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  except S3Error as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  return Response(status_code=status.HTTP_200_OK)


@router.post("/dir/create")
async def create_directory(body: DirRequest, service: FilesService = Depends(get_files_service)):
  logging.info("Create directory")
  try:
    await service.create_directory(body.dir)
  except ValueError as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  except S3Error as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  return Response(status_code=status.HTTP_201_CREATED)


@router.post("/dir/rename")
async def rename_directory(body: Rename, service: FilesService = Depends(get_files_service)):
  logging.info("Rename directory")
  try:
    report = await service.rename_directory(body.old, body.new)
  except ValueError as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  except S3Error as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  return report


@router.post("/dir/move")
async def move_directory(body: Move, service: FilesService = Depends(get_files_service)):
  logging.info("Move directory")
  try:
    report = await service.move_directory(body.src, body.dst)
  except ValueError as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  except S3Error as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  return report


@router.delete("/dir/remove")
async def remove_directory(body: DirRequest, service: FilesService = Depends(get_files_service)):
  logging.info("Remove directory")
  try:
    report = await service.remove_directory(body.dir)
  except ValueError as e:
    _fail(status.HTTP_422_UNPROCESSABLE_ENTITY, e)
  except S3Error as e:
    _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e)
  return report


async def _http_error_handler(request: Request, exc: StarletteHTTPException):
  return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError):
  messages = [f"{'.'.join([str(loc) for loc in error['loc']])}: {error['msg']}" for error in exc.errors()]
  return JSONResponse({"error": "; ".join(messages)}, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


def make_files_service(settings: Settings) -> FilesService:
  """Build the files service described by the settings."""
  s3_service = S3Service(s3_endpoint_url=settings.endpoint,
                         s3_access_key_id=settings.access_key,
                         s3_secret_access_key=settings.secret_key,
                         region=settings.region,
                         bucket=settings.bucket,
                         with_checksums=settings.with_checksums,
                         timeout=settings.timeout)
  return FilesService(s3_service,
                      root_prefix=settings.root_prefix,
                      rewriter=PrefixRewriter(s3_service, list_timeout=settings.timeout),
                      tree_order=settings.tree_order,
                      tree_strict=settings.tree_strict,
                      empty_listing=settings.empty_listing)


def create_app(settings: Settings, files_service: Optional[FilesService] = None) -> FastAPI:
  """Make the file manager application.

  Args:
      settings (Settings): The application settings.
      files_service (FilesService, optional): The files service. Defaults to one built from the settings.

  Returns:
      FastAPI: The application
  """
  app = FastAPI(title="File manager")
  app.state.files_service = files_service if files_service is not None else make_files_service(settings)
  app.state.file_checker = FileChecker(max_size=settings.max_upload_size)
  app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["X-Requested-With", "Content-Type"],
  )
  app.add_exception_handler(StarletteHTTPException, _http_error_handler)
  app.add_exception_handler(RequestValidationError, _validation_error_handler)
  app.include_router(router)
  return app
