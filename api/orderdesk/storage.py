import io
import logging
from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError as TransportError
from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_BUCKET
from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=False
)


def ensure_bucket():
    if not _client.bucket_exists(MINIO_BUCKET):
        _client.make_bucket(MINIO_BUCKET)


def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream") -> dict:
    try:
        ensure_bucket()
        _client.put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)
    except (S3Error, TransportError) as exc:
        logger.exception("storage put failed for %s", key)
        raise UpstreamFailure("File storage is unavailable, please retry the upload") from exc
    return {"url": key, "type": content_type}


def get_bytes(key: str) -> bytes:
    try:
        resp = _client.get_object(MINIO_BUCKET, key)
    except S3Error as exc:
        if exc.code == "NoSuchKey":
            raise
        logger.exception("storage get failed for %s", key)
        raise UpstreamFailure("File storage is unavailable") from exc
    except TransportError as exc:
        logger.exception("storage get failed for %s", key)
        raise UpstreamFailure("File storage is unavailable") from exc
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()


def delete_object(key: str):
    try:
        _client.remove_object(MINIO_BUCKET, key)
    except (S3Error, TransportError) as exc:
        logger.exception("storage delete failed for %s", key)
        raise UpstreamFailure("File storage is unavailable") from exc
