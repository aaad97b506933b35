import boto3
from botocore.exceptions import BotoCoreError, ClientError
import os
from po_portal.config import Settings
from po_portal.errors import StorageError
import logging

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "supplier-invoices"
LOGO_PREFIX = "company-logos"

# Types an invoice may be stored and served as
ALLOWED_INVOICE_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/tiff",
}


def invoice_key(company_id, po_id, invoice_id, filename: str) -> str:
    """Storage key for a supplier invoice, unique per upload"""
    return f"{INVOICE_PREFIX}/{company_id}/{po_id}/{invoice_id}/{safe_filename(filename)}"


def logo_key(company_id, filename: str) -> str:
    return f"{LOGO_PREFIX}/{company_id}/{safe_filename(filename)}"


def safe_filename(filename: str) -> str:
    """Strip any directory components a client may have sent"""
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    if name in ("", ".", ".."):
        return "upload.bin"
    return name


class StorageService:
    """Service for handling object storage (S3-compatible) operations"""

    def __init__(self, settings: Settings):
        self.bucket_name = settings.storage_bucket_name

        # Initialize S3 client only if we have credentials
        # Require both access key and secret key to use S3
        if settings.storage_access_key_id and settings.storage_secret_access_key:
            s3_config = {
                'aws_access_key_id': settings.storage_access_key_id,
                'aws_secret_access_key': settings.storage_secret_access_key,
            }
            if settings.storage_endpoint_url:
                s3_config['endpoint_url'] = settings.storage_endpoint_url
            if settings.storage_region:
                s3_config['region_name'] = settings.storage_region

            self.s3_client = boto3.client('s3', **s3_config)
            logger.info("S3 storage initialized successfully")
        else:
            # Fallback to local filesystem if no S3 credentials
            logger.info("No S3 credentials found, using local filesystem storage")
            self.s3_client = None

        self.local_storage_dir = os.path.abspath(settings.local_storage_dir)
        if not self.s3_client:
            os.makedirs(self.local_storage_dir, exist_ok=True)
            logger.info(f"Local storage directory initialized: {self.local_storage_dir}")

    def _get_content_type(self, filename: str) -> str:
        """Determine content type based on file extension"""
        ext = filename.lower().split('.')[-1] if '.' in filename else ''
        content_types = {
            'pdf': 'application/pdf',
            'png': 'image/png',
            'jpg': 'image/jpeg',
            'jpeg': 'image/jpeg',
            'gif': 'image/gif',
            'webp': 'image/webp',
            'tiff': 'image/tiff',
            'tif': 'image/tiff',
            'svg': 'image/svg+xml',
        }
        return content_types.get(ext, 'application/octet-stream')

    def _local_path(self, storage_key: str) -> str:
        path = os.path.abspath(os.path.join(self.local_storage_dir, storage_key))
        if not path.startswith(self.local_storage_dir + os.sep):
            raise StorageError(f"Invalid storage key: {storage_key}")
        return path

    def upload_file(self, file_content: bytes, storage_key: str, content_type: str = None) -> str:
        """
        Upload a file to object storage, overwriting any object at the same key

        Args:
            file_content: Binary content of the file
            storage_key: Key built with invoice_key() or logo_key()
            content_type: MIME type; guessed from the key when omitted

        Returns:
            The storage key
        """
        content_type = content_type or self._get_content_type(storage_key)

        if self.s3_client:
            try:
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=storage_key,
                    Body=file_content,
                    ContentType=content_type
                )
                logger.info(f"Uploaded {len(file_content)} bytes to s3://{self.bucket_name}/{storage_key}")
                return storage_key
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Failed to upload {storage_key} to S3: {e}")
                raise StorageError(f"Failed to upload file: {e}")

        local_path = self._local_path(storage_key)
        try:
            os.makedirs(os.path.dirname(local_path), exist_ok=True)
            with open(local_path, 'wb') as f:
                f.write(file_content)
        except OSError as e:
            logger.error(f"Failed to save file to local storage: {e}")
            raise StorageError(f"Failed to save file: {e}")
        logger.info(f"File saved to local storage: {local_path}")
        return storage_key

    def download_file(self, storage_key: str) -> bytes:
        """
        Download a file from storage

        Raises:
            FileNotFoundError if nothing is stored at the key
        """
        if self.s3_client:
            try:
                response = self.s3_client.get_object(
                    Bucket=self.bucket_name,
                    Key=storage_key
                )
                return response['Body'].read()
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                    raise FileNotFoundError(storage_key)
                raise StorageError(f"Failed to download file: {e}")

        local_path = self._local_path(storage_key)
        if not os.path.exists(local_path):
            raise FileNotFoundError(f"File not found: {storage_key}")
        with open(local_path, 'rb') as f:
            return f.read()

    def content_type_for(self, storage_key: str) -> str:
        return self._get_content_type(storage_key)
