# app/core/storage_utils.py
import uuid

from app.core.clock import utcnow
from app.core.supabase_client import documents_bucket


def upload_to_storage(
    path: str,
    file_bytes: bytes,
    content_type: str = "application/octet-stream",
) -> str:
    """
    Store a receipt or label in the private documents bucket.

    Only the object path is persisted on our rows; files are served
    through signed URLs, never publicly. Re-uploading to the same path
    overwrites (``upsert``), which keeps retried label uploads idempotent.

    Raises:
        Whatever the Supabase client raises; callers map it to a 502.
    """
    documents_bucket().upload(
        path,
        file_bytes,
        {"content-type": content_type, "upsert": "true"},
    )
    return path


def generate_filename(ext: str) -> str:
    return f"{uuid.uuid4()}.{ext}"


def receipt_path(order_number: str, ext: str) -> str:
    """payments/receipts/<order_number>/<uuid>.<ext>"""
    return f"payments/receipts/{order_number}/{generate_filename(ext)}"


def label_path(order_number: str) -> str:
    # One label per order, bucketed by month of shipping.
    return f"shipping/labels/{utcnow():%Y/%m}/label_{order_number}.pdf"
