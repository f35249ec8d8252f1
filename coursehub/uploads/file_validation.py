import base64
import binascii
from typing import Optional

from pydantic import BaseModel, Field

MB = 1024 * 1024
GB = 1024 * MB

VIDEO_TYPES = {"video/mp4", "video/mov", "video/quicktime", "video/avi", "video/webm"}
IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}

MAX_VIDEO_SIZE = 2 * GB
MAX_IMAGE_SIZE = 10 * MB
MAX_PDF_SIZE = 50 * MB


class FilePayload(BaseModel):
    """File sent inline as base64"""
    name: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    type: str
    data: str

    def decode(self) -> bytes:
        """Decoded bytes; the declared size must match them"""
        try:
            content = base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("File data is not valid base64")
        if len(content) != self.size:
            raise ValueError("File size does not match the uploaded data")
        return content

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1].lower() if "." in self.name else ""


def validate_video_file(file: FilePayload, content: bytes) -> Optional[str]:
    if file.type not in VIDEO_TYPES:
        return "Invalid file type. Only MP4, MOV, AVI, and WebM are allowed."
    if len(content) > MAX_VIDEO_SIZE:
        return "File size too large. Maximum size is 2GB."
    return None


def validate_image_file(file: FilePayload, content: bytes) -> Optional[str]:
    if file.type not in IMAGE_TYPES:
        return "Invalid file type. Only JPEG, PNG, and WebP are allowed."
    if len(content) > MAX_IMAGE_SIZE:
        return "File size too large. Maximum size is 10MB."
    return None


def validate_pdf_file(file: FilePayload, content: bytes) -> Optional[str]:
    if file.type != "application/pdf":
        return "Invalid file type. Only PDF files are allowed."
    if len(content) > MAX_PDF_SIZE:
        return "File size too large. Maximum size is 50MB."
    return None
