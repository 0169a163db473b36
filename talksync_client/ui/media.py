"""
Image attachments.

Pictures are shrunk to fit the chat (800x600 at most), re-encoded as JPEG and
carried inline in the message as a base64 data URI.
"""

import base64
import binascii

from PyQt6.QtCore import QBuffer, QIODevice, Qt
from PyQt6.QtGui import QImage

from talksync_common.constants import MAX_IMAGE_WIDTH, MAX_IMAGE_HEIGHT, IMAGE_JPEG_QUALITY
from talksync_common.protocol_definitions import is_image_payload

JPEG_DATA_URI_PREFIX = 'data:image/jpeg;base64,'


def compress_image(path: str, max_width: int = MAX_IMAGE_WIDTH, max_height: int = MAX_IMAGE_HEIGHT,
                   quality: int = IMAGE_JPEG_QUALITY) -> str:
    """Load an image file and return it as a compressed JPEG data URI."""
    image = QImage(path)
    if image.isNull():
        raise ValueError(f"Not a readable image: {path}")
    return image_to_data_uri(image, max_width, max_height, quality)


def image_to_data_uri(image: QImage, max_width: int = MAX_IMAGE_WIDTH, max_height: int = MAX_IMAGE_HEIGHT,
                      quality: int = IMAGE_JPEG_QUALITY) -> str:
    if image.width() > max_width or image.height() > max_height:
        image = image.scaled(
            max_width, max_height,
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation
        )

    buffer = QBuffer()
    buffer.open(QIODevice.OpenModeFlag.WriteOnly)
    if not image.save(buffer, "JPEG", quality):
        raise ValueError("Could not encode image as JPEG")
    data = bytes(buffer.data())
    buffer.close()

    return JPEG_DATA_URI_PREFIX + base64.b64encode(data).decode('ascii')


def decode_image(data_uri: str) -> QImage:
    """Turn an inline image data URI back into a QImage."""
    if not is_image_payload(data_uri):
        raise ValueError("Not an image data URI")
    encoded = data_uri.split(',', 1)[1]
    try:
        raw = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Bad image encoding: {e}") from e

    image = QImage()
    if not image.loadFromData(raw):
        raise ValueError("Image data could not be decoded")
    return image
