"""Exceptions raised by the upload pipeline."""


class UploadError(Exception):
    """Client-side upload failure.

    ``message`` is the plain-text body returned to the client.
    """

    message: str = "Upload failed!"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidInput(UploadError):
    message = "Please send a valid data.uri!"


class PayloadTooLarge(UploadError):
    message = "File is larger than 15MB!"


class UnsupportedMediaType(UploadError):
    message = "Unsupported file type!"


class MetadataStoreError(Exception):
    """The upload-date document is unreadable or malformed."""
