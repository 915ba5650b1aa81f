"""
Exceptions raised by the menu services.

Services raise these; the API layer turns them into HTTP errors or
failed ``MenuResult`` payloads.
"""


class MenuServiceError(Exception):
    """Base exception for the QR menu service"""
    code = "MENU_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self):
        return {
            'error': True,
            'code': self.code,
            'message': self.message
        }


class RecordStoreError(MenuServiceError):
    """Reading or writing the record store failed"""
    code = "RECORD_STORE_ERROR"
    status_code = 503


class RecordConflictError(RecordStoreError):
    """A compare-and-set commit found a newer revision than expected"""
    code = "RECORD_CONFLICT"
    status_code = 409


class MenuConflictError(MenuServiceError):
    """The current menu changed while a save or restore was in flight"""
    code = "MENU_CONFLICT"
    status_code = 409


class MenuNotFoundError(MenuServiceError):
    code = "MENU_NOT_FOUND"
    status_code = 404


class AssetHostError(MenuServiceError):
    """An object store call failed"""
    code = "ASSET_HOST_ERROR"
    status_code = 502


class DocumentRenderError(MenuServiceError):
    code = "DOCUMENT_RENDER_ERROR"
    status_code = 400


class InvalidUploadError(MenuServiceError):
    code = "INVALID_UPLOAD"
    status_code = 400


class UploadTooLargeError(InvalidUploadError):
    code = "UPLOAD_TOO_LARGE"
    status_code = 413
