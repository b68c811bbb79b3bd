from .base import (
    BaseCaptureClient,
    CaptureError,
    CaptureRequestError,
    PersistenceError,
    RemoteConnectionError,
    build_capture_request,
    create_capture_client,
    read_back_image,
    register_capture_client,
)

__all__ = [
    "BaseCaptureClient",
    "CaptureError",
    "CaptureRequestError",
    "PersistenceError",
    "RemoteConnectionError",
    "build_capture_request",
    "create_capture_client",
    "read_back_image",
    "register_capture_client",
]
