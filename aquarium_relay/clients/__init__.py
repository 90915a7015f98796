"""Client module exports (control and display clients run as modules, import them directly)"""
from .uploader import UploadSession, UploadState, UploadResult

__all__ = ["UploadSession", "UploadState", "UploadResult"]
