"""
Exceptions raised by the chunked transfer protocol
"""
from typing import Iterable, List, Optional


class TransferError(Exception):
    """Base class for every transfer failure"""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class FramingError(TransferError):
    """Chunk frame could not be packed or split into header and payload"""


class SessionNotFoundError(TransferError):
    """Chunk arrived for a session that was never announced (or was evicted)"""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__("Session not found", session_id)


class ChunkIndexError(TransferError):
    """Chunk index outside [0, totalChunks)"""


class MissingChunksError(TransferError):
    """Reassembly attempted while slots are still empty"""

    def __init__(self, missing: Iterable[int], session_id: Optional[str] = None):
        self.missing: List[int] = sorted(missing)
        super().__init__(
            f"Missing chunks: {', '.join(str(i) for i in self.missing)}",
            session_id,
        )


class DecodeError(TransferError):
    """Received image payload could not be turned into bytes"""


class UploadValidationError(TransferError):
    """File rejected before any network activity (type or size)"""


class UploadProtocolError(TransferError):
    """Server replied with something the sender cannot interpret"""


class TransportError(TransferError):
    """Connection to the relay failed or closed mid-transfer"""
