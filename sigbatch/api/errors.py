from fastapi import HTTPException

from ..errors import SigBatchError


def http_error(e: SigBatchError) -> HTTPException:
    """Translate a service error into the HTTP response the client sees"""
    return HTTPException(status_code=e.status_code, detail=e.message)
