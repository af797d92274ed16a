from typing import Any, Optional
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

def api_response(data: Any = None, message: str = "Success", status_code: int = 200) -> dict:
    """Success envelope shared by every endpoint"""
    return {
        "status_code": status_code,
        "data": jsonable_encoder(data if data is not None else {}),
        "message": message,
        "success": status_code < 400,
    }

def no_store_json(data: Any = None, message: str = "Success", status_code: int = 200, headers: Optional[dict] = None) -> JSONResponse:
    """Return the success envelope with no-store caching headers."""
    return JSONResponse(
        content=api_response(data, message, status_code),
        status_code=status_code,
        headers={**NO_STORE_HEADERS, **(headers or {})},
    )
