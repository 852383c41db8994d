from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def no_store_json(data, status_code: int = 200):
    """Return JSONResponse with no-store caching headers."""
    return JSONResponse(content=jsonable_encoder(data), status_code=status_code, headers=NO_STORE_HEADERS)


def attachment(body: str, filename: str, media_type: str):
    """Downloadable response; never cached."""
    headers = dict(NO_STORE_HEADERS)
    headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return Response(content=body, media_type=media_type, headers=headers)
