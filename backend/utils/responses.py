from fastapi.responses import JSONResponse


def error_response(error_code, status=400, message="An error occurred", errors=None):
    content = {
        "ok": False,
        "error": error_code,
        "message": message,
    }
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status, content=content)
