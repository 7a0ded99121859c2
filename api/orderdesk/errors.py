from fastapi import Request, status
from fastapi.responses import JSONResponse


class OrderDeskError(Exception):
    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class NotFound(OrderDeskError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(OrderDeskError):
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(OrderDeskError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class UpstreamFailure(OrderDeskError):
    """Storage, mailer or directory collaborator failed or timed out."""

    kind = "upstream_failure"
    status_code = status.HTTP_502_BAD_GATEWAY


async def orderdesk_error_handler(request: Request, exc: OrderDeskError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
