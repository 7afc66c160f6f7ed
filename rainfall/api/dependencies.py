"""FastAPI dependencies shared by the routers."""

from fastapi import HTTPException, Request

from rainfall.services.rainfall_service import RainfallService


def get_service(request: Request) -> RainfallService:
    """The service wired up by the application lifespan."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return service
