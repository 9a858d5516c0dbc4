from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from slotbook.services.service_crud import service_crud
from slotbook.schemas.service_schema import ServiceCreate, ServiceResponse
from slotbook.database import get_db
from slotbook.security.auth import get_current_user
from slotbook.models.user_model import User
from slotbook.exceptions import ServiceNotFound
from slotbook.logger import get_logger

service_router = APIRouter()
logger = get_logger(__name__)

# PUBLIC ENDPOINTS - Anyone can browse services


@service_router.get(
    "/services", response_model=List[ServiceResponse], status_code=status.HTTP_200_OK
)
def get_services(
    skip: int = Query(0, ge=0, description="Number of services to skip"),
    limit: int = Query(100, ge=1, le=100, description="Number of services to retrieve"),
    q: Optional[str] = Query(None, description="Search query for title or description"),
    owner_id: Optional[str] = Query(None, description="Only services offered by this host"),
    db: Session = Depends(get_db),
):
    """Get all active services with optional filtering (public endpoint)"""
    try:
        logger.info(f"Fetching services: skip={skip}, limit={limit}, q={q}")
        services = service_crud.get_active_services(db=db, skip=skip, limit=limit, q=q, owner_id=owner_id)
        return [ServiceResponse.model_validate(service) for service in services]

    except Exception as e:
        logger.error(f"Error fetching services: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching services",
        )


@service_router.get(
    "/services/{service_id}",
    response_model=ServiceResponse,
    status_code=status.HTTP_200_OK,
)
def get_service(service_id: str, db: Session = Depends(get_db)):
    """Get service by ID (public endpoint)"""
    try:
        service = service_crud.get_service_by_id(db, service_id)
        # Only return active services for public endpoint
        if not service or not service.is_active:
            raise ServiceNotFound()

        return ServiceResponse.model_validate(service)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching service {service_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching service",
        )


# HOST ENDPOINTS


@service_router.post(
    "/services", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED
)
def create_service(
    service: ServiceCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Offer a new service; the caller becomes its provider"""
    try:
        logger.info(f"User {current_user.id} creating service: {service.title}")
        db_service = service_crud.create_service(db, service, current_user.id)
        return ServiceResponse.model_validate(db_service)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating service: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while creating service",
        )
