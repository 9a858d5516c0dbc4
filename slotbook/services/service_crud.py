from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional
from slotbook.exceptions import InternalError
from slotbook.models.service_model import Service
from slotbook.schemas.service_schema import ServiceCreate
from slotbook.utils.money import to_cents
from slotbook.logger import get_logger

logger = get_logger(__name__)


class ServiceCRUD:
    @staticmethod
    def create_service(db: Session, service: ServiceCreate, owner_id: str) -> Service:
        """Create a new service owned by the calling host"""
        try:
            db_service = Service(
                title=service.title,
                description=service.description,
                price=to_cents(service.price),
                duration_minutes=service.duration_minutes,
                is_online=service.is_online,
                location=service.location,
                owner_id=owner_id,
            )
            db.add(db_service)
            db.commit()
            db.refresh(db_service)
            logger.info(f"Service created: {service.title} by owner {owner_id}")
            return db_service

        except Exception as e:
            db.rollback()
            logger.error(f"Error creating service: {str(e)}")
            raise InternalError("Error occurred while creating service")

    @staticmethod
    def get_service_by_id(db: Session, service_id: str) -> Optional[Service]:
        """Get service by ID"""
        return db.query(Service).filter(Service.id == str(service_id)).first()

    @staticmethod
    def get_active_services(
            db: Session,
            skip: int = 0,
            limit: int = 100,
            q: Optional[str] = None,
            owner_id: Optional[str] = None,
    ) -> List[Service]:
        """Get bookable services, optionally searched by title/description"""
        query = db.query(Service).filter(Service.is_active == True)

        if q:
            query = query.filter(
                or_(
                    Service.title.ilike(f"%{q}%"),
                    Service.description.ilike(f"%{q}%")
                )
            )

        if owner_id:
            query = query.filter(Service.owner_id == owner_id)

        return query.order_by(Service.created_at.desc()).offset(skip).limit(limit).all()


service_crud = ServiceCRUD()
