# ============================================================================
# FILE: bookflow/api/v1/catalog.py
# Services and professionals
# ============================================================================
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bookflow.api.dependencies import get_current_company, require_permission, check_professionals_limit
from bookflow.config.database import get_db
from bookflow.models.company import Company
from bookflow.models.professional import Professional
from bookflow.models.service import Service
from bookflow.schemas.catalog import ServiceCreate, ProfessionalCreate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


@router.get("/services", dependencies=[Depends(require_permission("services"))])
async def list_services(
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    services = db.query(Service).filter(
        Service.company_id == company.id,
        Service.active == True
    ).order_by(Service.name).all()
    return {"services": [s.to_dict() for s in services], "total": len(services)}


@router.post("/services", status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_permission("services"))])
async def create_service(
        payload: ServiceCreate,
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    data = payload.model_dump(exclude_none=True)
    service = Service(company_id=company.id, **data)
    db.add(service)
    db.commit()
    db.refresh(service)
    logger.info(f"Service created: {service.id} for company {company.id}")
    return service.to_dict()


@router.get("/professionals", dependencies=[Depends(require_permission("professionals"))])
async def list_professionals(
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    professionals = db.query(Professional).filter(
        Professional.company_id == company.id
    ).order_by(Professional.name).all()
    return {"professionals": [p.to_dict() for p in professionals], "total": len(professionals)}


@router.post(
    "/professionals",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("professionals")), Depends(check_professionals_limit)]
)
async def create_professional(
        payload: ProfessionalCreate,
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    professional = Professional(company_id=company.id, **payload.model_dump())
    db.add(professional)
    db.commit()
    db.refresh(professional)
    logger.info(f"Professional created: {professional.id} for company {company.id}")
    return professional.to_dict()
