# bookflow/services/company/company_service.py
"""Company lookup, authentication and plan resolution"""
import logging
from dataclasses import dataclass
from typing import Optional, Dict

from sqlalchemy.orm import Session

from bookflow.models.company import Company, Plan
from bookflow.models.professional import Professional

logger = logging.getLogger(__name__)

PERMISSION_NAMES = {
    "dashboard": "Dashboard",
    "appointments": "Agendamentos",
    "services": "Serviços",
    "professionals": "Profissionais",
    "clients": "Clientes",
    "reviews": "Avaliações",
    "tasks": "Tarefas",
    "points_program": "Programa de Pontos",
    "loyalty": "Fidelidade",
    "inventory": "Inventário",
    "messages": "Mensagens",
    "coupons": "Cupons",
    "financial": "Financeiro",
    "reports": "Relatórios",
    "settings": "Configurações",
}


@dataclass
class CompanyPlan:
    """What a company's plan allows"""
    id: int
    name: str
    max_professionals: int
    permissions: Dict[str, bool]

    def allows(self, permission: str) -> bool:
        return bool(self.permissions.get(permission, False))


class CompanyService:
    @staticmethod
    def get_company(db: Session, company_id: int) -> Optional[Company]:
        return db.query(Company).filter(
            Company.id == company_id,
            Company.is_active == True
        ).first()

    @staticmethod
    def authenticate(db: Session, email: str, password: str) -> Optional[Company]:
        company = db.query(Company).filter(Company.email == email.lower().strip()).first()
        if not company or not company.is_active:
            return None
        if not company.verify_password(password):
            logger.warning(f"Failed login for company {company.id}")
            return None
        return company

    @staticmethod
    def get_company_plan(db: Session, company: Company) -> Optional[CompanyPlan]:
        """None when the company has no (existing) plan"""
        if not company.plan_id:
            return None
        plan = db.get(Plan, company.plan_id)
        if plan is None:
            return None
        return CompanyPlan(
            id=plan.id,
            name=plan.name,
            max_professionals=plan.max_professionals or 1,
            permissions=plan.resolved_permissions(),
        )

    @staticmethod
    def count_professionals(db: Session, company_id: int) -> int:
        return db.query(Professional).filter(Professional.company_id == company_id).count()
