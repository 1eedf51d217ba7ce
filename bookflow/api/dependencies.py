# bookflow/api/dependencies.py
"""Company authentication and plan gating for the dashboard API"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from bookflow.config.database import get_db
from bookflow.config.settings import get_settings
from bookflow.models.company import Company
from bookflow.services.company.company_service import CompanyService, CompanyPlan, PERMISSION_NAMES

company_bearer = HTTPBearer(scheme_name="Company token", description="Token from POST /api/v1/auth/login")

TOKEN_TYPE = "company_access"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_company_token(company_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Signed token whose subject is the company id"""
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(company_id),
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def company_id_from_token(token: str) -> int:
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    if claims.get("type") != TOKEN_TYPE:
        raise _unauthorized("Invalid token type")
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid company id in token")


async def get_current_company(
        credentials: HTTPAuthorizationCredentials = Depends(company_bearer),
        db: Session = Depends(get_db)
) -> Company:
    company = CompanyService.get_company(db, company_id_from_token(credentials.credentials))
    if company is None:
        raise _unauthorized("Company not found or inactive")
    return company


# ============================================================================
# Plan Dependencies
# ============================================================================
async def load_company_plan(
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
) -> CompanyPlan:
    """Resolve the authenticated company's plan; 403 when it has none"""
    plan = CompanyService.get_company_plan(db, company)
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Acesso negado - plano não encontrado"}
        )
    return plan


def require_permission(permission: str):
    """
    Dependency factory that requires a plan feature flag.

    Usage in routes:
        @router.get("/appointments", dependencies=[Depends(require_permission("appointments"))])
    """
    if permission not in PERMISSION_NAMES:
        raise ValueError(f"Unknown plan permission: {permission}")

    async def permission_checker(plan: CompanyPlan = Depends(load_company_plan)) -> CompanyPlan:
        if not plan.allows(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": f"Acesso negado - seu plano não inclui acesso a {PERMISSION_NAMES[permission]}",
                    "missing_permission": permission,
                }
            )
        return plan

    return permission_checker


async def check_professionals_limit(
        company: Company = Depends(get_current_company),
        plan: CompanyPlan = Depends(load_company_plan),
        db: Session = Depends(get_db)
) -> CompanyPlan:
    """403 when the company already has as many professionals as its plan allows"""
    current = CompanyService.count_professionals(db, company.id)
    if current >= plan.max_professionals:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": (
                    f"Limite de profissionais atingido. Seu plano permite no máximo "
                    f"{plan.max_professionals} profissionais."
                ),
                "limit": plan.max_professionals,
                "current": current,
            }
        )
    return plan
