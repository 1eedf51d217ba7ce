# ============================================================================
# FILE: bookflow/api/v1/auth.py
# Company login
# ============================================================================
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from bookflow.api.dependencies import create_company_token, get_current_company
from bookflow.config.database import get_db
from bookflow.config.settings import settings
from bookflow.models.company import Company
from bookflow.services.company.company_service import CompanyService

router = APIRouter(prefix="/auth", tags=["Authentication"])


class LoginRequest(BaseModel):
    """Request body for login."""
    email: EmailStr
    password: str

    class Config:
        json_schema_extra = {
            "example": {
                "email": "contato@barbearia.com.br",
                "password": "SenhaForte123!"
            }
        }


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    company_id: int
    fantasy_name: str


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, db: Session = Depends(get_db)):
    """Exchange company credentials for an access token."""
    company = CompanyService.authenticate(db, payload.email, payload.password)
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou senha inválidos",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = create_company_token(company.id)
    return TokenResponse(
        access_token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        company_id=company.id,
        fantasy_name=company.fantasy_name,
    )


@router.get("/me")
async def me(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    """Authenticated company with its plan."""
    plan = CompanyService.get_company_plan(db, company)
    return {
        "company": company.to_dict(),
        "plan": {
            "id": plan.id,
            "name": plan.name,
            "max_professionals": plan.max_professionals,
            "permissions": plan.permissions,
        } if plan else None,
    }
