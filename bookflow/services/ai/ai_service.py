# bookflow/services/ai/ai_service.py
"""Service for AI/OpenAI interactions - catalog and agenda fetched via tool calls"""
import json
import logging
from datetime import date, datetime
from typing import Optional, Dict, List, Any

from openai import OpenAI
from sqlalchemy.orm import Session

from bookflow.config.tenant import TenantConfig
from bookflow.models.appointment import Appointment, ACTIVE_STATUSES
from bookflow.models.professional import Professional
from bookflow.models.service import Service
from bookflow.services.appointment.appointment_service import AppointmentService, time_to_minutes
from bookflow.services.conversation.booking_extraction import (
    BookingSummary, normalize_date, normalize_time, render_confirmation_summary,
)

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 30


class AIService:
    """Booking assistant backed by OpenAI tool calls"""

    def __init__(self, config: TenantConfig, client: Optional[OpenAI] = None):
        self.config = config
        self.client = client or OpenAI(api_key=config.openai_api_key)
        self.model = config.openai_model

    def list_services(self, db: Session) -> List[Dict]:
        services = db.query(Service).filter(
            Service.company_id == self.config.company_id,
            Service.active == True
        ).order_by(Service.name).all()
        return [
            {
                "name": s.name,
                "duration": s.formatted_duration,
                "price": s.formatted_price,
                "description": s.description,
            }
            for s in services
        ]

    def list_professionals(self, db: Session) -> List[Dict]:
        professionals = db.query(Professional).filter(
            Professional.company_id == self.config.company_id,
            Professional.active == True
        ).order_by(Professional.name).all()
        return [
            {
                "name": p.name,
                "specialties": p.specialties or [],
                "work_days": p.work_days or [],
                "work_hours": f"{p.work_start_time}-{p.work_end_time}",
            }
            for p in professionals
        ]

    def get_available_slots(
            self,
            db: Session,
            professional_name: str,
            service_name: str,
            day: str
    ) -> Dict[str, Any]:
        """Free start times of a professional on a given day for the service duration"""
        company_id = self.config.company_id
        professional = AppointmentService.find_professional_by_name(db, company_id, professional_name)
        service = AppointmentService.find_service_by_name(db, company_id, service_name)
        iso_day = normalize_date(day)
        if not professional or not service or not iso_day:
            return {"success": False, "slots": [], "message": "Profissional, serviço ou data não encontrados"}

        target = date.fromisoformat(iso_day)
        # work_days counts from Sunday=0
        if professional.work_days and (target.weekday() + 1) % 7 not in professional.work_days:
            return {"success": True, "slots": [], "message": f"{professional.name} não atende neste dia"}

        taken = db.query(Appointment).filter(
            Appointment.company_id == company_id,
            Appointment.professional_id == professional.id,
            Appointment.appointment_date == target,
            Appointment.status.in_(ACTIVE_STATUSES)
        ).all()
        busy = [(time_to_minutes(a.appointment_time), time_to_minutes(a.appointment_time) + a.duration) for a in taken]

        start = time_to_minutes(professional.work_start_time or "09:00")
        end = time_to_minutes(professional.work_end_time or "18:00")
        slots = []
        minute = start
        while minute + service.duration <= end:
            slot_end = minute + service.duration
            if all(not (minute < b_end and b_start < slot_end) for b_start, b_end in busy):
                slots.append(f"{minute // 60:02d}:{minute % 60:02d}")
            minute += SLOT_STEP_MINUTES

        return {"success": True, "date": iso_day, "slots": slots, "count": len(slots)}

    def propose_booking(self, db: Session, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a booking proposal and render the confirmation summary.

        The price always comes from the service catalog, whatever the model said.
        """
        company_id = self.config.company_id
        client_name = (arguments.get("client_name") or "").strip()
        if not client_name or client_name.lower() in ("cliente", "client", "customer", "user"):
            return {"success": False, "message": "Pergunte o nome do cliente antes de propor o agendamento"}

        professional = AppointmentService.find_professional_by_name(db, company_id, arguments.get("professional"))
        if not professional:
            return {"success": False, "message": "Profissional não encontrado"}

        service = AppointmentService.find_service_by_name(db, company_id, arguments.get("service"))
        if not service:
            return {"success": False, "message": "Serviço não encontrado"}

        iso_date = normalize_date(str(arguments.get("date") or ""))
        hhmm = normalize_time(str(arguments.get("time") or ""))
        if not iso_date or not hhmm:
            return {"success": False, "message": "Data ou horário inválidos"}

        if not AppointmentService.is_slot_available(
                db, company_id, professional.id, date.fromisoformat(iso_date), hhmm, service.duration):
            return {"success": False, "message": "Horário indisponível, sugira outro horário"}

        summary = BookingSummary(
            client=client_name,
            professional=professional.name,
            service=service.name,
            date=iso_date,
            time=hhmm,
            price=service.price,
        )
        proposal = {
            "client_name": client_name,
            "professional": professional.name,
            "professional_id": professional.id,
            "service": service.name,
            "service_id": service.id,
            "date": iso_date,
            "time": hhmm,
            "price": str(service.price),
        }
        text = render_confirmation_summary(summary) + "\n\nPosso confirmar? Responda *sim* para confirmar."
        return {"success": True, "summary_text": text, "proposal": proposal}

    def generate_response(self, messages: List[Dict], company_context: Dict) -> Dict:
        """One chat completion; at most the first tool call is returned"""
        try:
            system_prompt = self._build_system_prompt(company_context)
            api_messages = [{"role": "system", "content": system_prompt}] + messages

            response = self.client.chat.completions.create(
                model=self.model,
                messages=api_messages,
                temperature=self.config.openai_temperature,
                max_tokens=self.config.openai_max_tokens,
                tools=self._get_tool_definitions(),
                tool_choice="auto"
            )

            message = response.choices[0].message
            result = {
                "content": message.content,
                "tool_call": None,
                "finish_reason": response.choices[0].finish_reason
            }

            if message.tool_calls:
                call = message.tool_calls[0]
                try:
                    arguments = json.loads(call.function.arguments or "{}")
                except json.JSONDecodeError:
                    arguments = {}
                result["tool_call"] = {
                    "id": call.id,
                    "name": call.function.name,
                    "arguments": arguments,
                }

            return result

        except Exception as e:
            logger.error(f"Error generating AI response: {str(e)}")
            return {
                "content": "Desculpe, estou com dificuldade para responder agora. Tente novamente em instantes.",
                "tool_call": None,
                "finish_reason": "error"
            }

    def _build_system_prompt(self, company_context: Dict) -> str:
        """Booking assistant instructions, with the company prompt appended"""
        now = datetime.now()
        custom = (self.config.ai_agent_prompt or "").strip()

        prompt = f"""Você é a assistente de agendamentos de {self.config.company_name}.

    INFORMAÇÕES
    - Data e hora atuais: {now.strftime('%d/%m/%Y %H:%M')} ({self.config.timezone})
    - Cliente: {company_context.get('contact_name') or 'desconhecido'}

    REGRAS DE COMUNICAÇÃO
    - Respostas curtas e naturais, próprias para WhatsApp
    - Nunca invente serviços, preços ou profissionais

    FERRAMENTAS
    - list_services e list_professionals para consultar o catálogo
    - get_available_slots para consultar horários livres
    - propose_booking quando tiver nome do cliente, profissional, serviço, data e horário

    FLUXO DE AGENDAMENTO
    1. Descubra o serviço e o profissional desejados
    2. Consulte os horários livres
    3. Pergunte o nome do cliente se ainda não souber
    4. Chame propose_booking; o resumo é enviado ao cliente para ele responder "sim"
    """

        if custom:
            prompt += f"\n    INSTRUÇÕES DA EMPRESA\n    {custom}\n"
        return prompt

    def _get_tool_definitions(self) -> List[Dict]:
        """Define tools that AI can call"""
        return [
            {
                "type": "function",
                "function": {
                    "name": "list_services",
                    "description": "Lista os serviços ativos com preço e duração.",
                    "parameters": {"type": "object", "properties": {}}
                }
            },
            {
                "type": "function",
                "function": {
                    "name": "list_professionals",
                    "description": "Lista os profissionais ativos e seus horários de trabalho.",
                    "parameters": {"type": "object", "properties": {}}
                }
            },
            {
                "type": "function",
                "function": {
                    "name": "get_available_slots",
                    "description": "Horários livres de um profissional em um dia para um serviço.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "professional": {"type": "string"},
                            "service": {"type": "string"},
                            "date": {"type": "string", "description": "Data em YYYY-MM-DD"}
                        },
                        "required": ["professional", "service", "date"]
                    }
                }
            },
            {
                "type": "function",
                "function": {
                    "name": "propose_booking",
                    "description": "Propõe o agendamento ao cliente. O cliente confirma respondendo 'sim'.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "client_name": {"type": "string", "description": "Nome real do cliente"},
                            "professional": {"type": "string"},
                            "service": {"type": "string"},
                            "date": {"type": "string", "description": "Data em YYYY-MM-DD"},
                            "time": {"type": "string", "description": "Horário em HH:MM"}
                        },
                        "required": ["client_name", "professional", "service", "date", "time"]
                    }
                }
            }
        ]
