# bookflow/services/whatsapp/message_templates.py
"""Texts of the messages the system sends on its own (not written by the assistant)"""
from bookflow.services.conversation.booking_extraction import format_brl

PAYMENT_LINK_FAILED = (
    "Não foi possível gerar o link de pagamento agora. "
    "Tente novamente em alguns minutos ou fale com a nossa equipe."
)

REPROMPT_SUMMARY = (
    "Não consegui ler todos os dados do agendamento. "
    "Pode me confirmar novamente o profissional, o serviço, a data e o horário?"
)

SLOT_TAKEN = (
    "Esse horário acabou de ser ocupado. Vamos escolher outro horário?"
)


def _appointment_lines(appointment) -> list:
    return [
        f"👨 Profissional: {appointment.professional.name}",
        f"🔧 Serviço: {appointment.service.name}",
        f"📅 {appointment.appointment_date.strftime('%d/%m/%Y')} às {appointment.appointment_time}",
        f"💰 {format_brl(appointment.total_price)}",
    ]


def payment_link_message(checkout_url: str, amount) -> str:
    return (
        f"Para confirmar seu agendamento, faça o pagamento de {format_brl(amount)} "
        f"pelo link abaixo (Pix ou cartão):\n\n{checkout_url}\n\n"
        "Assim que o pagamento for aprovado eu te aviso por aqui."
    )


def payment_confirmation_message(appointment) -> str:
    lines = [f"Pagamento aprovado! Seu agendamento está confirmado, {appointment.client_name}.", ""]
    lines += _appointment_lines(appointment)
    lines += ["", "Até lá!"]
    return "\n".join(lines)


def booking_confirmation_message(appointment) -> str:
    lines = [f"Agendamento realizado, {appointment.client_name}!", ""]
    lines += _appointment_lines(appointment)
    return "\n".join(lines)


def reminder_message(appointment) -> str:
    lines = [f"Olá, {appointment.client_name}! Lembrete do seu horário:", ""]
    lines += _appointment_lines(appointment)
    lines += ["", "Se não puder comparecer, responda esta mensagem."]
    return "\n".join(lines)
