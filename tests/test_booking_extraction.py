from decimal import Decimal

from bookflow.services.conversation.booking_extraction import (
    BookingSummary,
    ExtractionOutcome,
    detect_confirmation,
    is_affirmative,
    is_confirmation_summary,
    parse_amount,
    parse_confirmation_summary,
    render_confirmation_summary,
)

MARIA_SUMMARY = (
    "Perfeito! Confira os dados:\n"
    "✅ Cliente: Maria\n"
    "👨 Profissional: João\n"
    "🔧 Serviço: Corte\n"
    "⏰ 2025-01-10 14:00\n"
    "💰 R$50\n"
    "Posso confirmar?"
)


def test_confirmed_summary_is_extracted():
    check = detect_confirmation(MARIA_SUMMARY, "sim")

    assert check.outcome == ExtractionOutcome.COMPLETE
    assert check.source == "text"
    assert check.summary == BookingSummary(
        client="Maria",
        professional="João",
        service="Corte",
        date="2025-01-10",
        time="14:00",
        price=Decimal("50.00"),
    )


def test_ordinary_chat_is_not_a_confirmation():
    assert detect_confirmation("Olá! Como posso ajudar?", "sim").outcome == ExtractionOutcome.NOT_CONFIRMATION
    assert detect_confirmation(MARIA_SUMMARY, "qual o endereço?").outcome == ExtractionOutcome.NOT_CONFIRMATION
    assert detect_confirmation(None, "sim").outcome == ExtractionOutcome.NOT_CONFIRMATION


def test_two_markers_do_not_make_a_summary():
    text = "👨 Profissional: João\n🔧 Serviço: Corte"
    assert not is_confirmation_summary(text)
    assert detect_confirmation(text, "sim").outcome == ExtractionOutcome.NOT_CONFIRMATION


def test_summary_with_unreadable_fields_is_partial():
    text = "✅ Cliente: Maria\n👨 Profissional: João\n🔧 Serviço: Corte\n💰 R$50"

    check = detect_confirmation(text, "Sim!")

    assert check.outcome == ExtractionOutcome.PARTIAL
    assert check.missing_fields == ("date", "time")


def test_structured_proposal_wins_over_text():
    metadata = {
        "kind": "booking_proposal",
        "booking_proposal": {
            "client_name": "Maria",
            "professional": "João",
            "service": "Corte",
            "date": "2025-01-10",
            "time": "14:00",
            "price": "50.00",
        },
    }

    check = detect_confirmation("texto livre sem marcadores", "ok", metadata)

    assert check.outcome == ExtractionOutcome.COMPLETE
    assert check.source == "structured"
    assert check.summary.professional == "João"


def test_system_messages_are_never_confirmed():
    for kind in ("payment_link", "payment_confirmation", "booking_confirmation", "reprompt"):
        check = detect_confirmation(MARIA_SUMMARY, "sim", {"kind": kind})
        assert check.outcome == ExtractionOutcome.NOT_CONFIRMATION


def test_affirmative_replies():
    for reply in ("sim", "Sim!", "SIM", " ok ", "ok 👍", "confirmo."):
        assert is_affirmative(reply), reply
    for reply in ("", None, "não", "sim, mas outro horário", "talvez"):
        assert not is_affirmative(reply), reply


def test_date_marker_with_brazilian_format():
    text = "✅ Cliente: Maria\n👨 Profissional: João\n🔧 Serviço: Corte\n📅 10/01/2025 às 14:00\n💰 R$ 50,00"

    summary = parse_confirmation_summary(text)

    assert summary.date == "2025-01-10"
    assert summary.time == "14:00"
    assert summary.price == Decimal("50.00")


def test_parse_amount_formats():
    assert parse_amount("R$ 1.234,56") == Decimal("1234.56")
    assert parse_amount("50.00") == Decimal("50.00")
    assert parse_amount("R$50") == Decimal("50.00")
    assert parse_amount("sem valor") is None


def test_rendered_summary_reads_back():
    summary = BookingSummary("Maria", "João", "Corte", "2025-01-10", "14:00", Decimal("1250.00"))

    text = render_confirmation_summary(summary)

    assert "R$ 1.250,00" in text
    assert parse_confirmation_summary(text) == summary
