"""Text of the system notices appended to a thread."""

from ..models.proposal import MeetingDetails, Proposal, ProposalType

PROPOSAL_TYPE_LABELS = {
    ProposalType.PRICE: "Propuesta de precio",
    ProposalType.EXCHANGE: "Propuesta de intercambio",
    ProposalType.MEETING: "Propuesta de encuentro",
    ProposalType.TERMS: "Propuesta de condiciones",
    ProposalType.OTHER: "Propuesta general",
}


def proposal_created(proposal: Proposal) -> str:
    return f"📝 Nueva propuesta enviada: {PROPOSAL_TYPE_LABELS[proposal.type]}"


def proposal_accepted(meeting: MeetingDetails | None, proposal: Proposal) -> str:
    if meeting is not None:
        date_text, time_text, place = meeting.date_text(), meeting.time_text(), meeting.place
    else:
        # meeting_date holds "YYYY-MM-DD" or "YYYY-MM-DDTHH:MM"
        raw = proposal.meeting_date or ""
        date_text, _, time_text = raw.partition("T")
        time_text = time_text[:5] or "--:--"
        place = proposal.meeting_place or ""
    return (
        "✅ Propuesta aceptada. Intercambio iniciado. "
        f"Encuentro programado para {date_text} a las {time_text} en {place}"
    )


def proposal_rejected(reason: str | None) -> str:
    if reason:
        return f"❌ Propuesta rechazada. Motivo: {reason}"
    return "❌ Propuesta rechazada."


def proposal_countered(reason: str | None) -> str:
    if reason:
        return f"🔄 Contrapropuesta: {reason}"
    return "🔄 Se ha enviado una contrapropuesta."


def proposal_cancelled() -> str:
    return "🚫 Propuesta cancelada por quien la envió."


def exchange_completed() -> str:
    return "🎉 Intercambio completado. Ambas partes confirmaron el intercambio."


def exchange_failed(needs_review: bool) -> str:
    if needs_review:
        return (
            "⚠️ Intercambio fallido. Las validaciones no coinciden y el caso "
            "queda pendiente de revisión. Los productos vuelven a estar disponibles."
        )
    return "⚠️ Intercambio fallido. Los productos vuelven a estar disponibles."
