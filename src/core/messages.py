"""
Agenda Assistant — WhatsApp message texts.

Everything the assistant says in free text is built here, so the router and
the scheduler only decide *which* message to send.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.core.errors import AgendaError, NotFoundError
from src.core.time_utils import as_utc, format_local

if TYPE_CHECKING:
    from src.data.models import Task

NO_CATEGORY = "Sem categoria"

MENU_TEXT = (
    "*Menu do Assistente de Agenda*\n\n"
    "!agenda — Ver suas próximas tarefas\n"
    "!insights — Resumo das suas tarefas\n"
    "!menu — Mostrar este menu\n\n"
    "Para criar uma tarefa, me conte o que precisa lembrar e quando:\n"
    "_Me lembra de ligar pro dentista amanhã às 15h_\n\n"
    "Para alterar, use o número que aparece no !agenda:\n"
    "_Muda a tarefa #3 para sexta às 10h_\n\n"
    "Eu envio um lembrete no horário combinado."
)

EMPTY_AGENDA_TEXT = "Você não tem tarefas agendadas. 🎉"

FALLBACK_REPLY = (
    "Não entendi sua mensagem. 🤔\n"
    "Envie *!menu* para ver o que posso fazer."
)

PAYMENT_FALLBACK_TEXT = (
    "Olá, {name}! Para usar o assistente, conclua sua assinatura: {url}"
)

PAYMENT_UNAVAILABLE_TEXT = (
    "Olá, {name}! Sua assinatura não está ativa e não consegui gerar o link "
    "de pagamento agora. Tente novamente em alguns minutos."
)


def format_agenda(tasks: list[Task]) -> str:
    """Schedule list, one line per task, in the order given."""
    if not tasks:
        return EMPTY_AGENDA_TEXT

    lines = ["*Suas próximas tarefas:*\n"]
    for task in tasks:
        line = f"• #{task.id} {format_local(task.due_at)} — {task.description}"
        if task.meta:
            line += f" [{task.meta}]"
        lines.append(line)
    return "\n".join(lines)


@dataclass
class Insights:
    """Deterministic summary of one user's tasks."""

    total: int = 0
    upcoming: int = 0
    overdue: int = 0
    due_next_7_days: int = 0
    by_category: list[tuple[str, int]] = field(default_factory=list)
    next_task: Task | None = None


def build_insights(tasks: list[Task], now: datetime) -> Insights:
    now = as_utc(now)
    week_end = now + timedelta(days=7)

    upcoming = sorted(
        (t for t in tasks if as_utc(t.due_at) > now),
        key=lambda t: (as_utc(t.due_at), t.id),
    )
    categories = Counter((t.meta or NO_CATEGORY) for t in tasks)

    return Insights(
        total=len(tasks),
        upcoming=len(upcoming),
        overdue=len(tasks) - len(upcoming),
        due_next_7_days=sum(1 for t in upcoming if as_utc(t.due_at) <= week_end),
        # Most frequent first, ties broken alphabetically
        by_category=sorted(categories.items(), key=lambda kv: (-kv[1], kv[0])),
        next_task=upcoming[0] if upcoming else None,
    )


def format_insights(insights: Insights) -> str:
    if insights.total == 0:
        return "Você ainda não criou nenhuma tarefa."

    lines = [
        "*Resumo das suas tarefas:*\n",
        f"Total: {insights.total}",
        f"Próximas: {insights.upcoming}",
        f"Nos próximos 7 dias: {insights.due_next_7_days}",
        f"Vencidas: {insights.overdue}",
    ]
    if insights.by_category:
        lines.append("\nPor categoria:")
        lines.extend(f"• {name}: {count}" for name, count in insights.by_category)
    if insights.next_task is not None:
        nxt = insights.next_task
        lines.append(f"\nPróxima: {nxt.description} em {format_local(nxt.due_at)}")
    return "\n".join(lines)


def format_task_created(task: Task) -> str:
    return (
        f"✅ Tarefa #{task.id} criada: {task.description}\n"
        f"Prazo: {format_local(task.due_at)}\n"
        f"Lembrete: {format_local(task.reminder_at)}"
    )


def format_task_updated(task: Task) -> str:
    return (
        f"✏️ Tarefa #{task.id} atualizada: {task.description}\n"
        f"Prazo: {format_local(task.due_at)}\n"
        f"Lembrete: {format_local(task.reminder_at)}"
    )


def format_error(exc: AgendaError) -> str:
    if isinstance(exc, NotFoundError):
        return "Não encontrei essa tarefa na sua agenda."
    return f"Não consegui salvar a tarefa: {exc}"


def reminder_text(task: Task) -> str:
    return f"Lembrete de tarefa: {task.description}"
