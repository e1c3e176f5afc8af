"""
Donation lifecycle.

    pending   -> accepted | rejected
    pending | accepted | assigned -> assigned
    assigned  -> collected

Every transition renders the emails it owes from the pending change, persists
the donation, then hands the emails to the notification dispatcher. A render
failure aborts before the write. A send that fails is logged and
dead-lettered; it never rolls back a status that is already written.
Re-running a transition on a donation already in the target status rewrites
the status and sends the emails again.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.db.models import Count
from django.utils import timezone

from fooddonation.errors import InvalidTransition, NotFound, NotificationError, StorageError, ValidationError
from notifications.dispatch import DeliveryOutcome, NotificationDispatcher, get_dispatcher
from notifications.intents import NotificationIntent
from . import emails
from .models import Donation

logger = logging.getLogger(__name__)

User = get_user_model()

ACCEPT_FROM = (Donation.STATUS_PENDING, Donation.STATUS_ACCEPTED)
REJECT_FROM = (Donation.STATUS_PENDING, Donation.STATUS_ACCEPTED, Donation.STATUS_REJECTED)
ASSIGN_FROM = (Donation.STATUS_PENDING, Donation.STATUS_ACCEPTED, Donation.STATUS_ASSIGNED)
COLLECT_FROM = (Donation.STATUS_ASSIGNED, Donation.STATUS_COLLECTED)

OPEN_STATUSES = (Donation.STATUS_PENDING, Donation.STATUS_ACCEPTED, Donation.STATUS_ASSIGNED)


@dataclass
class TransitionResult:
    donation: Donation
    intents: List[NotificationIntent]
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def all_delivered(self) -> bool:
        return all(outcome.delivered for outcome in self.outcomes)


def _load(donation_id) -> Donation:
    try:
        return Donation.objects.select_related("donor", "agent").get(pk=donation_id)
    except (Donation.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Donation {donation_id} not found.")
    except DatabaseError as exc:
        logger.exception("Failed to load donation %s", donation_id)
        raise StorageError() from exc


def _require_status(donation: Donation, allowed, action: str) -> None:
    if donation.status not in allowed:
        raise InvalidTransition(f"Cannot {action} a donation that is {donation.status}.")


def _commit(donation: Donation, fields) -> Donation:
    try:
        with transaction.atomic():
            donation.save(update_fields=[*fields, "updated_at"])
    except DatabaseError as exc:
        logger.exception("Failed to update donation %s", donation.pk)
        raise StorageError() from exc
    # Read back with donor and agent for the emails.
    return _load(donation.pk)


def _render(build, donation: Donation) -> List[NotificationIntent]:
    """Build the emails from the pending change, before anything is written."""
    try:
        return build(donation)
    except Exception as exc:
        logger.exception("Failed to render notification emails for donation %s", donation.pk)
        raise NotificationError("Could not prepare the notification emails; nothing was changed.") from exc


def _notify(donation: Donation, intents, dispatcher: Optional[NotificationDispatcher]) -> TransitionResult:
    outcomes = (dispatcher or get_dispatcher()).dispatch(intents)
    for outcome in outcomes:
        if not outcome.delivered:
            logger.warning(
                "Donation %s is %s but the %s email to %s was not delivered",
                donation.pk, donation.status, outcome.intent.kind, outcome.intent.to,
            )
    return TransitionResult(donation=donation, intents=list(intents), outcomes=outcomes)


def create_donation(donor, **fields) -> Donation:
    """Donor entry point; a donation always starts out pending."""
    donation = Donation(donor=donor, status=Donation.STATUS_PENDING, **fields)
    try:
        donation.full_clean(exclude=["donor", "agent", "status"])
    except DjangoValidationError as exc:
        raise ValidationError(exc.messages) from exc
    try:
        donation.save()
    except DatabaseError as exc:
        logger.exception("Failed to create donation for %s", donor.pk)
        raise StorageError() from exc
    logger.info("Donation %s created by donor %s", donation.pk, donor.pk)
    return donation


def view(donation_id) -> Donation:
    return _load(donation_id)


def accept(donation_id, dispatcher: Optional[NotificationDispatcher] = None) -> TransitionResult:
    donation = _load(donation_id)
    _require_status(donation, ACCEPT_FROM, "accept")
    donation.status = Donation.STATUS_ACCEPTED
    intents = _render(emails.accepted_intents, donation)
    donation = _commit(donation, ["status"])
    logger.info("Donation %s accepted", donation.pk)
    return _notify(donation, intents, dispatcher)


def reject(donation_id, dispatcher: Optional[NotificationDispatcher] = None) -> TransitionResult:
    donation = _load(donation_id)
    _require_status(donation, REJECT_FROM, "reject")
    donation.status = Donation.STATUS_REJECTED
    intents = _render(emails.rejected_intents, donation)
    donation = _commit(donation, ["status"])
    logger.info("Donation %s rejected", donation.pk)
    return _notify(donation, intents, dispatcher)


def assign(donation_id, agent_id, operator_message=None, dispatcher: Optional[NotificationDispatcher] = None) -> TransitionResult:
    donation = _load(donation_id)
    _require_status(donation, ASSIGN_FROM, "assign")

    try:
        agent = User.objects.filter(pk=agent_id).first()
    except (ValueError, TypeError):
        agent = None
    except DatabaseError as exc:
        logger.exception("Failed to load agent %s", agent_id)
        raise StorageError() from exc
    if agent is None:
        raise NotFound(f"Agent {agent_id} not found.")
    if agent.role != User.ROLE_AGENT:
        raise ValidationError(f"{agent.email} is not an agent.")

    donation.status = Donation.STATUS_ASSIGNED
    donation.agent = agent
    # Stored as given; the "No message provided." fallback only exists in the email.
    donation.admin_to_agent_msg = (operator_message or "").strip() or None
    intents = _render(emails.assigned_intents, donation)
    donation = _commit(donation, ["status", "agent", "admin_to_agent_msg"])
    logger.info("Donation %s assigned to agent %s", donation.pk, agent.pk)
    return _notify(donation, intents, dispatcher)


def collect(donation_id, agent=None, dispatcher: Optional[NotificationDispatcher] = None) -> TransitionResult:
    """Mark a donation collected. With ``agent`` given, only that agent's donations resolve."""
    donation = _load(donation_id)
    if agent is not None and donation.agent_id != agent.pk:
        raise NotFound(f"Donation {donation_id} not found.")
    _require_status(donation, COLLECT_FROM, "collect")
    if donation.agent_id is None:
        raise InvalidTransition("Cannot collect a donation that has no agent.")

    donation.status = Donation.STATUS_COLLECTED
    donation.collection_time = timezone.now()
    intents = _render(emails.collected_intents, donation)
    donation = _commit(donation, ["status", "collection_time"])
    logger.info("Donation %s collected by agent %s", donation.pk, donation.agent_id)
    return _notify(donation, intents, dispatcher)


def _count_by(queryset, field_name, keys) -> Dict[str, int]:
    counts = {key: 0 for key in keys}
    try:
        for row in queryset.order_by().values(field_name).annotate(n=Count("pk")):
            counts[row[field_name]] = row["n"]
    except DatabaseError as exc:
        logger.exception("Failed to count %s by %s", queryset.model.__name__, field_name)
        raise StorageError() from exc
    return counts


def admin_dashboard_counts() -> dict:
    roles = _count_by(User.objects.all(), "role", [r for r, _ in User.ROLE_CHOICES])
    statuses = _count_by(Donation.objects.all(), "status", [s for s, _ in Donation.STATUS_CHOICES])
    return {"users": roles, "donations": statuses}


def agent_dashboard_counts(agent) -> dict:
    statuses = _count_by(
        Donation.objects.filter(agent=agent),
        "status",
        [Donation.STATUS_ASSIGNED, Donation.STATUS_COLLECTED],
    )
    return {
        "assigned": statuses[Donation.STATUS_ASSIGNED],
        "collected": statuses[Donation.STATUS_COLLECTED],
    }


def _fetch(queryset) -> list:
    try:
        return list(queryset.select_related("donor", "agent"))
    except DatabaseError as exc:
        logger.exception("Failed to fetch %s rows", queryset.model.__name__)
        raise StorageError() from exc


def pending_donations() -> list:
    return _fetch(Donation.objects.filter(status__in=OPEN_STATUSES))


def previous_donations() -> list:
    return _fetch(Donation.objects.filter(status=Donation.STATUS_COLLECTED))


def agent_collections(agent, status) -> list:
    return _fetch(Donation.objects.filter(agent=agent, status=status))


def donor_donations(donor) -> list:
    return _fetch(Donation.objects.filter(donor=donor))


def list_agents() -> list:
    try:
        return list(User.objects.filter(role=User.ROLE_AGENT).order_by("first_name", "last_name"))
    except DatabaseError as exc:
        logger.exception("Failed to fetch agents")
        raise StorageError() from exc
