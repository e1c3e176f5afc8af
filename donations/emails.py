from django.conf import settings
from django.template.loader import render_to_string
from django.utils import timezone

from notifications.intents import NotificationIntent

NO_MESSAGE = "No message provided."


def format_collection_time(value) -> str:
    """Local wall-clock time, e.g. ``19/10/2026, 2:05:07 pm``."""
    local = timezone.localtime(value)
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local:%d/%m/%Y}, {hour}:{local:%M:%S} {meridiem}"


def oversight_recipient() -> str:
    return getattr(settings, "DONATION_OVERSIGHT_EMAIL", None) or getattr(settings, "DEFAULT_FROM_EMAIL", "")


def _intent(*, to, subject, template, context, kind) -> NotificationIntent:
    return NotificationIntent(
        to=to,
        subject=subject,
        text=render_to_string(f"emails/{template}", context),
        kind=kind,
    )


def accepted_intents(donation):
    ctx = {"donor": donation.donor, "item": donation.display_item}
    return [
        _intent(
            to=donation.donor.email,
            subject="Your Donation Has Been Accepted",
            template="donation_accepted.txt",
            context=ctx,
            kind="donation_accepted",
        )
    ]


def rejected_intents(donation):
    ctx = {"donor": donation.donor, "item": donation.display_item}
    return [
        _intent(
            to=donation.donor.email,
            subject="Your Donation Has Been Rejected",
            template="donation_rejected.txt",
            context=ctx,
            kind="donation_rejected",
        )
    ]


def assigned_intents(donation):
    """Donor hears who is coming; the agent gets the pickup details."""
    ctx = {
        "donor": donation.donor,
        "agent": donation.agent,
        "item": donation.display_item,
        "address": donation.address,
        "phone": donation.phone,
        "message": donation.admin_to_agent_msg or NO_MESSAGE,
    }
    return [
        _intent(
            to=donation.donor.email,
            subject="Agent Assigned to Your Donation",
            template="agent_assigned_donor.txt",
            context=ctx,
            kind="donation_assigned_donor",
        ),
        _intent(
            to=donation.agent.email,
            subject="New Donation Assigned to You",
            template="agent_assigned_agent.txt",
            context=ctx,
            kind="donation_assigned_agent",
        ),
    ]


def collected_intents(donation):
    ctx = {
        "donor": donation.donor,
        "agent": donation.agent,
        "item": donation.display_item,
        "collected_at": format_collection_time(donation.collection_time),
    }
    return [
        _intent(
            to=donation.donor.email,
            subject="Your Donation Has Been Collected",
            template="donation_collected_donor.txt",
            context=ctx,
            kind="donation_collected_donor",
        ),
        _intent(
            to=oversight_recipient(),
            subject="Donation Collected Notification",
            template="donation_collected_oversight.txt",
            context=ctx,
            kind="donation_collected_oversight",
        ),
    ]
