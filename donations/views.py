from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from accounts.decorators import admin_required, agent_required, role_required
from accounts.models import User
from fooddonation.errors import CoreError, NotFound, ValidationError
from fooddonation.http import error_response, ok_response
from . import services
from .models import Donation
from .utils import donation_to_dict, transition_payload, user_summary

donor_required = role_required(User.ROLE_DONOR)


def _transition_response(result, message):
    payload = transition_payload(result)
    if not result.all_delivered:
        message = f"{message} Some notification emails could not be sent and will be retried."
    return ok_response(message=message, **payload)


# ----- admin -----

@require_GET
@admin_required
def admin_dashboard(request):
    try:
        counts = services.admin_dashboard_counts()
    except CoreError as exc:
        return error_response(exc)
    return ok_response(**counts)


@require_GET
@admin_required
def admin_pending_donations(request):
    try:
        donations = services.pending_donations()
    except CoreError as exc:
        return error_response(exc, message="Server error while fetching pending donations.")
    return ok_response(donations=[donation_to_dict(d) for d in donations])


@require_GET
@admin_required
def admin_previous_donations(request):
    try:
        donations = services.previous_donations()
    except CoreError as exc:
        return error_response(exc, message="Server error while fetching previous donations.")
    return ok_response(donations=[donation_to_dict(d) for d in donations])


@require_GET
@admin_required
def admin_donation_view(request, donation_id: int):
    try:
        donation = services.view(donation_id)
    except CoreError as exc:
        return error_response(exc)
    return ok_response(donation=donation_to_dict(donation))


@require_POST
@admin_required
def admin_donation_accept(request, donation_id: int):
    try:
        result = services.accept(donation_id)
    except CoreError as exc:
        return error_response(exc)
    return _transition_response(result, "Donation accepted and donor notified.")


@require_POST
@admin_required
def admin_donation_reject(request, donation_id: int):
    try:
        result = services.reject(donation_id)
    except CoreError as exc:
        return error_response(exc)
    return _transition_response(result, "Donation rejected and donor notified.")


@require_http_methods(["GET", "POST"])
@admin_required
def admin_donation_assign(request, donation_id: int):
    if request.method == "GET":
        try:
            donation = services.view(donation_id)
            agents = services.list_agents()
        except CoreError as exc:
            return error_response(exc)
        return ok_response(
            donation=donation_to_dict(donation),
            agents=[user_summary(a) for a in agents],
        )

    agent_id = request.POST.get("agent")
    if not agent_id:
        return error_response(ValidationError("Please select an agent."))
    try:
        result = services.assign(donation_id, agent_id, request.POST.get("adminToAgentMsg"))
    except CoreError as exc:
        return error_response(exc)
    return _transition_response(result, "Agent assigned. Donor and agent notified via email.")


@require_GET
@admin_required
def admin_agents(request):
    try:
        agents = services.list_agents()
    except CoreError as exc:
        return error_response(exc)
    return ok_response(agents=[user_summary(a) for a in agents])


# ----- agent -----

@require_GET
@agent_required
def agent_dashboard(request):
    try:
        counts = services.agent_dashboard_counts(request.user)
    except CoreError as exc:
        return error_response(exc)
    return ok_response(**counts)


def _agent_collections(request, status):
    try:
        donations = services.agent_collections(request.user, status)
    except CoreError as exc:
        return error_response(exc)
    return ok_response(collections=[donation_to_dict(d) for d in donations])


@require_GET
@agent_required
def agent_pending_collections(request):
    return _agent_collections(request, Donation.STATUS_ASSIGNED)


@require_GET
@agent_required
def agent_previous_collections(request):
    return _agent_collections(request, Donation.STATUS_COLLECTED)


@require_GET
@agent_required
def agent_collection_view(request, collection_id: int):
    try:
        donation = services.view(collection_id)
    except CoreError as exc:
        return error_response(exc)
    if donation.agent_id != request.user.pk:
        return error_response(NotFound(f"Donation {collection_id} not found."))
    return ok_response(collection=donation_to_dict(donation))


@require_POST
@agent_required
def agent_collection_collect(request, collection_id: int):
    try:
        result = services.collect(collection_id, agent=request.user)
    except CoreError as exc:
        return error_response(exc)
    return _transition_response(result, "Donation marked as collected and notifications sent.")


# ----- donor -----

@require_POST
@donor_required
def donor_donate(request):
    fields = {
        name: (request.POST.get(name) or "").strip()
        for name in ("item_name", "food_type", "quantity", "address", "phone", "donor_to_admin_msg")
    }
    raw_cooking_time = (request.POST.get("cooking_time") or "").strip()
    if raw_cooking_time:
        try:
            fields["cooking_time"] = parse_datetime(raw_cooking_time)
        except ValueError:
            fields["cooking_time"] = None
        if fields["cooking_time"] is None:
            return error_response(ValidationError("Cooking time is not a valid date and time."))
        if timezone.is_naive(fields["cooking_time"]):
            fields["cooking_time"] = timezone.make_aware(fields["cooking_time"])
    if not (fields["item_name"] or fields["food_type"]):
        return error_response(ValidationError("Please describe the food you are donating."))

    try:
        donation = services.create_donation(request.user, **fields)
    except CoreError as exc:
        return error_response(exc)
    return ok_response(status=201, message="Donation request sent successfully.", donation=donation_to_dict(donation))


@require_GET
@donor_required
def donor_donations(request):
    try:
        donations = services.donor_donations(request.user)
    except CoreError as exc:
        return error_response(exc)
    return ok_response(donations=[donation_to_dict(d) for d in donations])
