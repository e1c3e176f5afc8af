def user_summary(user):
    if user is None:
        return None
    return {
        "id": user.pk,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
    }


def donation_to_dict(donation):
    return {
        "id": donation.pk,
        "item_name": donation.item_name,
        "food_type": donation.food_type,
        "quantity": donation.quantity,
        "cooking_time": donation.cooking_time.isoformat() if donation.cooking_time else None,
        "address": donation.address,
        "phone": donation.phone,
        "donor_to_admin_msg": donation.donor_to_admin_msg,
        "status": donation.status,
        "donor": user_summary(donation.donor),
        "agent": user_summary(donation.agent),
        "admin_to_agent_msg": donation.admin_to_agent_msg,
        "collection_time": donation.collection_time.isoformat() if donation.collection_time else None,
        "created_at": donation.created_at.isoformat() if donation.created_at else None,
    }


def transition_payload(result):
    return {
        "donation": donation_to_dict(result.donation),
        "notifications": [
            {"kind": o.intent.kind, "to": o.intent.to, "delivered": o.delivered, "attempts": o.attempts}
            for o in result.outcomes
        ],
    }
