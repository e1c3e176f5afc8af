from django.urls import path

from . import views

app_name = "donations"
urlpatterns = [
    # admin
    path("admin/dashboard", views.admin_dashboard, name="admin_dashboard"),
    path("admin/donations/pending", views.admin_pending_donations, name="admin_pending"),
    path("admin/donations/previous", views.admin_previous_donations, name="admin_previous"),
    path("admin/donation/view/<int:donation_id>", views.admin_donation_view, name="admin_view"),
    path("admin/donation/accept/<int:donation_id>", views.admin_donation_accept, name="admin_accept"),
    path("admin/donation/reject/<int:donation_id>", views.admin_donation_reject, name="admin_reject"),
    path("admin/donation/assign/<int:donation_id>", views.admin_donation_assign, name="admin_assign"),
    path("admin/agents", views.admin_agents, name="admin_agents"),

    # agent
    path("agent/dashboard", views.agent_dashboard, name="agent_dashboard"),
    path("agent/collections/pending", views.agent_pending_collections, name="agent_pending"),
    path("agent/collections/previous", views.agent_previous_collections, name="agent_previous"),
    path("agent/collection/view/<int:collection_id>", views.agent_collection_view, name="agent_view"),
    path("agent/collection/collect/<int:collection_id>", views.agent_collection_collect, name="agent_collect"),

    # donor
    path("donor/donate", views.donor_donate, name="donor_donate"),
    path("donor/donations", views.donor_donations, name="donor_donations"),
]
