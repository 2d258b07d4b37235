# api/urls.py
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

router = DefaultRouter()
router.register(r'blood-requests', views.BloodRequestViewSet, basename='blood-request')
router.register(r'notifications', views.NotificationViewSet, basename='notification')

app_name = 'api'

urlpatterns = [
    path('', include(router.urls)),

    path('donations/', views.donation_action, name='donation-action'),
    path('donations/status/', views.donation_status, name='donation-status'),
]

# Available endpoints:
# GET    /api/blood-requests/                   - Query requests (status, urgency, blood_type,
#                                                 requester_id, lat/lng/radius, page, limit)
# POST   /api/blood-requests/                   - Create request and notify eligible donors
# GET    /api/blood-requests/{id}/              - Get specific request
# PATCH  /api/blood-requests/{id}/              - Update request (owner only)
# DELETE /api/blood-requests/{id}/              - Cancel request (owner only)
# POST   /api/blood-requests/{id}/respond/      - Donor accepts or declines
# POST   /api/blood-requests/{id}/notify-donors/ - Requester re-notifies eligible donors (max_distance, urgent_only)
#
# POST   /api/donations/                        - Donation action (initiate, schedule, confirm_arrival,
#                                                 confirm_completion, confirm_receipt, dispute)
# GET    /api/donations/status/                 - Donation status by request_id or donation_id
#
# GET    /api/notifications/                    - In-app notifications
# POST   /api/notifications/{id}/read/          - Mark one read
# POST   /api/notifications/read-all/           - Mark all read
