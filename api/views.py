# api/views.py
import logging

from django.conf import settings
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bloodrequests.services import (
    cancel_blood_request,
    create_blood_request,
    get_visible_blood_request,
    notify_eligible_donors,
    parse_id,
    query_blood_requests,
    respond_to_request,
    update_blood_request,
)
from donations.actions import parse_action
from donations.workflow import get_donation_status, perform_action
from notifications.models import Notification

from .serializers import (
    BloodRequestSerializer,
    DisputeSerializer,
    DonationSerializer,
    MatchedDonorResponseSerializer,
    NotificationSerializer,
    NotifyDonorsSerializer,
    RespondSerializer,
    TimelineEntrySerializer,
)

logger = logging.getLogger(__name__)


def _optional_id(value, label):
    if value in (None, ''):
        return None
    return parse_id(value, label)


class BloodRequestViewSet(viewsets.ViewSet):
    """
    API endpoint for blood requests.

    Creation runs donor discovery and notifies eligible donors; delete is a
    soft cancel by the owner.
    """
    permission_classes = [IsAuthenticated]

    def list(self, request):
        page = query_blood_requests(request.query_params)
        serializer = BloodRequestSerializer(page['requests'], many=True)
        return Response({
            'requests': serializer.data,
            'pagination': page['pagination'],
        })

    def create(self, request):
        serializer = BloodRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        blood_request, donors = create_blood_request(request.user, serializer.validated_data)
        return Response({
            'success': True,
            'request': BloodRequestSerializer(blood_request).data,
            'notified_donors': len(donors),
        }, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        blood_request = get_visible_blood_request(request.user, pk)
        return Response(BloodRequestSerializer(blood_request).data)

    def partial_update(self, request, pk=None):
        serializer = BloodRequestSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        blood_request = update_blood_request(request.user, pk, serializer.validated_data)
        return Response({
            'success': True,
            'request': BloodRequestSerializer(blood_request).data,
        })

    def destroy(self, request, pk=None):
        blood_request = cancel_blood_request(request.user, pk)
        return Response({
            'success': True,
            'message': 'Blood request cancelled',
            'request': BloodRequestSerializer(blood_request).data,
        })

    @action(detail=True, methods=['post'])
    def respond(self, request, pk=None):
        """Donor accepts (default) or declines the request"""
        serializer = RespondSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        donor_response = respond_to_request(
            request.user,
            pk,
            response=serializer.validated_data['response'],
            notes=serializer.validated_data['notes'],
        )
        accepted = donor_response.status != donor_response.STATUS_DECLINED
        return Response({
            'success': True,
            'message': (
                'Thank you for helping! The requester has been notified.' if accepted
                else 'Your response has been recorded.'
            ),
            'response': MatchedDonorResponseSerializer(donor_response).data,
        }, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='notify-donors')
    def notify_donors(self, request, pk=None):
        """Requester re-sends the alert to donors who are eligible now"""
        serializer = NotifyDonorsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        stats = notify_eligible_donors(
            request.user,
            pk,
            max_distance_km=serializer.validated_data.get('max_distance'),
            urgent_only=serializer.validated_data['urgent_only'],
        )
        return Response({
            'success': True,
            'message': f"Notified {stats['eligible_donors']} eligible donors",
            'stats': stats,
        })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def donation_action(request):
    """
    Single entry point for donation actions, keyed by ``action``:
    initiate, schedule, confirm_arrival, confirm_completion, confirm_receipt,
    dispute.
    """
    result = perform_action(request.user, parse_action(request.data))

    body = {
        'success': True,
        'message': result.message,
        'donation': DonationSerializer(result.donation).data,
        'next_steps': result.next_steps,
    }
    for key, value in result.extra.items():
        if key == 'dispute':
            value = DisputeSerializer(value).data
        body[key] = value

    return Response(body, status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donation_status(request):
    """Donation state, role-scoped permissions and timeline by request_id or donation_id"""
    params = request.query_params
    state = get_donation_status(
        request.user,
        request_id=_optional_id(params.get('request_id'), 'request ID'),
        donation_id=_optional_id(params.get('donation_id'), 'donation ID'),
    )

    if state['donation'] is None:
        return Response({
            'donation': None,
            'user_role': state['user_role'],
            'can_initiate': state['can_initiate'],
        })

    return Response({
        'donation': DonationSerializer(state['donation']).data,
        'user_role': state['user_role'],
        'permissions': state['permissions'],
        'timeline': TimelineEntrySerializer(state['timeline'], many=True).data,
        'disputes': DisputeSerializer(state['disputes'], many=True).data,
        'trust_score': state['trust_score'],
        'next_steps': state['next_steps'],
        'support_contact': settings.SUPPORT_CONTACT,
    })


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """The caller's in-app notifications, newest first"""
    serializer_class = NotificationSerializer
    permission_classes = [IsAuthenticated]
    inbox_size = 50

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user)

    def list(self, request, *args, **kwargs):
        queryset = self.get_queryset()
        if request.query_params.get('unread') in ('1', 'true'):
            queryset = queryset.filter(read=False)
        serializer = self.get_serializer(queryset[:self.inbox_size], many=True)
        return Response({
            'notifications': serializer.data,
            'unread_count': self.get_queryset().filter(read=False).count(),
        })

    @action(detail=True, methods=['post'])
    def read(self, request, pk=None):
        notification = self.get_object()
        if not notification.read:
            notification.read = True
            notification.save(update_fields=['read'])
        return Response(self.get_serializer(notification).data)

    @action(detail=False, methods=['post'], url_path='read-all')
    def read_all(self, request):
        updated = self.get_queryset().filter(read=False).update(read=True)
        logger.info(f"User {request.user.pk} marked {updated} notifications read")
        return Response({'success': True, 'updated': updated})
