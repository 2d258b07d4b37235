from django.contrib import admin

from .models import Dispute, Donation, TimelineEntry


class TimelineEntryInline(admin.TabularInline):
    model = TimelineEntry
    extra = 0
    can_delete = False
    fields = ['sequence', 'stage', 'status', 'actor', 'notes', 'timestamp']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class DisputeInline(admin.TabularInline):
    model = Dispute
    extra = 0
    fields = ['reported_by', 'reporter_role', 'reason', 'status', 'resolution', 'created_at']
    readonly_fields = ['reported_by', 'reporter_role', 'reason', 'created_at']


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    list_display = ['id', 'blood_request', 'donor', 'recipient', 'overall_status',
                    'appointment_date', 'trust_score', 'verification_level']
    list_filter = ['overall_status', 'appointment_status', 'verification_level', 'emergency_level']
    search_fields = ['donor__username', 'recipient__username', 'hospital_name']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [TimelineEntryInline, DisputeInline]


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ['donation', 'reported_by', 'reporter_role', 'status', 'created_at']
    list_filter = ['status', 'reporter_role']
    search_fields = ['reason', 'reported_by__username']
    readonly_fields = ['created_at']
