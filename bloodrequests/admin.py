# bloodrequests/admin.py
from django.contrib import admin
from django.utils.html import format_html

from .models import BloodRequest, MatchedDonorResponse


class MatchedDonorResponseInline(admin.TabularInline):
    model = MatchedDonorResponse
    extra = 0
    fields = ['donor', 'donor_name', 'donor_blood_type', 'status', 'responded_at', 'completed_at']
    readonly_fields = ['responded_at', 'completed_at']


@admin.register(BloodRequest)
class BloodRequestAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'hospital_name',
        'patient_name',
        'patient_blood_type',
        'urgency_level',
        'status',
        'units_display',
        'response_count',
        'deadline',
    ]
    list_filter = ['status', 'urgency_level', 'patient_blood_type', 'created_at']
    search_fields = ['patient_name', 'hospital_name', 'requester_name', 'requester_phone']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [MatchedDonorResponseInline]

    fieldsets = (
        ('Patient', {
            'fields': ('patient_name', 'patient_age', 'patient_blood_type', 'patient_condition')
        }),
        ('Hospital', {
            'fields': ('hospital_name', 'hospital_address', 'hospital_latitude', 'hospital_longitude',
                       'hospital_contact', 'hospital_department')
        }),
        ('Requester', {
            'fields': ('requester', 'requester_name', 'requester_phone', 'alternate_contact')
        }),
        ('Request', {
            'fields': ('urgency_level', 'required_units', 'fulfilled_units', 'deadline',
                       'description', 'status')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def units_display(self, obj):
        color = 'green' if obj.fulfilled_units >= obj.required_units else 'orange'
        return format_html(
            '<span style="color: {};">{} / {}</span>',
            color, obj.fulfilled_units, obj.required_units
        )
    units_display.short_description = 'Units'

    def response_count(self, obj):
        accepted = obj.responses.filter(status=MatchedDonorResponse.STATUS_ACCEPTED).count()
        return f"{accepted} accepted / {obj.responses.count()} total"
    response_count.short_description = 'Responses'


@admin.register(MatchedDonorResponse)
class MatchedDonorResponseAdmin(admin.ModelAdmin):
    list_display = ['blood_request', 'donor_name', 'donor_blood_type', 'status', 'responded_at']
    list_filter = ['status', 'donor_blood_type']
    search_fields = ['donor_name', 'donor__username', 'blood_request__patient_name']
