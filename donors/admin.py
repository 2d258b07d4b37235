from django.contrib import admin

from .models import DonorProfile


@admin.register(DonorProfile)
class DonorProfileAdmin(admin.ModelAdmin):
    list_display   = ['full_name', 'blood_type', 'total_donations', 'available_for_donation', 'can_donate_display']
    list_filter    = ['blood_type', 'is_donor', 'available_for_donation', 'notify_sms']
    search_fields  = ['full_name', 'user__username', 'phone']
    ordering       = ['full_name']
    readonly_fields = ['total_donations', 'last_donation_date', 'created_at', 'updated_at']

    fieldsets = (
        ('Personal Info', {
            'fields': ('user', 'full_name', 'phone', 'blood_type', 'address')
        }),
        ('Location', {
            'fields': ('latitude', 'longitude')
        }),
        ('Donation Status', {
            'fields': ('is_donor', 'available_for_donation', 'total_donations', 'last_donation_date')
        }),
        ('Notification Preferences', {
            'fields': ('notify_sms', 'notify_push', 'notify_email', 'urgency_levels'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    @admin.display(boolean=True, description='Can Donate Now')
    def can_donate_display(self, obj):
        return obj.can_donate

    actions = ['mark_available', 'mark_unavailable']

    @admin.action(description='Mark selected donors as available')
    def mark_available(self, request, queryset):
        updated = queryset.update(available_for_donation=True)
        self.message_user(request, f'{updated} donor(s) marked available.')

    @admin.action(description='Mark selected donors as unavailable')
    def mark_unavailable(self, request, queryset):
        updated = queryset.update(available_for_donation=False)
        self.message_user(request, f'{updated} donor(s) marked unavailable.')
