from django.contrib import admin

from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['title', 'user', 'type', 'urgent', 'read', 'created_at']
    list_filter = ['type', 'urgent', 'read', 'created_at']
    search_fields = ['title', 'message', 'user__username', 'user__phone_number']
    readonly_fields = ['created_at']
