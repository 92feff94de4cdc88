from django.contrib import admin

from facilitator.models import Settlement


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = ("nonce", "network", "payer", "status", "attempts", "transaction_ref", "created_at")
    list_filter = ("status", "network")
    search_fields = ("nonce", "payer", "transaction_ref")
