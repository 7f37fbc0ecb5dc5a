"""
Django admin registrations for the clinic models.

Receipts and audit events are append-only ledger rows, so their admin
pages are read-only.  Balance corrections go through the
``/api/patients/<id>/outstanding`` endpoint, which audits them.
"""

from django.contrib import admin

from .models import AuditEvent, DailyVisit, DentalRecord, Patient, Receipt, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'role', 'is_active', 'is_superuser')
    list_filter = ('role', 'is_active')
    search_fields = ('username', 'first_name', 'last_name', 'email')


class MemberInline(admin.TabularInline):
    model = Patient
    fk_name = 'family'
    fields = ('name', 'sex', 'date_of_birth', 'next_appointment_date', 'outstanding')
    readonly_fields = ('outstanding',)
    extra = 0
    show_change_link = True


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'is_family_head', 'family', 'phone_number', 'email',
                    'next_appointment_date', 'outstanding')
    list_filter = ('is_family_head',)
    search_fields = ('id', 'name', 'phone_number', 'email')
    readonly_fields = ('outstanding', 'created_at', 'updated_at')
    inlines = [MemberInline]


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Receipt)
class ReceiptAdmin(ReadOnlyAdmin):
    list_display = ('receipt_number', 'patient', 'receipt_date', 'amount_paid', 'total_due',
                    'previous_outstanding', 'new_outstanding', 'notification_status')
    list_filter = ('notification_status', 'payment_method', 'is_hmo_covered')
    search_fields = ('receipt_number', 'patient__name', 'patient__email')


@admin.register(DentalRecord)
class DentalRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'created_at')
    search_fields = ('patient__name', 'complaint')


@admin.register(DailyVisit)
class DailyVisitAdmin(ReadOnlyAdmin):
    list_display = ('id', 'patient', 'check_in_time')
    search_fields = ('patient__name', 'patient__phone_number')


@admin.register(AuditEvent)
class AuditEventAdmin(ReadOnlyAdmin):
    list_display = ('id', 'action', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('action', 'user__username')
