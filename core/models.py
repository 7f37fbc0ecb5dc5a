"""
Database models for the clinic backend.

Patients form a two-level family graph: a family head carries the shared
contact and billing attributes (phone, email, address, HMO) and each
family member points back to its head through ``family``.  Members keep a
snapshot of the head's address and HMO which is refreshed explicitly when
the head is updated.  Receipts are append-only ledger rows recording how
each payment moved the patient's outstanding balance.
"""
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models


class User(AbstractUser):
    """Clinic staff account.

    Roles mirror the front-end roles: 'owner', 'staff', 'nurse' and
    'doctor'.  Patients do not log in.
    """
    ROLE_CHOICES = [
        ('owner', 'Owner'),
        ('staff', 'Staff'),
        ('nurse', 'Nurse'),
        ('doctor', 'Doctor'),
    ]
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='staff')

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Patient(models.Model):
    """An individual under care, either a family head or a family member.

    ``family`` is null for heads (and standalone guests, who are heads
    without members).  Members never store their own phone number or
    email; they are reached through their head.
    """
    family = models.ForeignKey(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='members'
    )
    is_family_head = models.BooleanField(default=False)
    name = models.CharField(max_length=255)
    sex = models.CharField(max_length=50)
    date_of_birth = models.DateField(null=True, blank=True)
    phone_number = models.CharField(max_length=20, unique=True, null=True, blank=True)
    email = models.EmailField(max_length=255, unique=True, null=True, blank=True)
    address = models.TextField(null=True, blank=True)
    hmo = models.JSONField(null=True, blank=True)
    next_appointment_date = models.DateField(null=True, blank=True, db_index=True)
    # positive: patient owes the clinic; negative: credit held for the patient
    outstanding = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['family', 'is_family_head'], name='patient_family_head_idx'),
        ]

    def clean(self):
        if self.is_family_head and self.family_id is not None:
            raise ValidationError({'family': 'a family head cannot belong to another family'})
        if not self.is_family_head:
            if self.family_id is None:
                raise ValidationError({'family': 'a family member must reference its family head'})
            if not Patient.objects.filter(id=self.family_id, is_family_head=True).exists():
                raise ValidationError({'family': 'referenced patient is not a family head'})
            if self.phone_number or self.email:
                raise ValidationError('family members share the contact details of their head')

    @property
    def balance_status(self) -> str:
        if self.outstanding > 0:
            return 'owing'
        if self.outstanding < 0:
            return 'credit'
        return 'settled'

    @property
    def hmo_name(self) -> str:
        if isinstance(self.hmo, dict):
            return self.hmo.get('name') or ''
        return ''

    def __str__(self) -> str:
        return f"{self.name} (#{self.id})"


class Receipt(models.Model):
    """One posted payment event.

    Balances are captured as they were committed so that the receipt email
    and the spreadsheet log always repeat the persisted values.  Only the
    notification fields change after creation.
    """
    NOTIFY_PENDING = 'pending'
    NOTIFY_SENT = 'sent'
    NOTIFY_FAILED = 'failed'
    NOTIFY_CHOICES = (
        (NOTIFY_PENDING, 'pending'),
        (NOTIFY_SENT, 'sent'),
        (NOTIFY_FAILED, 'failed'),
    )

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='receipts')
    receipt_number = models.CharField(max_length=64, blank=True)
    receipt_date = models.DateField()
    payment_method = models.CharField(max_length=50, blank=True)
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2)
    total_due = models.DecimalField(max_digits=10, decimal_places=2)
    balance_change = models.DecimalField(max_digits=10, decimal_places=2)
    previous_outstanding = models.DecimalField(max_digits=10, decimal_places=2)
    new_outstanding = models.DecimalField(max_digits=10, decimal_places=2)
    is_hmo_covered = models.BooleanField(default=False)
    hmo_name = models.CharField(max_length=255, blank=True)
    covered_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    items = models.JSONField(default=list, blank=True)
    posted_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='receipts_posted'
    )
    notification_status = models.CharField(max_length=16, choices=NOTIFY_CHOICES, default=NOTIFY_PENDING)
    notification_error = models.TextField(blank=True)
    message_id = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['patient', 'created_at'], name='receipt_patient_created_idx'),
        ]

    def __str__(self) -> str:
        return f"Receipt {self.receipt_number or self.id} for {self.patient_id}: {self.previous_outstanding} -> {self.new_outstanding}"


class DentalRecord(models.Model):
    """Clinical notes for one encounter; removed together with the patient."""
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='dental_records')
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='dental_records'
    )
    complaint = models.TextField(blank=True)
    history_of_present_complaint = models.TextField(blank=True)
    past_dental_history = models.TextField(blank=True)
    extra_oral_examination = models.TextField(blank=True)
    intra_oral_examination = models.TextField(blank=True)
    investigations = models.TextField(blank=True)
    xray_findings = models.TextField(blank=True)
    provisional_diagnosis = models.JSONField(default=list, blank=True)
    treatment_plan = models.JSONField(default=list, blank=True)
    treatment_done = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['patient', 'created_at'], name='dental_patient_created_idx'),
        ]

    def __str__(self) -> str:
        return f"DentalRecord {self.id} for {self.patient_id}"


class DailyVisit(models.Model):
    """A returning patient checking in at the front desk."""
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='daily_visits')
    check_in_time = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"visit p={self.patient_id} @ {self.check_in_time:%F %T}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]
