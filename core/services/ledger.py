"""
Receipt posting and the outstanding-balance ledger.

``Patient.outstanding`` is positive while the patient owes the clinic and
negative when the clinic holds credit for them.  Every posting moves it by
``total_due - amount_paid`` inside one transaction and appends a
``Receipt`` row recording the balance before and after.  The receipt email
is sent only after that transaction has committed and can never undo it.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date

from core.exceptions import DependencyError, NotFoundError, RecipientMissingError, ValidationError
from core.models import Patient, Receipt
from core.services.audit import log_action
from core.services.notifications import SHEET_RECEIPTS, NotificationResult, get_dispatcher

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
# money columns are decimal(10, 2)
AMOUNT_LIMIT = Decimal(10) ** 8


def _check_limit(amount: Decimal, field: str) -> Decimal:
    if abs(amount) >= AMOUNT_LIMIT:
        raise ValidationError(f'{field} must be less than {AMOUNT_LIMIT:,.0f} in magnitude')
    return amount


def to_amount(value, field: str = 'amount', *, allow_negative: bool = False) -> Decimal:
    """Parse a money value and round it half-up to two places."""
    if isinstance(value, bool) or value is None or value == '':
        raise ValidationError(f'{field} must be a number')
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number') from None
    if not amount.is_finite():
        raise ValidationError(f'{field} must be a number')
    if amount < 0 and not allow_negative:
        raise ValidationError(f'{field} cannot be negative')
    return _check_limit(amount.quantize(CENTS, rounding=ROUND_HALF_UP), field)


def _money(d: Decimal) -> str:
    return f'{d:,.2f}'


def _clean_items(items: Iterable[Mapping[str, Any]]) -> List[dict]:
    out = []
    for i, item in enumerate(items or ()):
        if not isinstance(item, Mapping):
            raise ValidationError(f'items[{i}] must be an object')
        quantity = item.get('quantity', 1)
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError(f'items[{i}].quantity must be an integer') from None
        unit_price = to_amount(item.get('unitPrice', item.get('unit_price', 0)), f'items[{i}].unitPrice')
        out.append({
            'description': str(item.get('description') or '').strip(),
            'quantity': quantity,
            'unitPrice': str(unit_price),
            'total': str((unit_price * quantity).quantize(CENTS, rounding=ROUND_HALF_UP)),
        })
    return out


@dataclass
class ReceiptPosting:
    receipt: Receipt
    patient: Patient
    notification: NotificationResult

    @property
    def new_outstanding(self) -> Decimal:
        return self.receipt.new_outstanding


def post_receipt(patient_id, amount_paid, total_due, *, receipt_number=None, receipt_date=None,
                 payment_method=None, items=(), hmo=None, actor=None, notifier=None) -> ReceiptPosting:
    """Apply one payment to the patient's balance and send the receipt.

    ``hmo`` is an optional mapping with ``covered`` (bool), ``name`` and
    ``covered_amount``.  The returned posting carries the committed receipt
    and the notification outcome; a failed notification is logged and
    stored on the receipt but the balance change stands.
    """
    paid = to_amount(amount_paid, 'amountPaid')
    due = to_amount(total_due, 'totalDueFromPatient')
    hmo = dict(hmo or {})
    is_hmo_covered = bool(hmo.get('covered'))
    covered_amount = to_amount(hmo.get('covered_amount') or 0, 'coveredAmount')
    cleaned_items = _clean_items(items)
    if isinstance(receipt_date, str):
        parsed = parse_date(receipt_date.strip())
        if parsed is None:
            raise ValidationError('receiptDate must be a date (YYYY-MM-DD)')
        receipt_date = parsed

    patient = Patient.objects.filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError('Patient not found.')
    if not patient.email:
        raise RecipientMissingError('Patient email not available in the database.')

    balance_change = due - paid
    with transaction.atomic():
        patient = Patient.objects.select_for_update().get(id=patient.id)
        _check_limit(patient.outstanding + balance_change, 'outstanding balance')
        Patient.objects.filter(id=patient.id).update(
            outstanding=F('outstanding') + balance_change,
            updated_at=timezone.now(),
        )
        patient.refresh_from_db(fields=['outstanding', 'updated_at'])
        new_outstanding = _check_limit(patient.outstanding.quantize(CENTS, rounding=ROUND_HALF_UP),
                                       'outstanding balance')
        # SQLite evaluates the increment in floating point; store the rounded value
        Patient.objects.filter(id=patient.id).update(outstanding=new_outstanding)
        patient.outstanding = new_outstanding
        # derived from the applied increment so the row always satisfies new == previous + change
        previous_outstanding = new_outstanding - balance_change

        receipt = Receipt.objects.create(
            patient=patient,
            receipt_number=(receipt_number or '').strip(),
            receipt_date=receipt_date or timezone.localdate(),
            payment_method=(payment_method or '').strip(),
            amount_paid=paid,
            total_due=due,
            balance_change=balance_change,
            previous_outstanding=previous_outstanding,
            new_outstanding=new_outstanding,
            is_hmo_covered=is_hmo_covered,
            hmo_name=(hmo.get('name') or '').strip() if is_hmo_covered else '',
            covered_amount=covered_amount if is_hmo_covered else Decimal('0.00'),
            items=cleaned_items,
            posted_by=actor if getattr(actor, 'pk', None) else None,
        )
        if not receipt.receipt_number:
            receipt.receipt_number = f'RCPT-{receipt.id:06d}'
            receipt.save(update_fields=['receipt_number'])
        log_action(user=actor, action='receipt_post', object_type='patient', object_id=patient.id, detail={
            'receiptId': receipt.id,
            'previous': str(previous_outstanding),
            'change': str(balance_change),
            'new': str(new_outstanding),
        })
    logger.info('receipt %s posted for patient %s: %s -> %s',
                receipt.receipt_number, patient.id, previous_outstanding, new_outstanding)

    notification = _dispatch_receipt(receipt, patient, notifier or get_dispatcher())
    return ReceiptPosting(receipt=receipt, patient=patient, notification=notification)


def receipt_payload(receipt: Receipt, patient: Patient) -> dict:
    """Template context built from the committed receipt row."""
    outstanding = receipt.new_outstanding
    return {
        'patient_name': patient.name,
        'receipt_number': receipt.receipt_number,
        'receipt_date': receipt.receipt_date.isoformat(),
        'payment_method': receipt.payment_method or 'N/A',
        'amount_paid': _money(receipt.amount_paid),
        'total_due': _money(receipt.total_due),
        'previous_outstanding': _money(receipt.previous_outstanding),
        'outstanding': _money(outstanding),
        'credit': _money(-outstanding),
        'has_outstanding': outstanding > 0,
        'has_credit': outstanding < 0,
        'is_hmo_covered': receipt.is_hmo_covered,
        'hmo_name': receipt.hmo_name,
        'covered_amount': _money(receipt.covered_amount),
        'items': receipt.items,
    }


def _dispatch_receipt(receipt: Receipt, patient: Patient, notifier) -> NotificationResult:
    payload = receipt_payload(receipt, patient)
    try:
        result = notifier.notify(patient.email, 'receipt', payload)
    except Exception as exc:
        logger.exception('receipt %s: notification dispatch raised', receipt.id)
        result = NotificationResult(success=False, error=str(exc) or exc.__class__.__name__)

    if result.success:
        status = Receipt.NOTIFY_SENT
        try:
            notifier.log_row(SHEET_RECEIPTS, [
                receipt.receipt_number, receipt.receipt_date, patient.id, patient.name,
                receipt.payment_method, receipt.amount_paid, receipt.total_due,
                receipt.previous_outstanding, receipt.new_outstanding,
                receipt.hmo_name if receipt.is_hmo_covered else '',
            ])
        except DependencyError as exc:
            logger.warning('receipt %s: spreadsheet log failed: %s', receipt.id, exc.detail)
    else:
        status = Receipt.NOTIFY_FAILED
        logger.warning('receipt %s: email to patient %s failed: %s', receipt.id, patient.id, result.error)

    receipt.notification_status = status
    receipt.notification_error = (result.error or '')[:2000]
    receipt.message_id = (result.message_id or '')[:255]
    receipt.save(update_fields=['notification_status', 'notification_error', 'message_id'])
    return result


def adjust_outstanding(patient_id, amount, *, reason: str, actor=None) -> Patient:
    """Owner correction: set the balance outright and audit the old value."""
    if not (reason or '').strip():
        raise ValidationError('A reason is required to adjust an outstanding balance.')
    new_value = to_amount(amount, 'outstanding', allow_negative=True)
    with transaction.atomic():
        patient = Patient.objects.select_for_update().filter(id=patient_id).first()
        if patient is None:
            raise NotFoundError('Patient not found.')
        old_value = patient.outstanding
        patient.outstanding = new_value
        patient.save(update_fields=['outstanding', 'updated_at'])
        log_action(user=actor, action='outstanding_adjust', object_type='patient', object_id=patient.id, detail={
            'old': str(old_value), 'new': str(new_value), 'reason': reason.strip(),
        })
    logger.info('outstanding for patient %s adjusted %s -> %s', patient.id, old_value, new_value)
    return patient


def list_debtors():
    """Patients who owe the clinic, largest balance first, with the total owed."""
    debtors = list(Patient.objects.filter(outstanding__gt=0).order_by('-outstanding', 'name', 'id'))
    total = sum((p.outstanding for p in debtors), Decimal('0.00'))
    return debtors, total.quantize(CENTS, rounding=ROUND_HALF_UP)
