import bleach
from rest_framework import serializers

from core.models import Receipt


class ReceiptItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255, allow_blank=True, required=False)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unitPrice = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0, coerce_to_string=False)

    def validate_description(self, v):
        return bleach.clean((v or '').strip(), strip=True)


class ReceiptSendSerializer(serializers.Serializer):
    """Body of POST /api/receipts/send (top level or under ``receiptData``)."""
    patientId = serializers.IntegerField()
    amountPaid = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0, coerce_to_string=False)
    totalDueFromPatient = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0, coerce_to_string=False)
    receiptNumber = serializers.CharField(max_length=64, required=False, allow_blank=True)
    receiptDate = serializers.DateField(required=False, allow_null=True)
    paymentMethod = serializers.CharField(max_length=50, required=False, allow_blank=True)
    items = ReceiptItemSerializer(many=True, required=False)
    isHmoCovered = serializers.BooleanField(default=False)
    hmoName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    coveredAmount = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0, required=False,
                                             allow_null=True, coerce_to_string=False)

    def validate_receiptNumber(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def validate_paymentMethod(self, v):
        return bleach.clean((v or '').strip(), strip=True)


class ReceiptSerializer(serializers.ModelSerializer):
    patientId = serializers.IntegerField(source='patient_id', read_only=True)
    receiptNumber = serializers.CharField(source='receipt_number', read_only=True)
    receiptDate = serializers.DateField(source='receipt_date', read_only=True)
    paymentMethod = serializers.CharField(source='payment_method', read_only=True)
    amountPaid = serializers.DecimalField(source='amount_paid', max_digits=10, decimal_places=2, read_only=True)
    totalDue = serializers.DecimalField(source='total_due', max_digits=10, decimal_places=2, read_only=True)
    balanceChange = serializers.DecimalField(source='balance_change', max_digits=10, decimal_places=2, read_only=True)
    previousOutstanding = serializers.DecimalField(source='previous_outstanding', max_digits=10, decimal_places=2, read_only=True)
    newOutstanding = serializers.DecimalField(source='new_outstanding', max_digits=10, decimal_places=2, read_only=True)
    isHmoCovered = serializers.BooleanField(source='is_hmo_covered', read_only=True)
    hmoName = serializers.CharField(source='hmo_name', read_only=True)
    coveredAmount = serializers.DecimalField(source='covered_amount', max_digits=10, decimal_places=2, read_only=True)
    notificationStatus = serializers.CharField(source='notification_status', read_only=True)
    messageId = serializers.CharField(source='message_id', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Receipt
        fields = [
            'id', 'patientId', 'receiptNumber', 'receiptDate', 'paymentMethod', 'amountPaid', 'totalDue',
            'balanceChange', 'previousOutstanding', 'newOutstanding', 'isHmoCovered', 'hmoName',
            'coveredAmount', 'items', 'notificationStatus', 'messageId', 'createdAt',
        ]
        read_only_fields = fields
