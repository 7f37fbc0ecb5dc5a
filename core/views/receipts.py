from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from core.permissions import CanPostReceipts
from core.serializers.receipt import ReceiptSendSerializer, ReceiptSerializer
from core.services.ledger import post_receipt


@api_view(['POST'])
@permission_classes([CanPostReceipts])
def send_receipt(request):
    """Post a payment against the patient's balance and email the receipt.

    The body may carry the fields at top level or nested under
    ``receiptData``.  A failed email does not fail the request: the balance
    change is committed and the response reports ``emailSent: false``.
    """
    payload = request.data.get('receiptData') if isinstance(request.data.get('receiptData'), dict) else request.data
    s = ReceiptSendSerializer(data=payload)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    posting = post_receipt(
        vd['patientId'],
        vd['amountPaid'],
        vd['totalDueFromPatient'],
        receipt_number=vd.get('receiptNumber'),
        receipt_date=vd.get('receiptDate'),
        payment_method=vd.get('paymentMethod'),
        items=vd.get('items') or (),
        hmo={
            'covered': vd.get('isHmoCovered'),
            'name': vd.get('hmoName'),
            'covered_amount': vd.get('coveredAmount'),
        },
        actor=request.user,
    )
    sent = posting.notification.success
    return Response({
        'ok': True,
        'message': 'Receipt sent successfully.' if sent else 'Receipt recorded; the email could not be sent.',
        'emailSent': sent,
        'newOutstanding': ReceiptSerializer(posting.receipt).data['newOutstanding'],
        'receipt': ReceiptSerializer(posting.receipt).data,
    })
