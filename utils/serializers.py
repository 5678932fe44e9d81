def _money(value):
    return None if value is None else "%.2f" % value


def _ts(value):
    return value.isoformat() if value else None


def booking_to_dict(b):
    return {
        "id": b.id,
        "placeId": b.place_id,
        "userId": b.user_id,
        "timeSlots": b.time_slots or [],
        "checkInDate": b.check_in_date.isoformat() if b.check_in_date else None,
        "checkOutDate": b.check_out_date.isoformat() if b.check_out_date else None,
        "numOfGuests": b.num_of_guests,
        "guestName": b.guest_name,
        "guestPhone": b.guest_phone,
        "totalPrice": _money(b.total_price),
        "serviceFee": _money(b.service_fee),
        "finalTotal": _money(b.final_total),
        "status": b.status,
        "uniqueRequestId": b.unique_request_id,
        "paymentStatus": b.payment_status,
        "paidAt": _ts(b.paid_at),
        "clickInvoiceId": b.click_invoice_id,
        "paidToHost": bool(b.paid_to_host),
        "paidToHostAt": _ts(b.paid_to_host_at),
        "selectedAt": _ts(b.selected_at),
        "approvedAt": _ts(b.approved_at),
        "rejectedAt": _ts(b.rejected_at),
        "rejectionReason": b.rejection_reason,
        "createdAt": _ts(b.created_at),
    }


def transaction_to_dict(t):
    return {
        "id": t.id,
        "clickTransId": t.click_trans_id,
        "prepareId": t.prepare_id,
        "state": t.state,
        "amount": _money(t.amount),
        "createDate": _ts(t.create_date),
        "performDate": _ts(t.perform_date),
        "cancelDate": _ts(t.cancel_date),
    }


def payment_event_to_dict(e):
    return {
        "id": e.id,
        "kind": e.kind,
        "clickTransId": e.click_trans_id,
        "errorCode": e.error_code,
        "createdAt": _ts(e.created_at),
    }
