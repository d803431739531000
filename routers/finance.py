"""Sales reporting, transactions, finance, seller withdrawals and refunds."""
import logging
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import require_admin
from checkout import restock_order, set_status
from database import create_document, find_or_404, get_db, get_documents, now, to_object_id
from helpers import (
    csv_response,
    date_filter_start,
    fmt_date,
    page_info,
    paginate,
    percent_change,
    regex,
    respond,
    serialize_doc,
    shift_month,
    start_of_month,
)
from routers.admin import chart_buckets
from schemas import FinanceRefundBody, PayoutBody, Withdrawal, WithdrawalStatusBody

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["finance"])

DATE_PATTERN = "^(today|week|month|year)$"
REFUND_STATUSES = ["Refund Initiated", "Refunded"]


def _since(filt: dict, date_filter: Optional[str], field: str = "created_at") -> dict:
    start = date_filter_start(date_filter)
    if start:
        filt[field] = {"$gte": start}
    return filt


def _total(docs, field="total_amount") -> float:
    return round(sum(d.get(field) or 0 for d in docs), 2)

# ----------------------- Sales -----------------------

@router.get("/sales/stats")
def sales_stats(admin=Depends(require_admin), db=Depends(get_db)):
    delivered = list(db["order"].find({"order_status": "Delivered"}, {"total_amount": 1, "created_at": 1}))
    this_month = start_of_month(now())
    last_month = shift_month(this_month, -1)
    current = _total(o for o in delivered if o["created_at"] >= this_month)
    previous = _total(o for o in delivered if last_month <= o["created_at"] < this_month)
    total = _total(delivered)
    return respond({
        "total_sales": total,
        "total_orders": len(delivered),
        "average_order": round(total / len(delivered), 2) if delivered else 0,
        "refunded": db["order"].count_documents({"order_status": "Returned"}),
        "sales_change": percent_change(current, previous),
    })


@router.get("/sales/revenue-chart")
def revenue_chart(admin=Depends(require_admin), db=Depends(get_db)):
    start = shift_month(start_of_month(now()), -11)
    earning, refunds = defaultdict(float), defaultdict(float)
    filt = {"created_at": {"$gte": start}, "order_status": {"$in": ["Delivered", "Returned"]}}
    for o in db["order"].find(filt, {"order_status": 1, "total_amount": 1, "created_at": 1}):
        bucket = earning if o["order_status"] == "Delivered" else refunds
        bucket[o["created_at"].strftime("%Y-%m")] += o.get("total_amount", 0)
    months = [shift_month(start, i).strftime("%Y-%m") for i in range(12)]
    return respond([
        {"month": m, "earning": round(earning.get(m, 0), 2), "refunds": round(refunds.get(m, 0), 2)}
        for m in months
    ])


@router.get("/sales/top-countries")
def top_countries(limit: int = Query(6, ge=1, le=50), admin=Depends(require_admin), db=Depends(get_db)):
    orders, revenue = Counter(), defaultdict(float)
    for o in db["order"].find({"order_status": "Delivered"}, {"shipping_address.country": 1, "total_amount": 1}):
        country = (o.get("shipping_address") or {}).get("country") or "Unknown"
        orders[country] += 1
        revenue[country] += o.get("total_amount", 0)
    return respond([
        {"country": c, "orders": n, "revenue": round(revenue[c], 2)} for c, n in orders.most_common(limit)
    ])


def _sales_filter(date_filter, status):
    filt = {"order_status": status} if status else {}
    return _since(filt, date_filter)


@router.get("/sales/reports")
def sales_reports(
    date_filter: Optional[str] = Query(None, pattern=DATE_PATTERN),
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = _sales_filter(date_filter, status)
    total = db["order"].count_documents(filt)
    cursor, page, limit = paginate(db["order"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(o) for o in cursor], pagination=page_info(total, page, limit))


@router.get("/sales/export")
def export_sales(date_filter: Optional[str] = Query(None, pattern=DATE_PATTERN), status: Optional[str] = None,
                 admin=Depends(require_admin), db=Depends(get_db)):
    orders = db["order"].find(_sales_filter(date_filter, status)).sort("created_at", -1)
    rows = (
        [o["order_number"], fmt_date(o.get("created_at")), (o.get("shipping_address") or {}).get("full_name", ""),
         len(o.get("order_items", [])), o.get("subtotal"), o.get("shipping_cost"), o.get("discount"),
         o.get("total_amount"), o.get("payment_method"), o.get("payment_status"), o.get("order_status")]
        for o in orders
    )
    header = ["Order Number", "Date", "Customer", "Items", "Subtotal", "Shipping", "Discount",
              "Total", "Payment Method", "Payment Status", "Order Status"]
    return csv_response("sales-report.csv", header, rows)

# ----------------------- Transactions -----------------------

def transaction_filter(search, payment_status, status, date_filter) -> dict:
    filt = {}
    if search:
        filt["$or"] = [{"tracking_number": regex(search)}, {"email": regex(search)}]
    if payment_status:
        filt["payment_status"] = payment_status.lower()
    if status:
        filt["status"] = status
    return _since(filt, date_filter, "date")


@router.get("/transactions")
def list_transactions(
    search: Optional[str] = None,
    payment_status: Optional[str] = None,
    status: Optional[str] = None,
    date_filter: Optional[str] = Query(None, pattern=DATE_PATTERN),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = transaction_filter(search, payment_status, status, date_filter)
    total = db["transaction"].count_documents(filt)
    cursor, page, limit = paginate(db["transaction"].find(filt).sort([("date", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(t) for t in cursor], pagination=page_info(total, page, limit))


TRANSACTION_HEADER = ["Tracking Number", "Email", "Date", "Product Price", "Delivery Fee",
                      "Total", "Payment Method", "Payment Status", "Status"]


def transaction_rows(transactions):
    for t in transactions:
        yield [t.get("tracking_number"), t.get("email"), fmt_date(t.get("date")), t.get("product_price"),
               t.get("delivery_fee"), t.get("total_amount"), t.get("payment_method"),
               t.get("payment_status"), t.get("status")]


@router.get("/transactions/export")
def export_transactions(search: Optional[str] = None, payment_status: Optional[str] = None,
                        status: Optional[str] = None, date_filter: Optional[str] = Query(None, pattern=DATE_PATTERN),
                        admin=Depends(require_admin), db=Depends(get_db)):
    txs = db["transaction"].find(transaction_filter(search, payment_status, status, date_filter)).sort("date", -1)
    return csv_response("transactions.csv", TRANSACTION_HEADER, transaction_rows(txs))

# ----------------------- Finance -----------------------

def _finance_figures(orders) -> dict:
    orders = list(orders)
    paid = [o for o in orders if o.get("payment_status") == "Paid"]
    income = _total(paid)
    expenses = round(
        _total(paid, "shipping_cost") + _total(paid, "tax") + _total(orders, "refund_amount"), 2
    )
    return {
        "income": income,
        "expenses": expenses,
        "revenue": round(income - expenses, 2),
        "average_earning": round(income / len(paid), 2) if paid else 0,
    }


@router.get("/finance/stats")
def finance_stats(admin=Depends(require_admin), db=Depends(get_db)):
    this_month = start_of_month(now())
    last_month = shift_month(this_month, -1)
    current = _finance_figures(db["order"].find({"created_at": {"$gte": this_month}}))
    previous = _finance_figures(db["order"].find({"created_at": {"$gte": last_month, "$lt": this_month}}))
    data = dict(current)
    for key in current:
        data[f"{key}_change"] = percent_change(current[key], previous[key])
    return respond(data)


@router.get("/finance/chart")
def finance_chart(period: str = Query("12months", pattern="^(24hours|7days|30days|12months)$"),
                  admin=Depends(require_admin), db=Depends(get_db)):
    start, key, labels = chart_buckets(period, now())
    grouped = defaultdict(list)
    for o in db["order"].find({"created_at": {"$gte": start}}):
        grouped[key(o["created_at"])].append(o)
    return respond([{"label": label, **_finance_figures(grouped.get(label, []))} for label in labels])


@router.get("/finance/transactions")
def finance_transactions(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    # "received" is what the finance screen calls a paid transaction.
    filt = {}
    if status:
        filt["payment_status"] = "paid" if status == "received" else status.lower()
    total = db["transaction"].count_documents(filt)
    cursor, page, limit = paginate(db["transaction"].find(filt).sort([("date", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(t) for t in cursor], pagination=page_info(total, page, limit))


@router.get("/finance/export")
def export_finance(admin=Depends(require_admin), db=Depends(get_db)):
    txs = db["transaction"].find({}).sort("date", -1)
    return csv_response("finance.csv", TRANSACTION_HEADER, transaction_rows(txs))


@router.post("/finance/payout")
def process_payout(body: PayoutBody, admin=Depends(require_admin), db=Depends(get_db)):
    tx = find_or_404(db, "transaction", body.transaction_id, "Transaction")
    if tx.get("payment_status") != "pending":
        raise HTTPException(status_code=400, detail="Only pending transactions can be paid out")
    order = db["order"].find_one({"_id": tx["order_id"]})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["order_status"] in ("Cancelled", "Returned"):
        raise HTTPException(status_code=400, detail=f"Order is {order['order_status']}")
    set_status(db, order, "Delivered", "Payment Confirmed", admin["_id"], {"payment_status": "Paid"})
    return respond(serialize_doc(db["transaction"].find_one({"_id": tx["_id"]})), "Payout processed")


@router.post("/finance/refund")
def process_refund(body: FinanceRefundBody, admin=Depends(require_admin), db=Depends(get_db)):
    order = find_or_404(db, "order", body.order_id, "Order")
    if order.get("payment_status") not in ("Paid", "Refund Initiated"):
        raise HTTPException(status_code=400, detail="Only paid orders can be refunded")
    amount = body.amount or order["total_amount"]
    if amount > order["total_amount"]:
        raise HTTPException(status_code=400, detail="Refund exceeds order total")
    restock_order(db, order)
    status = "Returned" if order["order_status"] == "Delivered" else "Cancelled"
    order = set_status(db, order, status, body.reason or "Refund processed", admin["_id"], {
        "payment_status": "Refunded",
        "refund_amount": amount,
        "refund_id": order.get("refund_id") or f"REF{int(now().timestamp() * 1000)}",
        "refund_status": "Refunded",
        "refunded_at": now(),
    })
    logger.info("Refunded %.2f on order %s", amount, order["order_number"])
    return respond(serialize_doc(order), "Refund processed")

# ----------------------- Withdrawals -----------------------

WITHDRAWAL_FLOW = {
    "Pending": {"Approved", "Rejected", "Processing"},
    "Approved": {"Processing", "Completed", "Rejected"},
    "Processing": {"Completed", "Rejected"},
    "Completed": set(),
    "Rejected": set(),
}


def next_withdrawal_id(db) -> str:
    n = db["withdrawal"].count_documents({}) + 1
    while db["withdrawal"].find_one({"withdrawal_id": f"WD{n:05d}"}):
        n += 1
    return f"WD{n:05d}"


@router.get("/withdrawals/summary")
def withdrawal_summary(admin=Depends(require_admin), db=Depends(get_db)):
    current = now()
    window = timedelta(days=30)
    totals = defaultdict(float)
    recent = previous = 0.0
    for w in db["withdrawal"].find({}, {"payment_status": 1, "requested_amount": 1, "created_at": 1}):
        amount = w.get("requested_amount", 0)
        totals[w["payment_status"]] += amount
        if w["created_at"] >= current - window:
            recent += amount
        elif w["created_at"] >= current - 2 * window:
            previous += amount
    return respond({
        "total_requested": round(sum(totals.values()), 2),
        "by_status": {s: round(totals.get(s, 0), 2) for s in WITHDRAWAL_FLOW},
        "change": percent_change(recent, previous),
    })


@router.get("/withdrawals")
def list_withdrawals(
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {}
    if status:
        filt["payment_status"] = status
    if payment_method:
        filt["payment_method"] = payment_method
    if search:
        filt["withdrawal_id"] = regex(search)
    total = db["withdrawal"].count_documents(filt)
    cursor, page, limit = paginate(db["withdrawal"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(w) for w in cursor], pagination=page_info(total, page, limit))


@router.get("/withdrawals/{withdrawal_id}")
def get_withdrawal(withdrawal_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    withdrawal = find_or_404(db, "withdrawal", withdrawal_id, "Withdrawal")
    data = serialize_doc(withdrawal)
    data["seller"] = serialize_doc(db["seller"].find_one({"_id": withdrawal["seller_id"]}, {"name": 1, "shop_name": 1, "email": 1}))
    return respond(data)


@router.post("/withdrawals", status_code=201)
def create_withdrawal(body: Withdrawal, admin=Depends(require_admin), db=Depends(get_db)):
    seller = find_or_404(db, "seller", body.seller_id, "Seller")
    if seller.get("status") != "approved":
        raise HTTPException(status_code=400, detail="Seller is not approved")
    if body.payment_method == "Bank Transfer" and not body.bank_details:
        raise HTTPException(status_code=400, detail="Bank details are required for bank transfers")
    if body.payment_method == "UPI" and not body.upi_id:
        raise HTTPException(status_code=400, detail="UPI ID is required")
    if body.payment_method == "PayPal" and not body.paypal_email:
        raise HTTPException(status_code=400, detail="PayPal email is required")
    data = body.model_dump()
    data.update({
        "seller_id": seller["_id"],
        "withdrawal_id": next_withdrawal_id(db),
        "payment_status": "Pending",
        "status_history": [{"status": "Pending", "timestamp": now(), "note": "Withdrawal requested", "updated_by": admin["_id"]}],
    })
    wid = create_document(db, "withdrawal", data)
    return respond(serialize_doc(db["withdrawal"].find_one({"_id": to_object_id(wid)})), "Withdrawal created")


def _transition(db, withdrawal: dict, status: str, admin: dict, note=None, extra=None) -> dict:
    if status not in WITHDRAWAL_FLOW[withdrawal["payment_status"]]:
        raise HTTPException(status_code=400, detail=f"Cannot move withdrawal from {withdrawal['payment_status']} to {status}")
    fields = {"payment_status": status, "updated_at": now()}
    if status in ("Completed", "Rejected"):
        fields.update({"processed_by": admin["_id"], "processed_at": now()})
    fields.update(extra or {})
    res = db["withdrawal"].update_one(
        {"_id": withdrawal["_id"], "payment_status": withdrawal["payment_status"]},
        {"$set": fields, "$push": {"status_history": {"status": status, "timestamp": now(), "note": note, "updated_by": admin["_id"]}}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=409, detail="Withdrawal was updated by someone else")
    return db["withdrawal"].find_one({"_id": withdrawal["_id"]})


@router.patch("/withdrawals/{withdrawal_id}/status")
def update_withdrawal_status(withdrawal_id: str, body: WithdrawalStatusBody, admin=Depends(require_admin), db=Depends(get_db)):
    withdrawal = find_or_404(db, "withdrawal", withdrawal_id, "Withdrawal")
    if body.status == "Rejected" and not body.rejection_reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")
    extra = {}
    if body.transaction_id:
        extra["transaction_id"] = body.transaction_id
    if body.rejection_reason:
        extra["rejection_reason"] = body.rejection_reason
    if body.status == "Completed":
        extra["payout_date"] = now()
    withdrawal = _transition(db, withdrawal, body.status, admin, body.note, extra)
    return respond(serialize_doc(withdrawal), f"Withdrawal {body.status.lower()}")


@router.post("/withdrawals/{withdrawal_id}/approve")
def approve_withdrawal(withdrawal_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    withdrawal = find_or_404(db, "withdrawal", withdrawal_id, "Withdrawal")
    if withdrawal["payment_status"] not in ("Pending", "Approved"):
        raise HTTPException(status_code=400, detail=f"Withdrawal is already {withdrawal['payment_status']}")
    if withdrawal["payment_status"] == "Pending":
        withdrawal = _transition(db, withdrawal, "Approved", admin, "Approved for payout")
    withdrawal = _transition(db, withdrawal, "Completed", admin, "Payout completed", {"payout_date": now()})
    logger.info("Withdrawal %s paid out", withdrawal["withdrawal_id"])
    return respond(serialize_doc(withdrawal), "Withdrawal approved and paid")

# ----------------------- Refunds -----------------------

def refund_filter(search: Optional[str], status: Optional[str]) -> dict:
    filt = {"payment_status": status if status in REFUND_STATUSES else {"$in": REFUND_STATUSES}}
    if search:
        filt["$or"] = [{"order_number": regex(search)}, {"refund_id": regex(search)}]
    return filt


@router.get("/refunds")
def list_refunds(
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = refund_filter(search, status)
    total = db["order"].count_documents(filt)
    cursor, page, limit = paginate(db["order"].find(filt).sort([("updated_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(o) for o in cursor], pagination=page_info(total, page, limit))


@router.get("/refunds/stats")
def refund_stats(admin=Depends(require_admin), db=Depends(get_db)):
    orders = get_documents(db, "order", {"payment_status": {"$in": REFUND_STATUSES}})
    return respond({
        "total": len(orders),
        "initiated": sum(1 for o in orders if o["payment_status"] == "Refund Initiated"),
        "completed": sum(1 for o in orders if o["payment_status"] == "Refunded"),
        "total_amount": _total(orders, "refund_amount"),
    })


@router.get("/refunds/export")
def export_refunds(search: Optional[str] = None, status: Optional[str] = None,
                   admin=Depends(require_admin), db=Depends(get_db)):
    orders = db["order"].find(refund_filter(search, status)).sort("updated_at", -1)
    rows = (
        [o["order_number"], o.get("refund_id"), o.get("refund_amount"), o.get("total_amount"),
         o.get("payment_status"), o.get("cancellation_reason"), fmt_date(o.get("updated_at"))]
        for o in orders
    )
    header = ["Order Number", "Refund ID", "Refund Amount", "Order Total", "Status", "Reason", "Updated"]
    return csv_response("refunds.csv", header, rows)


@router.get("/refunds/{order_id}")
def get_refund(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    order = find_or_404(db, "order", order_id, "Order")
    if order.get("payment_status") not in REFUND_STATUSES:
        raise HTTPException(status_code=400, detail="Order has no refund")
    return respond(serialize_doc(order))
