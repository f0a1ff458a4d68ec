# app/blueprints/admin/audit_logs.py
from datetime import datetime, timedelta

from flask import render_template, request
from flask_login import login_required

from ...models.audit import AuditAction, AuditLog
from ...security import roles_required
from . import admin_bp


def _parse_date(val):
    if not val:
        return None
    try:
        return datetime.strptime(val, "%Y-%m-%d")
    except ValueError:
        return None


@admin_bp.get("/audit-logs")
@login_required
@roles_required("admin")
def audit_logs():
    action = (request.args.get("action") or "").strip()
    table = (request.args.get("table") or "").strip()
    user_id = request.args.get("user_id", type=int)
    since = _parse_date(request.args.get("from"))
    until = _parse_date(request.args.get("to"))
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    per_page = 50

    base = AuditLog.query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if action in {a.value for a in AuditAction}:
        base = base.filter(AuditLog.action == action)
    if table:
        base = base.filter(AuditLog.table_name == table)
    if user_id:
        base = base.filter(AuditLog.user_id == user_id)
    if since:
        base = base.filter(AuditLog.created_at >= since)
    if until:
        base = base.filter(AuditLog.created_at < until + timedelta(days=1))

    total = base.count()
    pages = max((total + per_page - 1) // per_page, 1)
    page = min(page, pages)
    logs = base.offset((page - 1) * per_page).limit(per_page).all()

    return render_template("admin/audit_logs.html", logs=logs, actions=[a.value for a in AuditAction],
                           action=action, table=table, user_id=user_id,
                           page=page, pages=pages, total=total)
