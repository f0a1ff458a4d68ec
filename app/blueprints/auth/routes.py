# app/blueprints/auth/routes.py
from urllib.parse import urlparse

from flask import render_template, request, redirect, url_for, flash
from flask_login import login_user, logout_user, login_required, current_user

from ...extensions import db
from ...models.audit import AuditAction
from ...models.user import User
from ...services.audit_service import record_audit
from . import auth_bp
from .forms import LoginForm


# -----------------
# Utilities
# -----------------

def _home_for(user) -> str:
    if user.is_admin:
        return url_for("admin.disputes")
    if user.is_freelancer:
        return url_for("freelancer.earnings")
    return url_for("index")


def _redirect_next(user):
    nxt = request.args.get("next") or request.form.get("next")
    # only same-site relative paths
    if nxt and not urlparse(nxt).netloc and nxt.startswith("/"):
        return nxt
    return _home_for(user)


# -----------------
# Login / Logout
# -----------------

@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(_home_for(current_user))

    form = LoginForm()
    if form.validate_on_submit():
        email = form.email.data.strip().lower()
        user = User.query.filter_by(email=email).first()
        if not user or not user.check_password(form.password.data):
            record_audit(user.id if user else None, AuditAction.LOGIN_FAILED, "user",
                         user.id if user else None, None, {"email": email, "ip": request.remote_addr})
            flash("Invalid email or password.", "danger")
            return render_template("auth/login.html", form=form)

        if user.is_suspended:
            flash("Your account is suspended. Contact support.", "warning")
            return render_template("auth/login.html", form=form)

        login_user(user, remember=bool(form.remember.data))
        user.mark_login()
        db.session.commit()
        record_audit(user.id, AuditAction.LOGIN, "user", user.id, None, {"ip": request.remote_addr})
        return redirect(_redirect_next(user))

    # Preserve next param
    form.next.data = request.args.get("next", "")
    return render_template("auth/login.html", form=form)


@auth_bp.route("/logout")
@login_required
def logout():
    user_id = current_user.id
    logout_user()
    record_audit(user_id, AuditAction.LOGOUT, "user", user_id)
    flash("You have been logged out.", "info")
    return redirect(url_for("auth.login"))
