"""
Admin routes for the pairchat dashboard.

Provides:
- /admin/ - Main dashboard (requires authentication)
- /admin/login - Login page and authentication
- /admin/logout - Session logout
- /admin/state - JSON snapshot of pool and rooms (requires authentication)
"""
from __future__ import annotations

import functools
import hmac

from flask import (current_app, jsonify, redirect, render_template, request,
                   url_for)
from flask_login import current_user, login_required, login_user, logout_user

from . import AdminUser, admin_bp


def admin_required(f):
    """Decorator that requires admin authentication."""
    @functools.wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        return f(*args, **kwargs)
    return decorated_function


def check_password(password: str) -> bool:
    expected = current_app.config.get('ADMIN_PASSWORD')
    if not expected:
        return False
    return hmac.compare_digest(password.encode(), expected.encode())


@admin_bp.route('/')
@admin_required
def dashboard():
    """Main admin dashboard page."""
    return render_template('dashboard.html')


@admin_bp.route('/login', methods=['GET', 'POST'])
def login():
    """Admin login page."""
    if current_user.is_authenticated:
        return redirect(url_for('admin.dashboard'))

    error = None
    if request.method == 'POST':
        password = request.form.get('password', '')
        if check_password(password):
            login_user(AdminUser(), remember=True)
            next_page = request.args.get('next')
            # Only follow relative redirects
            if not next_page or not next_page.startswith('/'):
                next_page = url_for('admin.dashboard')
            return redirect(next_page)
        error = 'Invalid password'

    return render_template('login.html', error=error)


@admin_bp.route('/logout')
@login_required
def logout():
    """Log out admin user."""
    logout_user()
    return redirect(url_for('admin.login'))


@admin_bp.route('/state')
@admin_required
def state():
    """Current relay snapshot as JSON."""
    aggregator = current_app.extensions.get('pairchat_admin_aggregator')
    if aggregator is None:
        return jsonify({'error': 'Aggregator not initialized'}), 503
    return jsonify(aggregator.get_snapshot())
