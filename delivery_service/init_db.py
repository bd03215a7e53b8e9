#!/usr/bin/env python3
"""
Create the tables, seed a small menu and an admin user, and print a token for it.
Run: delivery-init-db --reset
"""
import argparse

from .app import create_app
from .auth_mw import issue_token
from .db import db
from .models import MenuItem, Role, User
from .utils.responses import commit_or_rollback

DEFAULT_MENU = [
    ("Pho bo", "Beef noodle soup", 45000),
    ("Banh mi", "Pork baguette", 25000),
    ("Com tam", "Broken rice with grilled pork", 40000),
    ("Tra da", "Iced tea", 5000),
]


def seed_menu(items=DEFAULT_MENU):
    created = 0
    for name, description, price in items:
        if MenuItem.query.filter_by(name=name).first():
            continue
        db.session.add(MenuItem(name=name, description=description, price=price, available=True))
        created += 1
    commit_or_rollback()
    return created


def create_admin(subject="admin", display_name="Administrator"):
    existing = User.query.filter_by(subject=subject).first()
    if existing:
        if existing.role != Role.ADMIN:
            existing.role = Role.ADMIN
            commit_or_rollback()
            print(f"Updated user '{subject}' to admin")
        else:
            print(f"User '{subject}' is already admin (ID: {existing.id})")
        return existing

    admin = User(subject=subject, role=Role.ADMIN, display_name=display_name)
    db.session.add(admin)
    commit_or_rollback()
    print(f"Created admin '{subject}' (ID: {admin.id})")
    return admin


def main(argv=None):
    parser = argparse.ArgumentParser(description="Initialise the delivery database")
    parser.add_argument("--reset", action="store_true", help="drop every table first")
    parser.add_argument("--admin", default="admin", help="subject of the admin user (default: admin)")
    parser.add_argument("--no-menu", action="store_true", help="skip seeding menu items")
    parser.add_argument("--database-url", help="override DATABASE_URL")
    args = parser.parse_args(argv)

    overrides = {"SQLALCHEMY_DATABASE_URI": args.database_url} if args.database_url else None
    app = create_app(overrides)
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
        if not args.no_menu:
            print(f"Seeded {seed_menu()} menu item(s)")
        admin = create_admin(args.admin)
        print(f"Admin token: {issue_token(admin.subject, Role.ADMIN.value)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
