# library_system/cli.py
import click
from flask import current_app

from library_system.errors import LibraryError
from library_system.extensions import db
from library_system.models.user import User
from library_system.repositories.user_repo import UserRepo
from library_system.services.auth_service import generate_membership_number
from library_system.utils import validators as v
from library_system.utils.clock import now


def register_commands(app):
    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--phone", required=True)
    @click.option("--first-name", default="Library")
    @click.option("--last-name", default="Admin")
    @click.password_option()
    def create_admin(email, phone, first_name, last_name, password):
        """Creates a verified admin account (self-registration only creates members)."""
        try:
            email, phone, password = v.email(email), v.phone(phone), v.password(password)
        except LibraryError as e:
            raise click.ClickException(e.message)
        if UserRepo.get_by_email(email) or UserRepo.get_by_phone(phone):
            raise click.ClickException("Email or phone number already registered")

        at = now()
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            role="admin",
            membership_number=generate_membership_number(at),
            is_email_verified=True,
            is_phone_verified=True,
            created_at=at,
        )
        user.set_password(password)
        UserRepo.create(user)
        click.echo(f"Admin created: id={user.id} membership={user.membership_number}")

    @app.cli.command("run-job")
    @click.argument("name")
    def run_job(name):
        """Runs one maintenance job now (overdue_sweep, due_reminders, overdue_notices, token_purge)."""
        try:
            result = current_app.extensions["job_scheduler"].run_job(name)
        except LibraryError as e:
            raise click.ClickException(e.message)
        click.echo(f"{name}: {result}")

    @app.cli.command("init-db")
    def init_db():
        """Creates missing tables without migrations (development databases)."""
        db.create_all()
        click.echo("Tables created")
