"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask create-admin: Create (or promote) an admin user
"""

import click
import re
from order_hub.database import get_session, create_all
from order_hub.models import AppUser, UserRole


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--name', default=None, help='Full name')
    def create_admin(email, name):
        """Create an admin user, or promote an existing user to admin."""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('Invalid email. Use the format user@example.com', fg='red'))
            return

        db_session = get_session()
        user = db_session.query(AppUser).filter_by(email=email).first()

        try:
            if user:
                if user.is_admin():
                    click.echo(click.style(f'{email} is already an admin.', fg='yellow'))
                    return
                user.role = UserRole.ADMIN.value
                action = 'promoted to admin'
            else:
                user = AppUser(email=email, full_name=name, role=UserRole.ADMIN.value, active=True)
                db_session.add(user)
                action = 'created'

            db_session.commit()
            click.echo(click.style(f'Admin {action}: {email} (id {user.id})', fg='green', bold=True))

        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Error creating admin: {e}', fg='red'))
            raise click.Abort()
