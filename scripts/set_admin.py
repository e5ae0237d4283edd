"""CLI to grant the admin role to a user."""

import sys
from pathlib import Path

import click

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from trackme.exceptions import (  # noqa: E402  # pylint: disable=wrong-import-position
    UserNotFound,
)
from trackme.models.user import (  # noqa: E402  # pylint: disable=wrong-import-position
    Role,
)
from trackme.services import (  # noqa: E402  # pylint: disable=wrong-import-position
    database,
    users,
)


@click.command()
@click.argument("user_id_or_email")
@click.option("--revoke", is_flag=True, help="Demote the user back to 'user'")
def set_admin(user_id_or_email: str, revoke: bool) -> None:
    """Make USER_ID_OR_EMAIL an administrator."""
    database.get_client()

    role = Role.USER if revoke else Role.ADMIN
    try:
        user = users.set_role(user_id_or_email, role)
    except UserNotFound as e:
        raise click.ClickException(e.message) from e

    click.echo(f"\nID   : {user.id}")
    click.echo(f"Email: {user.email}")
    click.echo(f"Role : {user.role}\n")
    if role == Role.ADMIN:
        click.echo("This user can now call the /api/v1/admin endpoints with a JWT.")


if __name__ == "__main__":
    set_admin()  # pylint: disable=no-value-for-parameter
