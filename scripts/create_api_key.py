"""CLI to provision an API user (or add a key to one) in MongoDB."""

import sys
from pathlib import Path

import click

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from trackme.config import (  # noqa: E402  # pylint: disable=wrong-import-position
    get_settings,
)
from trackme.services import (  # noqa: E402  # pylint: disable=wrong-import-position
    api_keys,
    database,
    users,
)


@click.command()
@click.option("--email", prompt="User email", help="Email of the API user")
@click.option("--name", default=None, help="Label for the API key")
@click.option(
    "--expires-in-days",
    type=int,
    default=None,
    help="Days until the key expires (never by default)",
)
def create_api_key(email: str, name: str | None, expires_in_days: int | None) -> None:
    """Issue an API key for a user, creating the user if needed.

    The plaintext key is printed once and never stored.
    """
    settings = get_settings()
    database.get_client()
    database.ensure_indexes()

    user = users.get_user_by_email(email)
    if user is None:
        user, record, key_plain = users.create_user_with_api_key(
            email, name, expires_in_days
        )
        action = "created"
    else:
        record, key_plain = api_keys.create_api_key(user.id, name, expires_in_days)
        action = "updated"

    click.echo(
        f"\nUser {action}. Store this API key securely; "
        "it will not be shown again.\n"
    )
    click.echo(f"User   : {user.email} (id {user.id})")
    click.echo(f"Key    : {record.name} (id {record.id})")
    click.echo(f"Expires: {record.expires_at or 'never'}")
    click.echo(f"Header : {settings.app.api_key_header_name}")
    click.echo(f"API key: {key_plain}\n")


if __name__ == "__main__":
    create_api_key()  # pylint: disable=no-value-for-parameter
