import json

import click
from flask import current_app

from farmeow import db
from farmeow.errors import FarMeowError
from farmeow.services.vault import VaultClient, to_checksum_address


def register_commands(flask_app) -> None:

    @flask_app.cli.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database tables."""
        import farmeow.models  # noqa: F401
        db.drop_all()
        db.create_all()
        click.echo('Database has been reset!')

    @flask_app.cli.command('round-status')
    def round_status_command():
        """Prints the contract's current round and the local ledger size."""
        controller = current_app.extensions['round_controller']
        try:
            controller.current_round()
        except FarMeowError as exc:
            raise click.ClickException(str(exc))
        click.echo(json.dumps(controller.status(), indent=2))

    @flask_app.cli.command('finalize-round')
    def finalize_round_command():
        """Runs one round check; settles the round if its time is up.

        The ledger lives in the server process, so from here finalize is
        refused while the contract counts players. Use this to retry a
        distribute or to settle an empty round.
        """
        outcome = current_app.extensions['round_controller'].check_round()
        click.echo(f'Round check outcome: {outcome}')
        if outcome == 'failed':
            raise SystemExit(1)

    @flask_app.cli.command('withdraw-fees')
    @click.option('--recipient', default=None, help='Defaults to FEE_RECIPIENT_ADDRESS.')
    def withdraw_fees_command(recipient):
        """Withdraws accumulated platform fees, signed with OWNER_PRIVATE_KEY."""
        cfg = current_app.config
        recipient = recipient or cfg.get('FEE_RECIPIENT_ADDRESS')
        if not recipient:
            raise click.UsageError('pass --recipient or set FEE_RECIPIENT_ADDRESS')
        vault = VaultClient.from_config(cfg, key_name='OWNER_PRIVATE_KEY')
        if vault is None:
            raise click.ClickException('BASE_RPC_URL and VAULT_ADDRESS must be set')
        try:
            recipient = to_checksum_address(recipient, field='recipient')
            click.echo(f'Withdrawing platform fees to {recipient}')
            result = vault.withdraw_platform_fees(recipient)
        except FarMeowError as exc:
            raise click.ClickException(f'Withdrawal failed: {exc}')
        click.echo(f'Fees withdrawn: {result.tx_hash}')
