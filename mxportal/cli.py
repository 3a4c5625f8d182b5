import click

from .bank.verification import reset_verification_limits
from .extensions import db
from .models import MerchantParent, MerchantStore
from .wallet import ledger


def register_cli(app):
    @app.cli.command('seed-store')
    @click.option('--store-id', required=True, help='Public store code, e.g. GMMC1001')
    @click.option('--name', required=True)
    @click.option('--parent-name', required=True)
    @click.option('--owner-name', default=None)
    @click.option('--phone', default=None)
    def seed_store(store_id, name, parent_name, owner_name, phone):
        parent = MerchantParent.query.filter_by(parent_name=parent_name).first()
        if not parent:
            parent = MerchantParent(parent_name=parent_name, phone=phone)
            db.session.add(parent)
            db.session.flush()

        store = MerchantStore.query.filter_by(store_id=store_id).first()
        if not store:
            store = MerchantStore(store_id=store_id, store_name=name, parent_id=parent.id)
            db.session.add(store)
        store.store_name = name
        store.owner_name = owner_name or store.owner_name
        store.store_phones = phone or store.store_phones
        store.parent_id = parent.id
        db.session.commit()

        wallet = ledger.get_or_create_wallet(store.id)
        click.echo(f'Store {store.store_id} (internal id {store.id}) seeded with wallet {wallet.id}.')

    @app.cli.command('reset-verification-limits')
    def reset_limits():
        """Zero bank/UPI verification counters last reset before today."""
        reset = reset_verification_limits()
        click.echo(f'Reset {reset} verification limit row(s).')

    @app.cli.command('wallet-balance')
    @click.option('--store-id', required=True)
    def wallet_balance(store_id):
        store = MerchantStore.query.filter_by(store_id=store_id).first()
        if not store:
            click.echo(f'Store {store_id} not found.')
            return

        wallet = ledger.get_wallet(store.id)
        if not wallet:
            click.echo('No wallet yet.')
            return

        click.echo(f'Available: ₹{wallet.available_balance:.2f}')
        click.echo(f'Pending:   ₹{wallet.pending_balance:.2f}')
        click.echo(f'Earned:    ₹{wallet.total_earned:.2f}')
        click.echo(f'Withdrawn: ₹{wallet.total_withdrawn:.2f}')
        entries = wallet.ledger_entries.count()
        click.echo(f'Ledger entries: {entries}')
