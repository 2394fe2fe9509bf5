#!/usr/bin/env python3
"""
Web interface for shared vaults

All session work is handed to one background event loop, so the engine and
the scheduler share a single timeline no matter which request thread Flask
serves from.
"""

import asyncio
import logging
import os
import sys
import threading

from flask import Flask, jsonify, request

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from quorum_vault.config import load_settings
from quorum_vault.engine import Outcome
from quorum_vault.errors import DuplicateVote, RequestClosed, RequestNotFound, VaultError
from quorum_vault.ledger import LocalKeyWallet, MemberKey, RestLedgerGateway
from quorum_vault.logging_utils import configure_logging
from quorum_vault.session import VaultSession
from quorum_vault.units import to_display
from quorum_vault.vault import VaultMember

logger = logging.getLogger(__name__)


class SessionRunner:
    """Runs a VaultSession on a dedicated event loop thread"""

    def __init__(self, session: VaultSession, timeout: float = 60.0):
        self.session = session
        self.timeout = timeout
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="vault-session", daemon=True)

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self):
        self._thread.start()
        self.call(self.session.open())

    def stop(self):
        try:
            self.call(self.session.close())
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join()
            self.loop.close()

    def call(self, coro):
        """Run a coroutine on the session loop and wait for its result"""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(self.timeout)

    def run(self, fn, *args):
        """Run a plain session method on the session loop"""
        async def invoke():
            return fn(*args)
        return self.call(invoke())


def vault_to_dict(vault):
    return {
        'vault_id': vault.id,
        'name': vault.name,
        'owner_address': vault.owner_address,
        'members': [{'address': m.address, 'name': m.name} for m in vault.members],
        'signatures_required': vault.signatures_required,
        'balance': str(to_display(vault.balance)),
        'created_at': vault.created_at.isoformat(),
    }


def request_to_dict(req):
    return {
        'request_id': req.id,
        'vault_id': req.vault_id,
        'requester': req.requester_id,
        'amount': str(to_display(req.amount)),
        'purpose': req.purpose,
        'approvals': list(req.approvals),
        'rejections': list(req.rejections),
        'status': req.status.value,
        'created_at': req.created_at.isoformat(),
        'expires_at': req.expires_at.isoformat(),
    }


def transaction_to_dict(tx):
    return {
        'id': tx.id,
        'type': tx.type.value,
        'amount': str(to_display(tx.amount)) if tx.amount is not None else None,
        'from': tx.from_address,
        'purpose': tx.purpose,
        'withdrawal_request_id': tx.withdrawal_request_id,
        'timestamp': tx.timestamp.isoformat(),
    }


def history_to_dict(entry):
    return {
        'id': entry.id,
        'tx_type': entry.tx_type.value,
        'from': entry.from_address,
        'to': entry.to_address,
        'amount': str(to_display(entry.amount)),
        'description': entry.description,
        'tx_hash': entry.tx_hash,
        'timestamp': entry.timestamp,
        'executed_by': entry.executed_by,
    }


def outcome_response(outcome: Outcome):
    body = {
        'success': outcome.ok,
        'applied': outcome.applied,
        'released': outcome.released,
        'request': request_to_dict(outcome.request) if outcome.request else None,
        'error': str(outcome.error) if outcome.error else None,
    }
    if outcome.applied or isinstance(outcome.error, (DuplicateVote, RequestClosed)):
        return jsonify(body)
    if isinstance(outcome.error, RequestNotFound):
        return jsonify(body), 404
    return jsonify(body), 400


def create_app(runner: SessionRunner) -> Flask:
    app = Flask(__name__)
    session = runner.session

    @app.errorhandler(RequestNotFound)
    def not_found(e):
        return jsonify({'success': False, 'error': str(e)}), 404

    @app.errorhandler(VaultError)
    def vault_error(e):
        logger.warning("Request failed: %s", e)
        return jsonify({'success': False, 'error': str(e)}), 400

    @app.errorhandler(ValueError)
    def invalid_input(e):
        return jsonify({'success': False, 'error': str(e)}), 400

    @app.route('/api/vaults')
    def list_vaults():
        """Vaults the connected member belongs to"""
        vaults = runner.run(session.vaults)
        return jsonify({'member': session.current_user, 'vaults': [vault_to_dict(v) for v in vaults]})

    @app.route('/api/vaults', methods=['POST'])
    def create_vault():
        """Create new shared vault"""
        data = request.get_json(force=True)
        members = [VaultMember(m['address'], m.get('name')) for m in data['members']]
        tx_hash = runner.call(session.create_vault(
            data['name'],
            members,
            int(data['signatures_required']),
        ))
        return jsonify({'success': True, 'tx_hash': tx_hash})

    @app.route('/api/vault/<vault_id>')
    def get_vault(vault_id):
        """Vault with its withdrawal requests and local activity"""
        vault = runner.run(session.get_vault, vault_id)
        if vault is None:
            return jsonify({'error': 'Vault not found'}), 404

        requests_ = runner.run(session.requests_for_vault, vault_id)
        activity = runner.run(session.transactions_for_vault, vault_id)
        info = vault_to_dict(vault)
        info['withdrawal_requests'] = [request_to_dict(r) for r in requests_]
        info['activity'] = [transaction_to_dict(t) for t in activity]
        return jsonify(info)

    @app.route('/api/vault/<vault_id>/history')
    def get_history(vault_id):
        """Ledger-confirmed transaction history"""
        history = runner.call(session.transaction_history(vault_id))
        return jsonify({'vault_id': vault_id, 'history': [history_to_dict(h) for h in history]})

    @app.route('/api/vault/<vault_id>/deposit', methods=['POST'])
    def deposit(vault_id):
        data = request.get_json(force=True)
        receipt = runner.call(session.deposit(vault_id, str(data['amount'])))
        return jsonify({
            'success': True,
            'tx_hash': receipt.tx_hash,
            'holding_account': receipt.holding_account,
            'recorded': receipt.recorded,
            'amount': str(to_display(receipt.amount)),
        })

    @app.route('/api/vault/<vault_id>/withdraw', methods=['POST'])
    def request_withdrawal(vault_id):
        """Open a withdrawal request"""
        data = request.get_json(force=True)
        outcome = runner.run(session.request_withdrawal, vault_id, str(data['amount']), data.get('purpose', ''))
        return outcome_response(outcome)

    @app.route('/api/requests/<request_id>/approve', methods=['POST'])
    def approve(request_id):
        return outcome_response(runner.run(session.approve, request_id))

    @app.route('/api/requests/<request_id>/reject', methods=['POST'])
    def reject(request_id):
        return outcome_response(runner.run(session.reject, request_id))

    @app.route('/api/refresh', methods=['POST'])
    def refresh():
        report = runner.call(session.refresh())
        return jsonify({
            'success': report.ok,
            'vaults': len(report.vaults),
            'failed_owners': list(report.failed_owners),
        })

    return app


def main():
    configure_logging()
    settings = load_settings()

    if settings.server.wallet_private_key:
        key = MemberKey.from_hex(settings.server.wallet_private_key)
    else:
        key = MemberKey()
        print(f"WARNING: no VAULT_WALLET_PRIVATE_KEY set, using throwaway account {key.address}")

    gateway = RestLedgerGateway(
        settings.ledger.node_url,
        settings.ledger.module_address,
        settings.ledger.module_name,
        confirmation_timeout=settings.ledger.confirmation_timeout_seconds,
        poll_interval=settings.ledger.poll_interval_seconds,
        request_timeout=settings.ledger.request_timeout_seconds,
    )
    wallet = LocalKeyWallet(key, gateway.submit_signed)
    runner = SessionRunner(VaultSession(gateway, wallet, settings))
    runner.start()

    app = create_app(runner)
    try:
        app.run(host=settings.server.host, port=settings.server.port, debug=False)
    finally:
        runner.stop()


if __name__ == "__main__":
    main()
