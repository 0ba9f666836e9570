"""Accessors for the services ``create_app`` stores on ``app.extensions``."""

from flask import current_app

from farmeow.errors import UpstreamError


def get_round_controller():
    return current_app.extensions['round_controller']


def get_ledger():
    return get_round_controller().ledger


def get_vault():
    vault = current_app.extensions.get('vault')
    if vault is None:
        raise UpstreamError('vault contract is not configured')
    return vault


def get_identity():
    return current_app.extensions['identity']
