"""Ledger Vault Meta information.
   Ledger Vault keeps personal finance data encrypted on the client,
   so the hosting backend only ever stores opaque blobs.
"""
__title__ = 'ledger_vault'
__description__ = (
   'Client-side encrypted vault engine for a personal finance tracker, '
   'with tiered transaction categorization.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Ledger Vault Contributors'
__author__ = 'Ledger Vault Contributors'
__author_email__ = 'maintainers@ledger-vault.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/ledger-vault/ledger-vault'
