"""Transaction import and rule-based categorization.

See :mod:`ledger_import.api` for the public entry points and
:mod:`ledger_import.cli` for the console interface.
"""
