"""
Theurgy - Command implementations for the Prosopon CLI.

Each module groups related top-level commands:
- accounts: new-account, accounts, lock, unlock, import-raw-key
- message:  sign, ec-recover, whoami
- transact: sign-tx, send-tx
- common:   shared options and error reporting
"""
