"""
Entry point for running the wallet CLI as a module.

Usage:
    python -m custody_wallet
"""

from custody_wallet.cli import main

if __name__ == "__main__":
    main()
