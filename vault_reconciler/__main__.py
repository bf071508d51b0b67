"""Allow ``python -m vault_reconciler``."""
from .cli import main

if __name__ == "__main__":
    main()
