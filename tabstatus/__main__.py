"""Allow ``python -m tabstatus``."""
from tabstatus.app import main

main()
